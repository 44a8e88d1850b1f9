"""
Input validation for classification requests.

Pure predicates, no I/O. Both checks run before any rate-limit record
is written or any network call is made.
"""

import re
import logging
from typing import Any

from waste_classifier.exceptions import InvalidImageError, InvalidLanguageError

logger = logging.getLogger(__name__)

# English plus the 22 languages of the Eighth Schedule.
SUPPORTED_LANGUAGES = (
    "English",
    "Assamese",
    "Bengali",
    "Bodo",
    "Dogri",
    "Gujarati",
    "Hindi",
    "Kannada",
    "Kashmiri",
    "Konkani",
    "Maithili",
    "Malayalam",
    "Manipuri",
    "Marathi",
    "Nepali",
    "Odia",
    "Punjabi",
    "Sanskrit",
    "Santali",
    "Sindhi",
    "Tamil",
    "Telugu",
    "Urdu",
)

DEFAULT_LANGUAGE = "English"

# SVG is deliberately absent: it can carry script.
ALLOWED_IMAGE_PREFIXES = (
    "data:image/jpeg;base64,",
    "data:image/png;base64,",
    "data:image/gif;base64,",
    "data:image/webp;base64,",
)

MAX_IMAGE_BYTES = 20 * 1024 * 1024

_BASE64_PAYLOAD = re.compile(r"[A-Za-z0-9+/]+={0,2}")


def estimated_decoded_size(payload: str) -> int:
    """Decoded size of a base64 payload, estimated as floor(len * 3 / 4)."""
    return len(payload) * 3 // 4


def is_valid_image_data(image_data: Any) -> bool:
    """
    Checks that `image_data` is an allowed image data URI of at most 20 MiB.

    :param image_data: The raw value received from the client.
    :return: True if the value can be forwarded to the model.
    """
    if not isinstance(image_data, str) or not image_data:
        return False
    if not image_data.startswith(ALLOWED_IMAGE_PREFIXES):
        return False
    payload = image_data.split(",", 1)[1]
    if not _BASE64_PAYLOAD.fullmatch(payload):
        return False
    return estimated_decoded_size(payload) <= MAX_IMAGE_BYTES


def is_valid_language(language: Any) -> bool:
    return isinstance(language, str) and language in SUPPORTED_LANGUAGES


def validate_classification_request(image_data: Any, language: Any) -> None:
    """
    Raises the matching InvalidInputError subclass if the request is not
    acceptable. The error message never echoes the submitted values.
    """
    if not is_valid_image_data(image_data):
        logger.info("Rejected request: invalid image data")
        raise InvalidImageError()
    if not is_valid_language(language):
        logger.info("Rejected request: invalid language")
        raise InvalidLanguageError()
