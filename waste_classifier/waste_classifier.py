"""
This script works as a module and as a CLI tool.

To use it as a module, you can do:
::

    from waste_classifier import WasteClassifier

    classifier = WasteClassifier()  # reads AI_GATEWAY_* from the environment
    predictions = classifier.classify(
        image_data="data:image/jpeg;base64,...",
        language="Hindi",
        corrections=[LearnedCorrection(item_name="Tetra Pak", original_category="Recyclable",
                                       corrected_category="Non-Recyclable")],
    )

Or, you can use it as a CLI tool (from the repository root):
::

python -m waste_classifier.waste_classifier classify \
    --image_path="samples/bottle.jpg" \
    --language="Hindi"

"""

import os
import re
import json
import base64
import logging
import mimetypes
from dataclasses import dataclass
from typing import List, Optional, Union, Dict, Any

import requests
from pydantic import BaseModel, StrictStr, StrictInt, StrictFloat, ValidationError, field_validator

import dotenv
dotenv.load_dotenv()

from waste_classifier.exceptions import (
    MalformedUpstreamReplyError,
    UpstreamError,
    UpstreamRateLimitedError,
    UpstreamUnavailableError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

# Indian colour-coded segregation scheme.
BIN_COLORS = {
    "Blue": "Recyclable",
    "Green": "Organic/Wet Waste",
    "Red": "Hazardous",
    "Yellow": "E-Waste",
    "Black": "Non-Recyclable",
}

BIN_COLOR_EXAMPLES = {
    "Blue": "plastic, paper, metal, glass",
    "Green": "food scraps, garden waste",
    "Red": "medical waste, chemicals, batteries",
    "Yellow": "electronics, chargers, cables",
    "Black": "soiled, multi-layer and other non-recyclable waste",
}

WASTE_CATEGORIES = list(BIN_COLORS.values())

# Greedy on purpose: first '[' to last ']'.
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


@dataclass
class Config:
    """
    Connection settings for the multimodal chat-completion gateway.
    """
    gateway_url: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    """Full URL of the OpenAI-compatible chat completions endpoint."""
    api_key: Optional[str] = None
    """Bearer token for the gateway."""
    model: str = "google/gemini-2.5-flash"
    """Model identifier sent with every request."""
    timeout: float = 60.0
    """Seconds to wait for the gateway before giving up."""

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            gateway_url=os.getenv("AI_GATEWAY_URL", cls.gateway_url),
            api_key=os.getenv("AI_GATEWAY_API_KEY"),
            model=os.getenv("AI_MODEL", cls.model),
            timeout=float(os.getenv("AI_TIMEOUT_SECONDS", cls.timeout)),
        )


class PredictionItem(BaseModel):
    """One waste item identified in the image."""
    item: StrictStr
    category: StrictStr
    disposal: StrictStr
    binColor: StrictStr
    confidence: Union[StrictInt, StrictFloat]

    @field_validator("confidence")
    @classmethod
    def confidence_in_range(cls, value):
        # NaN fails both comparisons
        if not 0 <= value <= 100:
            raise ValueError("confidence must be within [0, 100]")
        return value


class LearnedCorrection(BaseModel):
    """An admin-approved override used to bias future prompts."""
    item_name: str
    original_category: Optional[str] = None
    corrected_category: Optional[str] = None
    corrected_bin_color: Optional[str] = None
    correction_details: Optional[str] = None


def format_correction(correction: LearnedCorrection) -> str:
    """
    Renders one correction as a single prompt line.

    :param correction: The correction to render.
    :type correction: LearnedCorrection
    :return: A line such as ``- "Tetra Pak" should be classified as Non-Recyclable (not Recyclable)``.
    :rtype: str
    """
    if correction.corrected_category:
        line = f'- "{correction.item_name}" should be classified as {correction.corrected_category}'
        if correction.original_category:
            line += f" (not {correction.original_category})"
    else:
        line = f'- "{correction.item_name}" was previously misclassified as {correction.original_category or "an incorrect category"}'
    if correction.corrected_bin_color:
        line += f", bin: {correction.corrected_bin_color}"
    if correction.correction_details:
        line += f". User note: {correction.correction_details}"
    return line


def build_system_prompt(language: str, corrections: Optional[List[LearnedCorrection]] = None) -> str:
    """
    Builds the system instruction, appending learned corrections when present.

    The corrections are plain prompt text; nothing about the model changes.

    :param language: Language the model must answer in.
    :type language: str
    :param corrections: Most recent learned corrections, newest first.
    :type corrections: list, optional
    :return: The full system prompt.
    :rtype: str
    """
    bin_lines = "\n".join(
        f"   - {color}: {category} ({BIN_COLOR_EXAMPLES[color]})"
        for color, category in BIN_COLORS.items()
    )
    prompt = f"""You are an expert waste classification system for India. Analyze images and identify ALL waste items present. Use simple, everyday language that anyone can understand. For each item, provide:
1. Item name (use simple, common words - e.g., "Plastic Bottle" not "Polyethylene Terephthalate Container")
2. Waste category (one of: {", ".join(WASTE_CATEGORIES)})
3. Disposal instructions specific to India, in simple language: how to prepare the item (rinse, dry, separate parts), where it should go (household bin, kabadiwala, authorised e-waste or hazardous collection centre), what must never be done with it, and one short sentence on its environmental impact
4. Bin color according to Indian waste segregation (ONLY the color name - one of: {", ".join(BIN_COLORS)}):
{bin_lines}
5. Confidence level (0-100) indicating how certain you are about the classification

Respond in {language} language. Return a JSON array with all items found. Be thorough and identify every visible waste item."""

    if corrections:
        correction_lines = "\n".join(format_correction(c) for c in corrections)
        prompt += f"""

IMPORTANT - LEARNED CORRECTIONS FROM USER FEEDBACK:
Reviewers have confirmed the following corrections. When you see these or very similar items, prefer these classifications:
{correction_lines}"""
    return prompt


def build_user_prompt(language: str) -> str:
    return (
        "Analyze this image and identify ALL waste items using simple language. "
        'Return a JSON array with format: [{"item": "simple item name", "category": "category", '
        '"disposal": "how to dispose", "binColor": "Blue/Green/Red/Yellow/Black (ONLY the color, no \'bin\' word)", '
        f'"confidence": 95}}]. Respond in {language}.'
    )


def extract_predictions(reply: Optional[str]) -> List[PredictionItem]:
    """
    Pulls the prediction array out of the model's free-form reply.

    All-or-nothing: if any element fails validation the whole batch is rejected.

    :param reply: The text content of the model's reply.
    :type reply: str
    :return: The validated predictions, in the model's order.
    :rtype: list[PredictionItem]
    :raises MalformedUpstreamReplyError: If no array is found, the JSON is invalid,
                                         or any element does not match PredictionItem.
    """
    if not isinstance(reply, str):
        logger.error("Model reply has no text content")
        raise MalformedUpstreamReplyError()

    match = _JSON_ARRAY.search(reply)
    if not match:
        logger.error(f"No JSON array in model reply ({len(reply)} chars)")
        raise MalformedUpstreamReplyError()

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.error("Model reply contains an invalid JSON array")
        raise MalformedUpstreamReplyError()

    if not isinstance(parsed, list):
        logger.error("Model reply JSON is not an array")
        raise MalformedUpstreamReplyError()

    try:
        return [PredictionItem.model_validate(element) for element in parsed]
    except ValidationError as e:
        logger.error(f"Model reply failed prediction validation ({e.error_count()} errors)")
        raise MalformedUpstreamReplyError()


def encode_image_file(image_path: str) -> str:
    """Reads a local image file and returns it as a base64 data URI."""
    mime_type, _ = mimetypes.guess_type(image_path)
    if mime_type is None:
        mime_type = "image/jpeg"
    with open(image_path, "rb") as f:
        payload = base64.b64encode(f.read()).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


class WasteClassifier:
    """
    Forwards a validated image to a hosted multimodal model and parses the reply.

    The classifier is stateless between calls; it can be shared across requests.

    :param config: Gateway settings. Read from the environment if omitted.
    :type config: Config, optional
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.from_env()

    def build_payload(self, image_data: str, language: str,
                      corrections: Optional[List[LearnedCorrection]] = None) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": build_system_prompt(language, corrections)},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_user_prompt(language)},
                        {"type": "image_url", "image_url": {"url": image_data}},
                    ],
                },
            ],
        }

    def classify(self, image_data: str, language: str,
                 corrections: Optional[List[LearnedCorrection]] = None) -> List[PredictionItem]:
        """
        Classifies every waste item visible in the image.

        :param image_data: A validated image data URI.
        :type image_data: str
        :param language: A supported language name.
        :type language: str
        :param corrections: Learned corrections to add to the prompt.
        :type corrections: list, optional
        :return: The predictions in the order the model listed them.
        :rtype: list[PredictionItem]
        :raises ConfigurationError: If no gateway API key is configured.
        :raises UpstreamRateLimitedError: If the gateway answers 429.
        :raises UpstreamUnavailableError: If the gateway answers 402.
        :raises UpstreamError: On any other non-2xx answer, network error or timeout.
        :raises MalformedUpstreamReplyError: If the reply has no valid prediction array.
        """
        if not self.config.api_key:
            logger.error("Configuration error: AI_GATEWAY_API_KEY not set")
            raise ConfigurationError()

        logger.info(f"Processing image analysis request (language={language}, corrections={len(corrections or [])})")
        try:
            response = requests.post(
                self.config.gateway_url,
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Content-Type": "application/json",
                },
                json=self.build_payload(image_data, language, corrections),
                timeout=self.config.timeout,
            )
        except requests.Timeout:
            logger.error(f"AI gateway timed out after {self.config.timeout}s")
            raise UpstreamError()
        except requests.RequestException as e:
            logger.error(f"AI gateway request failed: {type(e).__name__}")
            raise UpstreamError()

        if not response.ok:
            logger.error(f"AI API request failed: {response.status_code}")
            if response.status_code == 429:
                raise UpstreamRateLimitedError()
            if response.status_code == 402:
                raise UpstreamUnavailableError()
            raise UpstreamError()

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.error("AI gateway returned an unexpected response body")
            raise MalformedUpstreamReplyError()

        predictions = extract_predictions(content)
        logger.info(f"Image analysis completed ({len(predictions)} items)")
        return predictions


if __name__ == "__main__":
    import fire
    from waste_classifier.validation import validate_classification_request

    def classify(image_path: str, language: str = "English"):
        """
        Classifies a local image file and prints the predictions.
        """
        logging.basicConfig(level=logging.INFO)
        image_data = encode_image_file(image_path)
        validate_classification_request(image_data, language)
        predictions = WasteClassifier().classify(image_data, language)
        for p in predictions:
            print(json.dumps(p.model_dump(), ensure_ascii=False))
        return len(predictions)

    fire.Fire({
        "classify": classify,
    })
