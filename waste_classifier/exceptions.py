"""Error taxonomy for the waste classification pipeline.

Every error carries the HTTP status it maps to and a user-safe message.
The message never includes the submitted payload or the model's reply.
"""


class EcoSortError(Exception):
    """Base class for all EcoSort errors."""

    status_code = 500
    default_message = "An error occurred processing your request."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInputError(EcoSortError):
    """Raised when the request fails input validation."""

    status_code = 400
    default_message = "Invalid request."


class InvalidImageError(InvalidInputError):
    """Raised when the image is not an allowed data URI or is too large."""

    default_message = "Invalid image data. Please upload a valid image under 20MB."


class InvalidLanguageError(InvalidInputError):
    """Raised when the language is not in the allow-list."""

    default_message = "Invalid language selection."


class RateLimitedError(EcoSortError):
    """Raised when a client exceeds this service's own request budget."""

    status_code = 429
    default_message = "Rate limit exceeded. Please wait a minute before trying again."


class UpstreamRateLimitedError(EcoSortError):
    """Raised when the AI gateway answers 429."""

    status_code = 429
    default_message = "Too many requests. Please try again in a moment."


class UpstreamUnavailableError(EcoSortError):
    """Raised when the AI gateway answers 402 (credits exhausted)."""

    status_code = 503
    default_message = "Service temporarily unavailable."


class UpstreamError(EcoSortError):
    """Raised for any other gateway failure, including timeouts."""

    status_code = 500
    default_message = "Unable to process image. Please try again."


class MalformedUpstreamReplyError(EcoSortError):
    """Raised when the model reply has no valid prediction array."""

    status_code = 500
    default_message = "Unable to process AI response. Please try again."


class ConfigurationError(EcoSortError):
    """Raised when the service is missing required configuration."""

    status_code = 500
    default_message = "Service configuration error."
