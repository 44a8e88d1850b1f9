from waste_classifier.waste_classifier import (
    WasteClassifier,
    Config,
    PredictionItem,
    LearnedCorrection,
    BIN_COLORS,
    build_system_prompt,
    extract_predictions,
)
from waste_classifier.validation import (
    SUPPORTED_LANGUAGES,
    DEFAULT_LANGUAGE,
    validate_classification_request,
)
