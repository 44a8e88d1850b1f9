import os
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from waste_classifier import WasteClassifier, LearnedCorrection, validate_classification_request
from waste_classifier.exceptions import ConfigurationError
from db import engine, rate_limit
from app.schema import (
    ClassificationResponse,
    FeedbackRequest,
    ApproveFeedbackRequest,
    DenyFeedbackRequest,
)

load_dotenv()

CLASSIFY_ENDPOINT = "classify-waste"
CORRECTIONS_LIMIT = int(os.getenv("CORRECTIONS_LIMIT", 50))

logger = logging.getLogger(__name__)


class FeedbackNotFoundError(Exception):
    """Raised when a feedback id does not match any submission."""


class FeedbackAlreadyReviewedError(Exception):
    """Raised when approving or denying a submission that is no longer pending."""


# services.py
def load_classifier() -> WasteClassifier:
    """
    Cria o WasteClassifier a partir das variáveis de ambiente AI_GATEWAY_*.
    A missing API key is not fatal at startup; classification requests
    answer with a configuration error instead.
    """
    classifier = WasteClassifier()
    if not classifier.config.api_key:
        logger.error("AI_GATEWAY_API_KEY not set; /classify-waste will fail until it is configured")
    else:
        logger.info(f"Classifier ready (model={classifier.config.model})")
    return classifier


def load_corrections(limit: int = CORRECTIONS_LIMIT) -> List[LearnedCorrection]:
    """
    Busca as correções aprendidas mais recentes para enriquecer o prompt.
    If the store is unreachable the request goes on without corrections.
    """
    try:
        documents = engine.fetch_recent_corrections(limit)
    except PyMongoError as e:
        logger.error(f"Failed to fetch learned corrections: {type(e).__name__}")
        return []

    corrections = []
    for doc in documents:
        try:
            corrections.append(LearnedCorrection.model_validate(doc))
        except ValidationError:
            logger.warning(f"Skipping malformed learned correction {doc.get('id')}")
    return corrections


def classify_and_log(
    image_data,
    language,
    client_address: str,
    owner: Optional[str],
    classifier: Optional[WasteClassifier],
) -> Dict:
    """
    1. Valida a imagem e o idioma.
    2. Aplica o rate limit por endereço do cliente.
    3. Busca as correções aprendidas.
    4. Chama o modelo e valida a resposta.
    5. Salva no histórico (apenas usuários autenticados).
    6. Retorna o resultado final formatado.
    """
    # 1. Nenhuma chamada externa antes da validação
    validate_classification_request(image_data, language)
    # 2.
    rate_limit.check_rate_limit(client_address, CLASSIFY_ENDPOINT)
    if classifier is None:
        logger.error("Classifier not loaded")
        raise ConfigurationError()
    # 3.
    corrections = load_corrections(CORRECTIONS_LIMIT)
    # 4.
    predictions = classifier.classify(image_data, language, corrections)
    result = ClassificationResponse(predictions=predictions).model_dump()
    # 5. Falhas no histórico não derrubam a classificação
    if owner:
        try:
            result["historyId"] = engine.log_classification(owner, language, result["predictions"])
        except Exception as e:
            logger.warning(f"Failed to save classification history for {owner}: {e}")
    return result


def get_history(owner: str, limit: int = 20) -> List[Dict]:
    return engine.fetch_history(owner, limit)


# --- Feedback / revisão ---

def submit_feedback(feedback: FeedbackRequest, owner: Optional[str]) -> str:
    document = {
        "owner": owner,
        "history_id": feedback.historyId,
        "item_name": feedback.item.item,
        "original_prediction": {
            "item": feedback.item.item,
            "category": feedback.item.category,
            "binColor": feedback.item.binColor,
            "confidence": feedback.item.confidence,
        },
        "feedback_type": feedback.feedbackType,
        "description": feedback.description,
        "status": "pending",
        "admin_notes": None,
    }
    feedback_id = engine.insert_feedback(document)
    logger.info(f"Feedback {feedback_id} submitted ({feedback.feedbackType})")
    return feedback_id


def _pending_feedback(feedback_id: str) -> Dict:
    feedback = engine.find_feedback(feedback_id)
    if feedback is None:
        raise FeedbackNotFoundError(feedback_id)
    if feedback.get("status") != "pending":
        raise FeedbackAlreadyReviewedError(feedback_id)
    return feedback


def approve_feedback(feedback_id: str, review: ApproveFeedbackRequest, reviewer: str) -> str:
    """
    Aprova um feedback e cria a correção aprendida correspondente.
    Returns the id of the new learned correction.
    """
    feedback = _pending_feedback(feedback_id)
    engine.update_feedback(feedback_id, {
        "status": "approved",
        "admin_notes": review.adminNotes,
        "reviewed_by": reviewer,
        "reviewed_at": datetime.now(timezone.utc),
    })
    correction_id = engine.insert_correction({
        "feedback_id": feedback_id,
        "item_name": feedback["item_name"],
        "original_category": (feedback.get("original_prediction") or {}).get("category"),
        "corrected_category": review.correctedCategory,
        "corrected_bin_color": review.correctedBinColor,
        "correction_details": feedback.get("description"),
    })
    logger.info(f"Feedback {feedback_id} approved by {reviewer}; correction {correction_id} created")
    return correction_id


def deny_feedback(feedback_id: str, review: DenyFeedbackRequest, reviewer: str) -> None:
    _pending_feedback(feedback_id)
    engine.update_feedback(feedback_id, {
        "status": "denied",
        "admin_notes": review.adminNotes,
        "reviewed_by": reviewer,
        "reviewed_at": datetime.now(timezone.utc),
    })
    logger.info(f"Feedback {feedback_id} denied by {reviewer}")


def list_feedback(status: Optional[str] = None) -> List[Dict]:
    return engine.list_feedback(feedback_type="no", status=status)


def list_corrections(limit: int = 200) -> List[Dict]:
    return engine.fetch_recent_corrections(limit)
