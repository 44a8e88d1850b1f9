"""
Este arquivo contém os modelos Pydantic que definem a estrutura (o "schema")
dos dados que entram e saem da nossa API.

No padrão MVC de uma API REST, este arquivo é a implementação da camada "View".

The classification request is deliberately loose (Any): type and content
checks belong to the validator, so a wrong type yields the same 400 as a
wrong value instead of FastAPI's generic 422.
"""

from pydantic import BaseModel, Field
from typing import Any, List, Literal, Optional

from waste_classifier import PredictionItem, DEFAULT_LANGUAGE


class ClassificationRequest(BaseModel):
    imageBase64: Any = None
    language: Any = DEFAULT_LANGUAGE


class ClassificationResponse(BaseModel):
    predictions: List[PredictionItem]


class ErrorResponse(BaseModel):
    error: str


class FeedbackRequest(BaseModel):
    item: PredictionItem
    feedbackType: Literal["yes", "no", "not_sure"]
    description: Optional[str] = Field(default=None, max_length=1000)
    historyId: Optional[str] = None


class FeedbackCreated(BaseModel):
    id: str
    status: str = "pending"


class ApproveFeedbackRequest(BaseModel):
    correctedCategory: Optional[str] = None
    correctedBinColor: Optional[Literal["Blue", "Green", "Red", "Yellow", "Black"]] = None
    adminNotes: Optional[str] = None


class DenyFeedbackRequest(BaseModel):
    adminNotes: Optional[str] = None
