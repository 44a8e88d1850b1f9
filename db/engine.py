import os
import logging
from functools import lru_cache
from typing import List, Optional
from pymongo import MongoClient, DESCENDING
from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from datetime import datetime, timezone

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", None)
MONGO_DB = os.getenv("MONGO_DB", None)
ENV = os.getenv("ENV", "prod").lower()

logger = logging.getLogger(__name__)

# --- Funções de Coleções ---

@lru_cache(maxsize=1)
def get_mongo_client() -> MongoClient:
    if MONGO_URI is None or MONGO_DB is None:
        raise ValueError("MONGO_URI and MONGO_DB must be set")
    return MongoClient(MONGO_URI, tz_aware=True)


def get_mongo_collection(collection_name: str):
    client = get_mongo_client()
    db = client[MONGO_DB]
    return db[collection_name]


def collection_name(suffix: str) -> str:
    """Per-environment collection name, e.g. PROD_rate_limits."""
    return f"{ENV.upper()}_{suffix}"


def _serialize(document: dict) -> dict:
    """Replaces Mongo's ObjectId with a string 'id' for JSON responses."""
    document = dict(document)
    if "_id" in document:
        document["id"] = str(document.pop("_id"))
    return document


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


# --- Learned corrections ---

def fetch_recent_corrections(limit: int = 50) -> List[dict]:
    """
    Returns the `limit` most recent learned corrections, newest first.
    Recency is the only ranking; there is no similarity to the current image.
    """
    collection = get_mongo_collection(collection_name("learned_corrections"))
    cursor = collection.find({}).sort("created_at", DESCENDING).limit(limit)
    return [_serialize(doc) for doc in cursor]


def insert_correction(correction: dict) -> str:
    collection = get_mongo_collection(collection_name("learned_corrections"))
    document = dict(correction)
    document.setdefault("created_at", datetime.now(timezone.utc))
    result = collection.insert_one(document)
    return str(result.inserted_id)


# --- Feedback submissions ---

def insert_feedback(feedback: dict) -> str:
    collection = get_mongo_collection(collection_name("feedback_submissions"))
    document = dict(feedback)
    document.setdefault("status", "pending")
    document.setdefault("created_at", datetime.now(timezone.utc))
    result = collection.insert_one(document)
    return str(result.inserted_id)


def find_feedback(feedback_id: str) -> Optional[dict]:
    oid = _object_id(feedback_id)
    if oid is None:
        return None
    collection = get_mongo_collection(collection_name("feedback_submissions"))
    document = collection.find_one({"_id": oid})
    return _serialize(document) if document else None


def list_feedback(feedback_type: Optional[str] = "no", status: Optional[str] = None) -> List[dict]:
    query = {}
    if feedback_type:
        query["feedback_type"] = feedback_type
    if status:
        query["status"] = status
    collection = get_mongo_collection(collection_name("feedback_submissions"))
    cursor = collection.find(query).sort("created_at", DESCENDING)
    return [_serialize(doc) for doc in cursor]


def update_feedback(feedback_id: str, fields: dict) -> bool:
    oid = _object_id(feedback_id)
    if oid is None:
        return False
    collection = get_mongo_collection(collection_name("feedback_submissions"))
    result = collection.update_one({"_id": oid}, {"$set": fields})
    return result.matched_count > 0


# --- Histórico de classificações ---

def log_classification(owner: str, language: str, predictions: List[dict]) -> str:
    """
    Insere uma classificação no histórico do usuário e retorna o ID gerado.
    The image itself is never stored.
    """
    collection = get_mongo_collection(collection_name("classification_history"))
    document = {
        "owner": owner,
        "language": language,
        "predictions": predictions,
        "created_at": datetime.now(timezone.utc),
    }
    try:
        result = collection.insert_one(document)
    except Exception as e:
        raise Exception(f"Failed to log classification to database. Error: {e}")
    return str(result.inserted_id)


def fetch_history(owner: str, limit: int = 20) -> List[dict]:
    collection = get_mongo_collection(collection_name("classification_history"))
    cursor = collection.find({"owner": owner}).sort("created_at", DESCENDING).limit(limit)
    return [_serialize(doc) for doc in cursor]
