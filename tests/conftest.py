import os
import sys
import base64
from collections import defaultdict
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

# Add the project root to the path to allow importing from 'app', 'db' and 'waste_classifier'
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))


# --- In-memory stand-in for a pymongo collection (only what the app uses) ---

def _matches(document: dict, query: dict) -> bool:
    for key, condition in query.items():
        value = document.get(key)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if op == "$gte":
                    if value is None or not value >= operand:
                        return False
                elif op == "$lt":
                    if value is None or not value < operand:
                        return False
                else:
                    raise NotImplementedError(op)
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, documents):
        self._documents = list(documents)

    def sort(self, key, direction=ASCENDING):
        self._documents.sort(key=lambda d: d.get(key), reverse=direction == DESCENDING)
        return self

    def limit(self, n):
        if n:
            self._documents = self._documents[:n]
        return self

    def __iter__(self):
        return iter(self._documents)


class FakeCollection:
    def __init__(self):
        self.documents = []
        self.fail_with = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def insert_one(self, document):
        self._maybe_fail()
        document.setdefault("_id", ObjectId())
        self.documents.append(dict(document))
        return SimpleNamespace(inserted_id=document["_id"])

    def find(self, query=None, projection=None):
        self._maybe_fail()
        return FakeCursor(dict(d) for d in self.documents if _matches(d, query or {}))

    def find_one(self, query=None):
        self._maybe_fail()
        for document in self.documents:
            if _matches(document, query or {}):
                return dict(document)
        return None

    def update_one(self, query, update):
        self._maybe_fail()
        for document in self.documents:
            if _matches(document, query):
                document.update(update.get("$set", {}))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)


# --- Fixtures ---

@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    """Every test gets fresh in-memory collections instead of MongoDB."""
    collections = defaultdict(FakeCollection)
    monkeypatch.setattr("db.engine.get_mongo_collection", lambda name: collections[name])
    monkeypatch.setattr("db.rate_limit.RATE_LIMIT_MAX_REQUESTS", 5)
    monkeypatch.setattr("db.rate_limit.RATE_LIMIT_WINDOW_SECONDS", 60)
    return collections


def make_data_uri(size: int = 1024, mime_type: str = "image/jpeg") -> str:
    payload = base64.b64encode(b"\xff\xd8\xff" + b"\x00" * size).decode("ascii")
    return f"data:{mime_type};base64,{payload}"


def gateway_reply(content=None, status_code: int = 200, body=None) -> MagicMock:
    """Builds a fake requests.Response for the chat-completion gateway."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    if body is None:
        body = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    response.json.return_value = body
    return response


@pytest.fixture
def jpeg_data_uri() -> str:
    return make_data_uri()


@pytest.fixture
def gateway(monkeypatch):
    """Patches requests.post in the forwarder; returns the mock."""
    mock_post = MagicMock(return_value=gateway_reply(
        '[{"item": "Plastic Bottle", "category": "Recyclable", "disposal": "Rinse and recycle", '
        '"binColor": "Blue", "confidence": 92}]'
    ))
    monkeypatch.setattr("waste_classifier.waste_classifier.requests.post", mock_post)
    return mock_post
