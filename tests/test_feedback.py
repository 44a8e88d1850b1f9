from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from app.app import app
from db import engine
from waste_classifier import WasteClassifier, Config
from conftest import make_data_uri

BOTTLE = {"item": "Tetra Pak", "category": "Recyclable", "disposal": "Rinse and recycle", "binColor": "Blue", "confidence": 70}


@pytest.fixture(autouse=True)
def mock_auth(monkeypatch):
    monkeypatch.setattr("app.services.load_classifier", lambda: WasteClassifier(Config(api_key="test-key")))
    monkeypatch.setattr("db.auth.ENV", "prod")
    tokens = {
        "user-token": {"owner": "asha", "role": "user"},
        "admin-token": {"owner": "reviewer", "role": "admin"},
    }

    def verify(request):
        return tokens[request.headers["Authorization"].replace("Bearer ", "")]

    monkeypatch.setattr("db.auth.verify_token", MagicMock(side_effect=verify))


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


USER = {"Authorization": "Bearer user-token"}
ADMIN = {"Authorization": "Bearer admin-token"}


def submit(client, feedback_type="no", description="Tetra Paks are multi-layer", headers=None):
    response = client.post(
        "/feedback",
        json={"item": BOTTLE, "feedbackType": feedback_type, "description": description},
        headers=headers or {},
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_anonymous_feedback_is_stored_pending(client, mongo):
    feedback_id = submit(client)
    stored = mongo[engine.collection_name("feedback_submissions")].documents[0]
    assert str(stored["_id"]) == feedback_id
    assert stored["owner"] is None
    assert stored["status"] == "pending"
    assert stored["item_name"] == "Tetra Pak"
    assert stored["original_prediction"] == {"item": "Tetra Pak", "category": "Recyclable", "binColor": "Blue", "confidence": 70}


def test_feedback_records_owner(client, mongo):
    submit(client, headers=USER)
    assert mongo[engine.collection_name("feedback_submissions")].documents[0]["owner"] == "asha"


def test_feedback_type_is_validated(client):
    response = client.post("/feedback", json={"item": BOTTLE, "feedbackType": "maybe"})
    assert response.status_code == 400


def test_admin_routes_require_admin_role(client):
    assert client.get("/admin/feedback", headers=USER).status_code == 403
    assert client.get("/admin/corrections", headers=USER).status_code == 403
    assert client.get("/admin/feedback").status_code == 401


def test_admin_lists_only_negative_feedback(client):
    negative = submit(client, feedback_type="no")
    submit(client, feedback_type="yes")
    submit(client, feedback_type="not_sure")

    response = client.get("/admin/feedback", headers=ADMIN)
    assert response.status_code == 200
    assert [f["id"] for f in response.json()] == [negative]


def test_approve_creates_learned_correction(client, mongo):
    feedback_id = submit(client)
    response = client.post(
        f"/admin/feedback/{feedback_id}/approve",
        json={"correctedCategory": "Non-Recyclable", "correctedBinColor": "Black", "adminNotes": "confirmed"},
        headers=ADMIN,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    feedback = mongo[engine.collection_name("feedback_submissions")].documents[0]
    assert feedback["status"] == "approved"
    assert feedback["admin_notes"] == "confirmed"
    assert feedback["reviewed_by"] == "reviewer"
    assert feedback["reviewed_at"] is not None

    correction = mongo[engine.collection_name("learned_corrections")].documents[0]
    assert str(correction["_id"]) == response.json()["correctionId"]
    assert correction["feedback_id"] == feedback_id
    assert correction["item_name"] == "Tetra Pak"
    assert correction["original_category"] == "Recyclable"
    assert correction["corrected_category"] == "Non-Recyclable"
    assert correction["corrected_bin_color"] == "Black"
    assert correction["correction_details"] == "Tetra Paks are multi-layer"

    corrections = client.get("/admin/corrections", headers=ADMIN).json()
    assert [c["item_name"] for c in corrections] == ["Tetra Pak"]


def test_approved_correction_reaches_next_prompt(client, gateway):
    feedback_id = submit(client)
    client.post(f"/admin/feedback/{feedback_id}/approve", json={"correctedCategory": "Non-Recyclable"}, headers=ADMIN)

    response = client.post("/classify-waste", json={"imageBase64": make_data_uri(), "language": "English"})
    assert response.status_code == 200
    system_prompt = gateway.call_args.kwargs["json"]["messages"][0]["content"]
    assert '"Tetra Pak" should be classified as Non-Recyclable (not Recyclable)' in system_prompt


def test_deny_does_not_create_correction(client, mongo):
    feedback_id = submit(client)
    response = client.post(f"/admin/feedback/{feedback_id}/deny", json={"adminNotes": "prediction was right"}, headers=ADMIN)
    assert response.status_code == 200
    assert mongo[engine.collection_name("feedback_submissions")].documents[0]["status"] == "denied"
    assert mongo[engine.collection_name("learned_corrections")].documents == []

    pending = client.get("/admin/feedback", params={"status": "pending"}, headers=ADMIN).json()
    assert pending == []


def test_reviewing_twice_is_a_conflict(client):
    feedback_id = submit(client)
    assert client.post(f"/admin/feedback/{feedback_id}/deny", json={}, headers=ADMIN).status_code == 200
    assert client.post(f"/admin/feedback/{feedback_id}/approve", json={}, headers=ADMIN).status_code == 409


@pytest.mark.parametrize("feedback_id", [str(ObjectId()), "not-an-object-id"])
def test_unknown_feedback_is_404(client, feedback_id):
    assert client.post(f"/admin/feedback/{feedback_id}/approve", json={}, headers=ADMIN).status_code == 404
    assert client.post(f"/admin/feedback/{feedback_id}/deny", json={}, headers=ADMIN).status_code == 404


def test_invalid_corrected_bin_color(client):
    feedback_id = submit(client)
    response = client.post(f"/admin/feedback/{feedback_id}/approve", json={"correctedBinColor": "Purple"}, headers=ADMIN)
    assert response.status_code == 400
