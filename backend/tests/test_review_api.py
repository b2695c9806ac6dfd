"""Tests for the review queue and mailbox HTTP API."""

from types import SimpleNamespace

import pytest

from app import create_app
from conftest import make_candidate
from ingest.persistence_gate import PersistenceGate
from ingest.review_queue import ReviewQueue
from services import pipeline_service, review_service
from tasks.email_tasks import poll_mailbox_task


@pytest.fixture
def client(session_factory, monkeypatch):
    monkeypatch.setattr(review_service, "get_session_factory", lambda: session_factory)
    monkeypatch.setattr(pipeline_service, "get_session_factory", lambda: session_factory)
    app = create_app({"TESTING": True})
    return app.test_client()


@pytest.fixture
def queue(session_factory, portfolios):
    return ReviewQueue(session_factory, PersistenceGate(session_factory))


@pytest.fixture
def pending_item(queue):
    return queue.enqueue(
        "<msg-1@broker.example>", make_candidate(portfolio_name=None, confidence=0.9), "No portfolio named in email"
    )


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


# ============================================================================
# LISTING
# ============================================================================


def test_list_pending(client, pending_item):
    response = client.get("/api/review")

    assert response.status_code == 200
    data = response.get_json()
    assert data["count"] == 1
    item = data["items"][0]
    assert item["id"] == pending_item.id
    assert item["priority"] == "urgent"
    assert item["candidate"]["symbol"] == "AAPL"
    assert item["confidence"] == 0.9


def test_list_filters_by_status(client, pending_item):
    assert client.get("/api/review?status=approved").get_json()["count"] == 0
    assert client.get("/api/review?status=all").get_json()["count"] == 1


@pytest.mark.parametrize("query", ["status=archived", "limit=ten", "offset=-x"])
def test_list_rejects_bad_parameters(client, query):
    response = client.get(f"/api/review?{query}")

    assert response.status_code == 400
    assert "error" in response.get_json()


def test_get_item(client, pending_item):
    response = client.get(f"/api/review/{pending_item.id}")

    assert response.status_code == 200
    assert response.get_json()["reason"] == "No portfolio named in email"


def test_get_unknown_item(client, portfolios):
    assert client.get("/api/review/999").status_code == 404


# ============================================================================
# DECISIONS
# ============================================================================


def test_approve_with_corrections(client, pending_item):
    response = client.post(
        f"/api/review/{pending_item.id}/approve",
        json={"notes": "Confirmed with broker", "overrides": {"portfolio_name": "TFSA"}},
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["gate_status"] == "committed"
    assert data["transaction_id"] is not None
    assert data["item"]["status"] == "approved"
    assert data["item"]["reviewer_notes"] == "Confirmed with broker"
    # No mailbox configured
    assert data["archived"] is False


def test_approve_is_final(client, pending_item):
    client.post(f"/api/review/{pending_item.id}/approve", json={"overrides": {"portfolio_name": "TFSA"}})

    response = client.post(f"/api/review/{pending_item.id}/approve", json={})

    assert response.status_code == 409


def test_approve_without_fix_returns_422(client, pending_item):
    response = client.post(f"/api/review/{pending_item.id}/approve")

    assert response.status_code == 422
    data = response.get_json()
    assert data["gate_status"] == "needs_review"
    assert data["reason"] == "No portfolio named in email"
    assert data["item"]["status"] == "pending"


def test_approve_rejects_non_object_overrides(client, pending_item):
    response = client.post(f"/api/review/{pending_item.id}/approve", json={"overrides": ["TFSA"]})

    assert response.status_code == 400


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"quantity": "many"}, "quantity"),
        ({"portfolio_id": "abc"}, "portfolio_id"),
        ({"transaction_date": "June 20"}, "transaction_date"),
        ({"exchange": "NYSE"}, "exchange"),
    ],
)
def test_approve_rejects_invalid_overrides(client, pending_item, overrides, field):
    response = client.post(f"/api/review/{pending_item.id}/approve", json={"overrides": overrides})

    assert response.status_code == 400
    assert field in response.get_json()["error"]
    assert client.get(f"/api/review/{pending_item.id}").get_json()["status"] == "pending"


def test_approve_coerces_string_numbers(client, pending_item, portfolios):
    response = client.post(
        f"/api/review/{pending_item.id}/approve",
        json={"overrides": {"portfolio_id": str(portfolios["RRSP"]), "quantity": "15", "price": "166.67"}},
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["gate_status"] == "committed"
    assert data["item"]["candidate"]["quantity"] == 15.0


def test_approve_unknown_item(client, portfolios):
    assert client.post("/api/review/999/approve", json={}).status_code == 404


def test_reject(client, pending_item):
    response = client.post(f"/api/review/{pending_item.id}/reject", json={"reason": "Duplicate of a manual entry"})

    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "rejected"
    assert data["reviewer_notes"] == "Duplicate of a manual entry"

    assert client.post(f"/api/review/{pending_item.id}/reject", json={}).status_code == 409


def test_stats(client, pending_item):
    response = client.get("/api/review/stats")

    assert response.status_code == 200
    data = response.get_json()
    assert data["by_status"]["pending"] == 1
    assert data["by_priority"]["urgent"] == 1
    assert data["oldest_pending_at"] is not None


# ============================================================================
# MAILBOX
# ============================================================================


def test_inbox_status(client, session_factory):
    from database import emails as email_db

    session = session_factory()
    email_db.save_incoming_email(session, "<a@x>", uid=1)
    email_db.save_incoming_email(session, "<b@x>", uid=2)
    email_db.set_incoming_status(session, "<b@x>", "review")
    session.commit()
    session.close()

    response = client.get("/api/email/status")

    assert response.status_code == 200
    data = response.get_json()
    assert data["pending"] == 1
    assert data["review"] == 1
    assert data["archived"] == 0


def test_sync_queues_poll_task(client, monkeypatch):
    monkeypatch.setattr(poll_mailbox_task, "delay", lambda: SimpleNamespace(id="task-123"))

    response = client.post("/api/email/sync")

    assert response.status_code == 202
    assert response.get_json() == {"task_id": "task-123", "status": "queued"}
