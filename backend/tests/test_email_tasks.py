"""Tests for the mailbox polling Celery task."""

import pytest
from celery.exceptions import Retry

from ingest.errors import PersistenceError, ServiceUnavailableError
from ingest.types import CycleReport
from services import pipeline_service
from tasks.email_tasks import poll_mailbox_task


@pytest.fixture(autouse=True)
def no_result_backend(monkeypatch):
    monkeypatch.setattr(poll_mailbox_task, "update_state", lambda *args, **kwargs: None)


def test_poll_returns_cycle_stats(monkeypatch):
    report = CycleReport(fetched=3, committed=2, queued_for_review=1, next_cursor=42)
    monkeypatch.setattr(pipeline_service, "run_poll_cycle", lambda: report)

    result = poll_mailbox_task.run()

    assert result["status"] == "completed"
    assert result["stats"] == report.to_dict()
    assert "completed_at" in result


def test_unavailable_mailbox_is_retried_with_backoff(monkeypatch):
    retries = []

    def unavailable():
        raise ServiceUnavailableError("Mailbox unreachable after 3 attempts", attempts=3)

    def fake_retry(exc=None, countdown=None, **kwargs):
        retries.append((exc, countdown))
        return Retry(exc=exc, when=countdown)

    monkeypatch.setattr(pipeline_service, "run_poll_cycle", unavailable)
    monkeypatch.setattr(poll_mailbox_task, "retry", fake_retry)

    with pytest.raises(Retry):
        poll_mailbox_task.run()

    assert len(retries) == 1
    assert isinstance(retries[0][0], ServiceUnavailableError)
    assert retries[0][1] == 30


def test_gives_up_after_last_retry(monkeypatch):
    def unavailable():
        raise ServiceUnavailableError("Mailbox unreachable", attempts=3)

    monkeypatch.setattr(pipeline_service, "run_poll_cycle", unavailable)

    poll_mailbox_task.push_request(retries=poll_mailbox_task.max_retries)
    try:
        result = poll_mailbox_task.run()
    finally:
        poll_mailbox_task.pop_request()

    assert result["status"] == "failed"
    assert "Mailbox unreachable" in result["error"]


def test_database_error_fails_without_retry(monkeypatch):
    def broken():
        raise PersistenceError("could not connect to server")

    monkeypatch.setattr(pipeline_service, "run_poll_cycle", broken)

    result = poll_mailbox_task.run()

    assert result == {"status": "failed", "error": "could not connect to server"}
