"""Celery tasks for mailbox polling."""

import os
from datetime import datetime

from celery_app import celery_app
from ingest.errors import PersistenceError, ServiceUnavailableError
from ingest.logging_config import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = int(os.getenv("EMAIL_MAX_ATTEMPTS", "3"))


@celery_app.task(bind=True, max_retries=MAX_ATTEMPTS, time_limit=900, soft_time_limit=840)
def poll_mailbox_task(self):
    """
    Run one poll cycle: fetch unread confirmations, extract, commit or queue.

    The stored cursor only advances when the cycle completes. An unreachable
    mailbox is retried with exponential backoff.

    Returns:
        dict: Cycle statistics
    """
    from services import pipeline_service

    self.update_state(state="STARTED", meta={"status": "polling"})

    try:
        report = pipeline_service.run_poll_cycle()
    except ServiceUnavailableError as e:
        if self.request.retries < self.max_retries:
            countdown = 30 * 2**self.request.retries  # 30, 60, 120 seconds
            logger.warning(
                f"Mailbox unavailable; retrying in {countdown}s "
                f"(attempt {self.request.retries + 1}/{self.max_retries})"
            )
            raise self.retry(exc=e, countdown=countdown)
        logger.error(f"Mailbox unavailable after {self.max_retries} task retries: {e}")
        return {"status": "failed", "error": str(e)}
    except PersistenceError as e:
        logger.error(f"Poll cycle aborted by database error: {e}")
        return {"status": "failed", "error": str(e)}

    return {
        "status": "completed",
        "stats": report.to_dict(),
        "completed_at": datetime.now().isoformat(),
    }
