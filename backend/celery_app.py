"""Celery application configuration for asynchronous task processing."""

import contextlib
import os

from celery import Celery
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Initialize Celery
celery_app = Celery(
    "trade_ingest_tasks",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1200,
    task_soft_time_limit=1140,
    result_expires=3600,  # Keep results for 1 hour
    # One cycle at a time: the cursor assumes sequential polls
    worker_prefetch_multiplier=1,
)

# Poll the mailbox on a fixed interval when beat is running
celery_app.conf.beat_schedule = {
    "poll-mailbox": {
        "task": "tasks.email_tasks.poll_mailbox_task",
        "schedule": float(os.getenv("EMAIL_POLL_INTERVAL_SECONDS", "300")),
    },
}

# Tasks are registered via @celery_app.task decorators in their respective modules
# Import tasks to ensure they're registered with Celery
with contextlib.suppress(ImportError):
    from tasks import email_tasks  # noqa: F401
