"""
Email Routes - Flask Blueprint

Mailbox sync trigger and inbox status. Routes are thin controllers that
delegate to pipeline_service for business logic.
"""

from flask import Blueprint, jsonify

from services import pipeline_service
from tasks.email_tasks import poll_mailbox_task

email_bp = Blueprint("email", __name__, url_prefix="/api/email")


@email_bp.route("/sync", methods=["POST"])
def sync():
    """Queue a poll cycle in the background."""
    task = poll_mailbox_task.delay()
    return jsonify({"task_id": task.id, "status": "queued"}), 202


@email_bp.route("/status", methods=["GET"])
def status():
    """Incoming email counts by status, plus the archived total."""
    return jsonify(pipeline_service.get_inbox_status())
