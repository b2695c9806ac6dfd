"""
Review Routes - Flask Blueprint

Manual review queue: list pending candidates, approve (optionally with
corrections) or reject. Routes are thin controllers that delegate to
review_service for business logic.
"""

from flask import Blueprint, jsonify, request

from ingest.errors import (
    InvalidOverrideError,
    PersistenceError,
    ReviewItemNotFoundError,
    ReviewStateError,
)
from ingest.logging_config import get_logger
from services import review_service

logger = get_logger(__name__)

review_bp = Blueprint("review", __name__, url_prefix="/api/review")


@review_bp.route("", methods=["GET"])
def list_items():
    """
    List review items, most urgent first.

    Query params:
        status (str): pending | approved | rejected | all (default: pending)
        limit (int): Page size (default: 100)
        offset (int): Page offset (default: 0)
    """
    try:
        status = request.args.get("status", "pending")
        limit = int(request.args.get("limit", 100))
        offset = int(request.args.get("offset", 0))
    except ValueError:
        return jsonify({"error": "limit and offset must be integers"}), 400

    if status not in ("pending", "approved", "rejected", "all"):
        return jsonify({"error": f"Invalid status: {status}"}), 400

    items = review_service.list_items(None if status == "all" else status, limit, offset)
    return jsonify({"items": items, "count": len(items)})


@review_bp.route("/stats", methods=["GET"])
def stats():
    """Counts by status and pending counts by priority."""
    return jsonify(review_service.get_stats())


@review_bp.route("/<int:item_id>", methods=["GET"])
def get_item(item_id):
    try:
        return jsonify(review_service.get_item(item_id))
    except ReviewItemNotFoundError as e:
        return jsonify({"error": str(e)}), 404


@review_bp.route("/<int:item_id>/approve", methods=["POST"])
def approve(item_id):
    """
    Approve a review item.

    Body (JSON, optional):
        notes (str): Reviewer notes
        overrides (dict): Field corrections, e.g. {"symbol": "AAPL", "portfolio_id": 2}

    Returns:
        200 with the committed transaction, or 422 when the candidate still
        cannot be committed (the item stays pending)
    """
    data = request.get_json(silent=True) or {}
    overrides = data.get("overrides") or {}
    if not isinstance(overrides, dict):
        return jsonify({"error": "overrides must be an object"}), 400

    try:
        result = review_service.approve_item(item_id, notes=data.get("notes"), overrides=overrides)
    except InvalidOverrideError as e:
        return jsonify({"error": str(e)}), 400
    except ReviewItemNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ReviewStateError as e:
        return jsonify({"error": str(e)}), 409
    except PersistenceError as e:
        logger.error(f"Approve failed for review item {item_id}: {e}")
        return jsonify({"error": "Database error"}), 500

    if result["gate_status"] == "needs_review":
        return jsonify(result), 422
    return jsonify(result)


@review_bp.route("/<int:item_id>/reject", methods=["POST"])
def reject(item_id):
    """
    Reject a review item.

    Body (JSON):
        reason (str): Why the email is not a valid trade
    """
    data = request.get_json(silent=True) or {}
    try:
        return jsonify(review_service.reject_item(item_id, reason=data.get("reason")))
    except ReviewItemNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ReviewStateError as e:
        return jsonify({"error": str(e)}), 409
    except PersistenceError as e:
        logger.error(f"Reject failed for review item {item_id}: {e}")
        return jsonify({"error": "Database error"}), 500
