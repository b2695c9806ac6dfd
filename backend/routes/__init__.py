"""Routes package for API endpoints."""

from routes.email import email_bp
from routes.review import review_bp

__all__ = [
    "email_bp",
    "review_bp",
]
