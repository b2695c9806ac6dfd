"""
Services Package - Business Logic Layer

This package contains service modules that encapsulate business logic,
separating it from HTTP routing concerns.

Services can be called from:
- Flask routes (HTTP requests)
- CLI commands
- Background tasks (Celery)
- Tests

Available services:
- pipeline_service: Pipeline wiring and poll cycles
- review_service: Review queue decisions and listings
"""

from . import pipeline_service, review_service

__all__ = [
    "pipeline_service",
    "review_service",
]
