"""Middleware registration."""

from fastapi import FastAPI

from skillify.config import Settings
from skillify.middleware.error_handler import setup_error_handlers
from skillify.middleware.logging import setup_logging
from skillify.middleware.request_context import RequestContextMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging, error handlers and the request context middleware."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestContextMiddleware)
