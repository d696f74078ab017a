"""Middleware registration."""

from fastapi import FastAPI

from pokerdna.config import Settings
from pokerdna.middleware.error_handler import setup_error_handlers
from pokerdna.middleware.logging import setup_logging
from pokerdna.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
