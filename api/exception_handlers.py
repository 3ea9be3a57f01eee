"""
Exception handlers for the exchange router API

Maps the router's error taxonomy onto HTTP status codes:
- PolicyViolationError -> 409 (shown to the user as-is)
- TransientFetchError / UpstreamStalenessError -> 503, retryable
- AggregationFailure / InvalidDataError / RpcResponseError -> 502
- ConfigurationError -> 500
- ValueError -> 400 (bad request parameters)
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request

from api.utils import error_response
from shared.exceptions import (
    AggregationFailure,
    ConfigurationError,
    ExchangeRouterException,
    InvalidDataError,
    PolicyViolationError,
    RpcResponseError,
    TransientFetchError,
    UpstreamStalenessError,
)

logger = logging.getLogger(__name__)


def status_for(exc: ExchangeRouterException) -> int:
    if isinstance(exc, PolicyViolationError):
        return 409
    if isinstance(exc, (TransientFetchError, UpstreamStalenessError)):
        return 503
    if isinstance(exc, (AggregationFailure, InvalidDataError, RpcResponseError)):
        return 502
    if isinstance(exc, ConfigurationError):
        return 500
    return 400


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Configure global exception handlers for the FastAPI application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(ExchangeRouterException)
    async def router_exception_handler(request: Request, exc: ExchangeRouterException):
        """Gestionnaire pour toutes les exceptions du routeur"""
        status_code = status_for(exc)
        if status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
        details = dict(exc.details)
        details["path"] = request.url.path
        return error_response(
            exc.message,
            code=status_code,
            details=details,
            error=exc.__class__.__name__,
            retryable=isinstance(exc, (TransientFetchError, UpstreamStalenessError)),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """Paramètres de requête invalides"""
        return error_response(str(exc), code=400, details={"path": request.url.path}, error="ValueError")

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Gestionnaire pour toutes les autres exceptions"""
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True
        )
        return error_response(
            "An unexpected error occurred",
            code=500,
            details={"path": request.url.path, "reason": str(exc) if app.debug else None},
            error="InternalServerError",
        )
