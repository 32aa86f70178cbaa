"""Application-wide exception handlers.

Routers translate the errors they expect themselves. These handlers catch
what escapes them: store outages, raw database connectivity errors and any
other MetricStoreError. Bodies use the same ``{"detail": ...}`` shape as
HTTPException so clients parse a single format.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from metricstore.errors import (
    DuplicateDefinitionError,
    MetricStoreError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "1"

_STATUS_BY_ERROR: dict[type[MetricStoreError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateDefinitionError: status.HTTP_409_CONFLICT,
}


def _unavailable(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": {"message": message, "transient": True}},
        headers={"Retry-After": RETRY_AFTER_SECONDS},
    )


def _store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("%s %s failed, store unavailable: %s", request.method, request.url.path, exc.message)
    return _unavailable(exc.message)


def _database_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("%s %s failed, database error: %s", request.method, request.url.path, exc)
    return _unavailable("Database is unavailable")


def _metric_store_error_handler(request: Request, exc: MetricStoreError) -> JSONResponse:
    code = next(
        (code for error, code in _STATUS_BY_ERROR.items() if isinstance(exc, error)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    detail: dict = {"message": exc.message}
    if isinstance(exc, ValidationError):
        detail["errors"] = [e.to_dict() for e in exc.errors]
    if code >= 500:
        logger.error("Unhandled metric store error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=code, content={"detail": detail})


def register_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on ``app``. StoreUnavailableError wins over its base class."""
    app.add_exception_handler(StoreUnavailableError, _store_unavailable_handler)
    app.add_exception_handler(OperationalError, _database_error_handler)
    app.add_exception_handler(MetricStoreError, _metric_store_error_handler)
