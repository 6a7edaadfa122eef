"""Domain error taxonomy and the FastAPI handlers that render it.

Every error raised by the ledger core is a `DomainError`; the handlers map
each subclass to a stable `error` code and HTTP status so callers never need
to parse messages.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette import status
import logging

logger = logging.getLogger("cuentas.errors")


class DomainError(Exception):
    code = "domain_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(DomainError):
    """Malformed quote or transaction input. Nothing was persisted."""

    code = "validation_error"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidStateError(DomainError):
    """Operation not allowed in the record's current state. Nothing was persisted."""

    code = "invalid_state"
    http_status = status.HTTP_409_CONFLICT


class NotFoundError(DomainError):
    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class ConsistencyFault(DomainError):
    """Cached balances disagree with a fresh recompute beyond tolerance."""

    code = "consistency_fault"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, customer_id: int, cached: dict, fresh: dict):
        super().__init__(
            f"cached balances for customer {customer_id} disagree with recompute"
        )
        self.customer_id = customer_id
        self.cached = cached
        self.fresh = fresh


def domain_error_handler(request: Request, exc: DomainError):  # type: ignore
    if isinstance(exc, ConsistencyFault):
        logger.error(
            "consistency fault surfaced to client",
            extra={"customer_id": exc.customer_id},
        )
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": exc.code, "detail": exc.detail},
    )


def not_found_handler(request: Request, exc):  # type: ignore
    if exc.status_code != status.HTTP_404_NOT_FOUND:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "http_error", "detail": exc.detail},
        )
    detail = exc.detail
    if detail == "Not Found":
        detail = f"No route for {request.method} {request.url.path}"
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "not_found", "detail": detail},
    )


def validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


def server_error_handler(request: Request, exc: Exception):  # type: ignore
    logger.exception("unhandled exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "detail": "An unexpected error occurred.",
        },
    )
