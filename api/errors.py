"""Global exception handlers for FastAPI."""

import logging

import pydantic
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from clients.checkout_client import CheckoutError
from core.errors import (
    ValidationError,
    NotFoundError,
    InvalidTransitionError,
    PersistenceError,
    ConflictError,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(ValidationError)
    async def domain_validation_handler(request: Request, exc: ValidationError):
        return _error(400, ErrorCodes.VALIDATION_ERROR, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, ErrorCodes.NOT_FOUND, str(exc))

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError):
        return _error(409, ErrorCodes.INVALID_STATUS_TRANSITION, str(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return _error(409, ErrorCodes.CONFLICT, str(exc))

    @app.exception_handler(PersistenceError)
    async def persistence_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence failure on {request.url.path}: {exc}")
        return _error(503, ErrorCodes.SERVICE_UNAVAILABLE, "Storage is temporarily unavailable")

    @app.exception_handler(CheckoutError)
    async def checkout_handler(request: Request, exc: CheckoutError):
        return _error(502, ErrorCodes.PAYMENT_PROVIDER_ERROR, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(KeyError)
    async def missing_field_handler(request: Request, exc: KeyError):
        return _error(400, ErrorCodes.INVALID_REQUEST, f"Missing required field: {exc.args[0]}")

    @app.exception_handler(pydantic.ValidationError)
    async def model_validation_handler(request: Request, exc: pydantic.ValidationError):
        return _error(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors(include_url=False)))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _error(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
