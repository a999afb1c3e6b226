"""
Обработчики исключений HTTP-сервисов.

Все ошибки отдаются телом {"ok": false, "error": "..."}.
"""

from __future__ import annotations

import math

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ridetrack.common.exceptions import RateLimitError, StorageError, ValidationError
from ridetrack.common.logger import log_error, log_warning
from ridetrack.shared.models.common import ErrorResponse


def error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
        headers=headers,
    )


def _first_error(errors: list[dict]) -> str:
    if not errors:
        return "invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Тело или параметры запроса не прошли схему."""
    return error_response(status.HTTP_400_BAD_REQUEST, _first_error(exc.errors()))


async def pydantic_validation_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, _first_error(exc.errors()))


async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, str(exc))


async def rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    retry_after = max(1, math.ceil(exc.retry_after))
    await log_warning(f"{request.url.path}: {exc}")
    return error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "too many updates",
        headers={"Retry-After": str(retry_after)},
    )


async def storage_handler(request: Request, exc: StorageError) -> JSONResponse:
    await log_error(f"{request.url.path}: ошибка хранилища: {exc}")
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "storage unavailable")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """404, 405 и прочие ошибки маршрутизации."""
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PydanticValidationError, pydantic_validation_handler)
    app.add_exception_handler(ValidationError, validation_handler)
    app.add_exception_handler(RateLimitError, rate_limit_handler)
    app.add_exception_handler(StorageError, storage_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
