"""Response envelope and error translation shared by all routers."""

from __future__ import annotations

from typing import Any, Generic, Optional, TypeVar

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.domain.errors import (
    BookingEngineError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)


T = TypeVar("T")


class CamelModel(BaseModel):
    """DTO base: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: str = ""


def ok(data: Any = None, message: str = "") -> dict[str, Any]:
    return {"success": True, "data": data, "message": message}


_STATUS_BY_ERROR: tuple[tuple[type[BookingEngineError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
)


def to_http_exception(exc: BookingEngineError) -> HTTPException:
    """Map an engine error onto the HTTP status the client should see."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped
            break
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status_code,
            detail={"message": str(exc), "data": exc.to_dict()},
        )
    return HTTPException(status_code=status_code, detail=str(exc))


def _envelope(status_code: int, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "data": jsonable_encoder(data), "message": message},
    )


def install_exception_handlers(app: FastAPI) -> None:
    """Render every error response in the ``{success, data, message}`` envelope."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request,
        exc: StarletteHTTPException,
    ) -> JSONResponse:
        detail = exc.detail
        if isinstance(detail, dict):
            return _envelope(exc.status_code, str(detail.get("message", "")), detail.get("data"))
        return _envelope(exc.status_code, str(detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        return _envelope(
            422,
            "Request validation failed",
            exc.errors(),
        )

    @app.exception_handler(Exception)
    async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def internal_error(message: str) -> HTTPException:
    """Log the active exception and hide its details from the client."""
    logger.exception(message)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=message,
    )
