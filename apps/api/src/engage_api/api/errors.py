"""Render engagement and infrastructure failures into the response envelope."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import DBAPIError

from engage_api.domain.errors import (
    INFRASTRUCTURE_ERROR_CODE,
    INFRASTRUCTURE_ERROR_MESSAGE,
    EngagementError,
    InvalidRequest,
)


async def engagement_error_handler(request: Request, exc: EngagementError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.as_payload())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
    error = InvalidRequest(detail={"fields": fields})
    return JSONResponse(status_code=error.http_status, content=error.as_payload())


async def database_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    logger.exception("Persistence failure", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"code": INFRASTRUCTURE_ERROR_CODE, "message": INFRASTRUCTURE_ERROR_MESSAGE, "data": None},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngagementError, engagement_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DBAPIError, database_error_handler)  # type: ignore[arg-type]


__all__ = ["register_exception_handlers"]
