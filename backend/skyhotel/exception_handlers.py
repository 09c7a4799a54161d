import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from skyhotel.errors import InvariantViolation, SkyHotelError, error_response

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SkyHotelError)
    async def domain_error_handler(request: Request, exc: SkyHotelError) -> JSONResponse:
        if isinstance(exc, InvariantViolation):
            logger.error(f"Invariant violation on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=error_response(
                "VALIDATION_ERROR",
                "Request validation failed",
                {"errors": jsonable_encoder(exc.errors())},
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
        if isinstance(exc.detail, str):
            message, details = exc.detail, {}
        elif isinstance(exc.detail, dict):
            message, details = exc.detail.get("message", "HTTP error"), exc.detail
        else:
            message, details = "HTTP error", {}
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(code, message, details),
            headers=getattr(exc, "headers", None),
        )
