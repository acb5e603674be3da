"""Exception handlers mapping errors to the JSON error body"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ledger_bank_api.domain.exceptions import DomainException

logger = logging.getLogger(__name__)

HTTP_STATUS_REASONS = {
    401: "invalid_token",
    403: "forbidden",
    404: "not_found",
    405: "validation_error",
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        extra = {
            "request_id": _request_id(request),
            "reason": exc.reason,
            "category": exc.category,
            "correlation_id": exc.correlation_id,
        }
        if exc.http_status >= 500:
            logger.error(f"Request failed: {exc.message}", extra=extra)
        else:
            logger.info(f"Request rejected: {exc.message}", extra=extra)
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err["loc"] if part != "body"), "message": err["msg"]}
            for err in exc.errors()
        ]
        error = DomainException("validation_error", "Request validation failed", {"errors": errors})
        return JSONResponse(status_code=error.http_status, content=error.to_response())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        reason = HTTP_STATUS_REASONS.get(exc.status_code, "internal_server_error")
        error = DomainException(reason, str(exc.detail))
        body = error.to_response()
        body["error"]["code"] = exc.status_code
        return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error: {exc}", extra={"request_id": _request_id(request)}, exc_info=exc)
        error = DomainException("internal_server_error", "Internal server error")
        return JSONResponse(status_code=500, content=error.to_response())
