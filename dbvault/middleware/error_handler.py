"""Error handlers: one JSON error envelope for every route."""

from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import DbVaultError
from ..utils.logging import get_logger

logger = get_logger("middleware.error_handler")


def _envelope(request: Request, status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "status_code": status_code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": getattr(request.state, "request_id", None),
            **extra,
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register standard error handlers on the app."""

    @app.exception_handler(DbVaultError)
    async def dbvault_error_handler(request: Request, exc: DbVaultError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "request_failed",
            path=str(request.url.path),
            code=exc.code,
            status=exc.status_code,
            error=exc.message,
        )
        extra = {"code": exc.code}
        if exc.context:
            extra["details"] = exc.context
        return _envelope(request, exc.status_code, exc.message, **extra)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _envelope(request, exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _envelope(request, 422, "Validation error", errors=jsonable_errors(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            request_id=getattr(request.state, "request_id", None),
            path=str(request.url.path),
            exc_info=True,
        )
        return _envelope(request, 500, "Internal server error")


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
