"""Exception handlers: every failure leaves as a JSON envelope with a stable code."""

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from skillify.errors import SkillifyError

logger = structlog.get_logger()


def _envelope(status_code: int, detail: object, code: str, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code, **extra})


def setup_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(SkillifyError)
    async def domain_error(request: Request, exc: SkillifyError) -> JSONResponse:
        log = logger.warning if exc.status_code >= 500 else logger.info
        log("domain_error", path=request.url.path, code=exc.code, detail=exc.message)
        return _envelope(exc.status_code, exc.message, exc.code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        response = _envelope(exc.status_code, exc.detail, f"http_{exc.status_code}")
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return _envelope(422, "Validation error", "validation_error", errors=jsonable_encoder(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return _envelope(500, "Internal server error", "internal_error")
