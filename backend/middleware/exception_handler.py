"""
統一異常處理中間件
將服務層的例外轉成標準 ErrorResponse
"""

import os
import traceback

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.models.response_models import create_error_response
from backend.utils.exceptions import InsightDeskException
from backend.utils.logger import get_logger

logger = get_logger(__name__)


def _error_json(status_code: int, error: str, code: str, details=None) -> JSONResponse:
    error_response = create_error_response(error=error, code=code, details=details)
    return JSONResponse(
        status_code=status_code, content=error_response.model_dump(mode="json")
    )


async def insight_desk_exception_handler(request: Request, exc: InsightDeskException):
    """處理自定義的 InsightDeskException"""
    logger.warning(
        f"{request.method} {request.url.path} - {exc.code}: {exc.message}",
        extra={"details": exc.details},
    )
    return _error_json(
        exc.status_code, exc.message, exc.code, jsonable_encoder(exc.details)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """處理 Pydantic 請求驗證錯誤"""
    errors = [
        f"{' -> '.join(str(loc) for loc in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    error_message = "Request validation failed: " + "; ".join(errors)
    logger.warning(f"{request.method} {request.url.path} - {error_message}")

    return _error_json(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        error_message,
        "VALIDATION_ERROR",
        {"validation_errors": jsonable_encoder(exc.errors())},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(
        f"{request.method} {request.url.path} - HTTP {exc.status_code}: {exc.detail}"
    )
    return _error_json(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


async def general_exception_handler(request: Request, exc: Exception):
    """
    處理未預期的一般異常

    DEBUG=true 時才回傳堆疊追蹤
    """
    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"Unhandled Exception on {request.method} {request.url.path}: {exc}\n{tb_str}"
    )

    details = None
    if os.getenv("DEBUG", "false").lower() == "true":
        details = {"exception_type": type(exc).__name__, "traceback": tb_str.split("\n")}

    return _error_json(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error, please try again later.",
        "INTERNAL_SERVER_ERROR",
        details,
    )


def register_exception_handlers(app):
    """註冊所有異常處理器到 FastAPI 應用"""
    app.add_exception_handler(InsightDeskException, insight_desk_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("已註冊所有異常處理器")
