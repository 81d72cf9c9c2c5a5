"""
统一错误处理

所有业务错误都继承 AppError，带稳定的错误码和 HTTP 状态码，
由 register_exception_handlers 注册的处理器统一渲染为：

    {"success": false, "error": {"code": ..., "message": ..., "statusCode": ...}}
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """可预期的业务错误基类"""

    code = "INTERNAL"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AppError):
    """缺少字段、字段非法、金额超限"""
    code = "VALIDATION"
    status_code = 400


class AmountExceededError(ValidationError):
    """开票金额超过项目剩余可开票额度"""

    def __init__(self, message: str, remaining):
        super().__init__(message, details={"remaining": float(remaining)})
        self.remaining = remaining


class AuthenticationError(AppError):
    code = "AUTHORIZATION"
    status_code = 401


class AuthorizationError(AppError):
    """角色不对，或不是该操作的当事人"""
    code = "AUTHORIZATION"
    status_code = 403


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(AppError):
    """当前状态不允许该操作（如重复确认）"""
    code = "INVALID_STATE"
    status_code = 400


class DuplicateError(AppError):
    code = "DUPLICATE"
    status_code = 400


class InternalError(AppError):
    code = "INTERNAL"
    status_code = 500


def error_body(code: str, message: str, status_code: int,
               details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """构建统一格式的错误响应体"""
    error = {"code": code, "message": message, "statusCode": status_code}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[{exc.code}] {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"[{exc.code}] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.status_code, exc.details),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", []) if p not in ("body", "query", "path"))
        messages.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    message = "; ".join(messages) or "请求参数验证失败"
    return JSONResponse(
        status_code=400,
        content=error_body(ValidationError.code, message, 400),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        code = NotFoundError.code
        message = f"未找到资源: {request.method} {request.url.path}"
    elif exc.status_code in (401, 403):
        code = AuthorizationError.code
        message = str(exc.detail)
    elif exc.status_code >= 500:
        code = InternalError.code
        message = str(exc.detail)
    else:
        code = ValidationError.code
        message = str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content=error_body(code, message, exc.status_code))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"未处理的异常: {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=error_body(InternalError.code, "服务器内部错误，请稍后重试", 500),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """注册统一错误处理器"""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
