"""アプリケーション例外とAPI境界でのエラーレスポンス

API境界ではすべてのエラーを {"error": "<message>"} の形で返す。
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """アプリケーション例外の基底"""
    status_code = 500
    default_message = "サーバーエラーが発生しました"

    def __init__(self, message: str = None, status_code: int = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ConfigurationError(AppError):
    """環境変数の不足など。リクエストは常に失敗する"""
    status_code = 500
    default_message = "Server configuration error"


class StoreError(AppError):
    """DBクエリの失敗"""
    status_code = 500
    default_message = "データベースの処理中にエラーが発生しました"


class ValidationError(AppError):
    status_code = 400
    default_message = "入力内容に誤りがあります"


class NotFoundError(AppError):
    status_code = 404
    default_message = "見つかりません"


class AuthError(AppError):
    status_code = 401
    default_message = "認証が必要です"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "この操作を行う権限がありません"


def _error_response(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        if exc.status_code == 405:
            message = "Method not allowed"
        return _error_response(exc.status_code, message, getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg', '入力内容に誤りがあります')}" if field else "入力内容に誤りがあります"
        return _error_response(422, message)
