"""認証エンドポイント"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import config
from ..database import get_db
from ..deps import (
    get_access_token, get_auth_provider, get_current_account,
    enforce_rate_limit, is_admin,
)
from ..errors import AppError, AuthError, ForbiddenError, ValidationError
from ..models import Account
from ..schemas import (
    SignUpIn, SignInIn, RefreshIn, CallbackIn,
    AuthResponse, CurrentUserOut, CallbackOut, MessageOut, UserOut,
)
from ..services.auth import AuthApiError, AuthProvider, IssuedSession, localize_auth_error
from ..services.callback import (
    parse_callback, resolve_callback, EmailConfirmed, CallbackFailed,
)
from ..services.profiles import ensure_profile
from ..services.validation import validate_password_confirmation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _user_out(account: Account) -> dict:
    return UserOut.model_validate(account).model_dump()


def _session_out(session: Optional[IssuedSession]) -> Optional[dict]:
    if session is None:
        return None
    return {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "token_type": session.token_type,
        "expires_in": session.expires_in,
        "expires_at": session.expires_at,
        "user": _user_out(session.user),
    }


def _auth_failed(e: AuthApiError) -> AppError:
    return AppError(localize_auth_error(e.message), status_code=e.status_code)


@router.post("/signup", response_model=AuthResponse, status_code=201)
def signup(
    payload: SignUpIn,
    db: Session = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    """アカウント作成。メール認証が必要な場合 session は null"""
    if payload.confirm_password is not None:
        ok, message = validate_password_confirmation(payload.password, payload.confirm_password)
        if not ok:
            raise ValidationError(message)
    # role（管理者権限）は利用者からは設定させない
    metadata = {k: v for k, v in payload.metadata.items() if k != "role"}
    try:
        account, session = provider.sign_up(payload.email, payload.password, metadata)
    except AuthApiError as e:
        raise _auth_failed(e)

    if session is not None:
        ensure_profile(db, account)
    return {"user": _user_out(account), "session": _session_out(session)}


@router.post("/signin", response_model=AuthResponse)
def signin(payload: SignInIn, provider: AuthProvider = Depends(get_auth_provider)):
    try:
        enforce_rate_limit(
            scope="signin",
            identity=(payload.email or "").strip().lower(),
            max_requests=config.SIGNIN_RATE_LIMIT_PER_MINUTE,
        )
        session = provider.sign_in_with_password(payload.email, payload.password)
    except AuthApiError as e:
        raise _auth_failed(e)
    return {"user": _user_out(session.user), "session": _session_out(session)}


@router.post("/signout", response_model=MessageOut)
def signout(
    token: Optional[str] = Depends(get_access_token),
    provider: AuthProvider = Depends(get_auth_provider),
):
    if not token:
        raise AuthError()
    try:
        provider.sign_out(token)
    except AuthApiError as e:
        raise _auth_failed(e)
    return {"message": "ログアウトしました"}


@router.post("/refresh", response_model=AuthResponse)
def refresh(payload: RefreshIn, provider: AuthProvider = Depends(get_auth_provider)):
    try:
        session = provider.refresh_session(payload.refresh_token)
    except AuthApiError as e:
        raise _auth_failed(e)
    return {"user": _user_out(session.user), "session": _session_out(session)}


@router.get("/user", response_model=CurrentUserOut)
def current_user(account: Account = Depends(get_current_account)):
    return {"user": _user_out(account), "isAdmin": is_admin(account)}


def _complete_callback(
    db: Session,
    provider: AuthProvider,
    params,
    token: Optional[str],
) -> dict:
    result = resolve_callback(provider, params, current_access_token=token)
    if isinstance(result, CallbackFailed):
        raise AppError(result.message, status_code=400)

    ensure_profile(db, result.user)
    status = "email_confirmed" if isinstance(result, EmailConfirmed) else "session_established"
    return {"status": status, "user": _user_out(result.user), "session": _session_out(result.session)}


@router.get("/callback", response_model=CallbackOut)
def callback_get(
    token_hash: Optional[str] = Query(None, description="メール認証トークン"),
    type: Optional[str] = Query(None, description="email / signup"),
    access_token: Optional[str] = Query(None),
    refresh_token: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
    token: Optional[str] = Depends(get_access_token),
):
    """メール内リンクの遷移先。クエリ文字列のみ（フラグメントはPOSTで渡す）"""
    params = parse_callback({
        "token_hash": token_hash,
        "type": type,
        "access_token": access_token,
        "refresh_token": refresh_token,
        "error": error,
        "error_description": error_description,
    })
    return _complete_callback(db, provider, params, token)


@router.post("/callback", response_model=CallbackOut)
def callback_post(
    payload: CallbackIn,
    db: Session = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
    token: Optional[str] = Depends(get_access_token),
):
    query = payload.model_dump(exclude={"fragment"})
    params = parse_callback(query, payload.fragment)
    return _complete_callback(db, provider, params, token)


@router.post("/admin-login", response_model=AuthResponse)
def admin_login(payload: SignInIn, provider: AuthProvider = Depends(get_auth_provider)):
    """管理者ログイン。admin ロールでなければセッションを破棄して 403"""
    if not payload.email or not payload.password:
        raise ValidationError("Email and password are required")
    try:
        session = provider.sign_in_with_password(payload.email, payload.password)
    except AuthApiError as e:
        logger.warning(f"admin login failed: {e.message}")
        raise AuthError("Invalid credentials")

    if not is_admin(session.user):
        provider.sign_out(session.access_token)
        raise ForbiddenError("Forbidden: Not an admin")
    return {"user": _user_out(session.user), "session": _session_out(session)}
