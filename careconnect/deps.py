"""FastAPI 依存関係：認証・権限・レート制限・設定チェック"""
import logging
import time
from collections import deque
from threading import Lock
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from . import config
from .database import get_db
from .errors import AuthError, ConfigurationError, ForbiddenError
from .models import Account, Profile
from .services.auth import AuthApiError, AuthProvider, localize_auth_error, log_confirmation_mail
from .services.profiles import ensure_profile

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/signin", auto_error=False)
_RATE_LIMIT_LOCK = Lock()
_RATE_LIMIT_STATE: dict = {}
_RATE_LIMIT_LAST_SWEEP = 0.0


def check_configuration() -> None:
    """必須の環境変数が欠けていればリクエストを失敗させる"""
    missing = [name for name in ("DATABASE_URL", "AUTH_SECRET_KEY") if not getattr(config, name)]
    if missing:
        logger.error(f"missing configuration: {', '.join(missing)}")
        raise ConfigurationError()


def get_mailer():
    """確認メールの送信関数（テストで差し替える）"""
    return log_confirmation_mail


def get_auth_provider(db: Session = Depends(get_db), mailer=Depends(get_mailer)) -> AuthProvider:
    return AuthProvider(db, mailer=mailer)


def get_access_token(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[str]:
    return token or None


def get_optional_account(
    token: Optional[str] = Depends(get_access_token),
    provider: AuthProvider = Depends(get_auth_provider),
) -> Optional[Account]:
    if not token:
        return None
    try:
        return provider.get_user(token)
    except AuthApiError:
        return None


def get_current_account(
    token: Optional[str] = Depends(get_access_token),
    provider: AuthProvider = Depends(get_auth_provider),
) -> Account:
    if not token:
        raise AuthError()
    try:
        return provider.get_user(token)
    except AuthApiError as e:
        raise AuthError(localize_auth_error(e.message))


def get_current_profile(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
) -> Profile:
    """プロフィール行がなければこの時点で作成する"""
    return ensure_profile(db, account)


def require_facility_operator(profile: Profile = Depends(get_current_profile)) -> Profile:
    if profile.user_type != "facility":
        raise ForbiddenError("事業所アカウントのみ利用できます")
    return profile


def is_admin(account: Account) -> bool:
    return (account.user_metadata or {}).get("role") == "admin"


def require_admin(account: Account = Depends(get_current_account)) -> Account:
    if not is_admin(account):
        raise ForbiddenError("Forbidden: Not an admin")
    return account


def _prune(bucket: deque, cutoff: float) -> None:
    while bucket and bucket[0] <= cutoff:
        bucket.popleft()


def enforce_rate_limit(
    *,
    scope: str,
    identity: str,
    max_requests: int,
    window_seconds: int = 60,
) -> None:
    """スライディングウィンドウ方式。超過時は AuthApiError("Too many requests")

    ウィンドウ内の記録がなくなったキーは削除する。
    """
    global _RATE_LIMIT_LAST_SWEEP
    now = time.time()
    cutoff = now - window_seconds
    key = f"{scope}:{identity}"

    with _RATE_LIMIT_LOCK:
        # 再訪されないキーもウィンドウ1回分ごとにまとめて掃除
        if now - _RATE_LIMIT_LAST_SWEEP >= window_seconds:
            for k in list(_RATE_LIMIT_STATE):
                _prune(_RATE_LIMIT_STATE[k], cutoff)
                if not _RATE_LIMIT_STATE[k]:
                    del _RATE_LIMIT_STATE[k]
            _RATE_LIMIT_LAST_SWEEP = now

        bucket = _RATE_LIMIT_STATE.get(key)
        if bucket is not None:
            _prune(bucket, cutoff)
            if not bucket:
                del _RATE_LIMIT_STATE[key]
                bucket = None

        if bucket is not None and len(bucket) >= max_requests:
            logger.warning(f"rate limit exceeded: {key}")
            raise AuthApiError("Too many requests", 429)

        _RATE_LIMIT_STATE.setdefault(key, deque()).append(now)


def reset_rate_limits() -> None:
    global _RATE_LIMIT_LAST_SWEEP
    with _RATE_LIMIT_LOCK:
        _RATE_LIMIT_STATE.clear()
        _RATE_LIMIT_LAST_SWEEP = 0.0
