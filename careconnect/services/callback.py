"""認証コールバックの解析

メールテンプレートによってパラメータの渡し方が異なるため、
URLのフラグメント・クエリを1つの型に正規化してから解決する。

  token_hash + type=email        → TokenHashParams
  access_token + refresh_token   → TokenPairParams
  error / error_description      → ProviderErrorParams
  （なし）                        → NoParams（既存セッションがあればそれを使う）
"""
import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Union
from urllib.parse import parse_qsl

from ..models import Account
from .auth import AuthApiError, AuthProvider, IssuedSession, EMAIL_OTP_TYPES, localize_auth_error

logger = logging.getLogger(__name__)

CALLBACK_NOT_FOUND_MESSAGE = "認証情報が見つかりません"


@dataclass(frozen=True)
class TokenHashParams:
    token_hash: str
    type: str


@dataclass(frozen=True)
class TokenPairParams:
    access_token: str
    refresh_token: str
    type: Optional[str] = None


@dataclass(frozen=True)
class ProviderErrorParams:
    description: str


@dataclass(frozen=True)
class NoParams:
    pass


CallbackParams = Union[TokenHashParams, TokenPairParams, ProviderErrorParams, NoParams]


@dataclass(frozen=True)
class EmailConfirmed:
    user: Account
    session: IssuedSession


@dataclass(frozen=True)
class SessionEstablished:
    user: Account
    session: Optional[IssuedSession] = None


@dataclass(frozen=True)
class CallbackFailed:
    message: str


CallbackResult = Union[EmailConfirmed, SessionEstablished, CallbackFailed]


def parse_callback(query: Mapping[str, Optional[str]], fragment: Optional[str] = "") -> CallbackParams:
    """フラグメント（#以降）とクエリ文字列を統合して解析。クエリを優先する"""
    params = {}
    for key, value in parse_qsl((fragment or "").lstrip("#")):
        if value:
            params[key] = value
    for key, value in query.items():
        if value:
            params[key] = value

    if params.get("error") or params.get("error_description"):
        return ProviderErrorParams(params.get("error_description") or params["error"])

    token_hash = params.get("token_hash")
    otp_type = params.get("type")
    if token_hash and otp_type in EMAIL_OTP_TYPES:
        return TokenHashParams(token_hash=token_hash, type=otp_type)

    access_token = params.get("access_token")
    refresh_token = params.get("refresh_token")
    if access_token and refresh_token:
        return TokenPairParams(access_token=access_token, refresh_token=refresh_token, type=otp_type)

    return NoParams()


def resolve_callback(
    provider: AuthProvider,
    params: CallbackParams,
    current_access_token: Optional[str] = None,
) -> CallbackResult:
    """解析済みパラメータをセッションに交換する"""
    try:
        if isinstance(params, ProviderErrorParams):
            return CallbackFailed(params.description)

        if isinstance(params, TokenHashParams):
            session = provider.verify_otp(params.token_hash, params.type)
            return EmailConfirmed(user=session.user, session=session)

        if isinstance(params, TokenPairParams):
            session = provider.set_session(params.access_token, params.refresh_token)
            if params.type in EMAIL_OTP_TYPES:
                return EmailConfirmed(user=session.user, session=session)
            return SessionEstablished(user=session.user, session=session)

        if current_access_token:
            return SessionEstablished(user=provider.get_user(current_access_token))
    except AuthApiError as e:
        logger.warning(f"auth callback failed: {e.message}")
        return CallbackFailed(localize_auth_error(e.message))

    return CallbackFailed(CALLBACK_NOT_FOUND_MESSAGE)
