"""認証サービス：アカウント・セッション・メール認証

パスワードは passlib (bcrypt) でハッシュ化する。アクセストークンは
python-jose で署名した JWT、リフレッシュトークンは乱数をハッシュ化して
auth_sessions に保持する。エラーは英語の定型文で AuthApiError として送出し、
利用者向けの文言には localize_auth_error で変換する。
"""
import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import config
from ..models import Account, AuthSession
from .validation import validate_email, MIN_PASSWORD_LENGTH

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# メール認証リンクの有効期限
CONFIRMATION_TTL = timedelta(hours=24)
EMAIL_OTP_TYPES = ("email", "signup")

# 認証エラー文言（部分一致） → 利用者向けメッセージ
AUTH_ERROR_MESSAGES = [
    ("invalid login credentials", "メールアドレスまたはパスワードが正しくありません"),
    ("email not confirmed", "メールアドレスが認証されていません。送信されたメールから認証を完了してください。"),
    ("user already registered", "このメールアドレスは既に登録されています"),
    ("password should be at least 6 characters", "パスワードは6文字以上で入力してください"),
    ("unable to validate email address", "有効なメールアドレスを入力してください"),
    ("too many requests", "リクエストが多すぎます。しばらく時間をおいて再度お試しください。"),
]


class AuthApiError(Exception):
    """認証処理のエラー（プロバイダの定型文）"""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def localize_auth_error(message: Optional[str]) -> str:
    """認証エラーの日本語化。該当しない場合は元の文言を返す"""
    if not message:
        return "不明なエラーが発生しました"
    lowered = message.lower()
    for needle, localized in AUTH_ERROR_MESSAGES:
        if needle in lowered:
            return localized
    return message


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.utcnow()


def confirmation_link(token: str) -> str:
    return f"{config.SITE_URL}/auth/callback?token_hash={token}&type=email"


def log_confirmation_mail(account: Account, token: str) -> None:
    """確認メールの送信（メール配送は外部に任せ、リンクをログに出す）"""
    logger.info(f"confirmation mail for {account.email}: {confirmation_link(token)}")


@dataclass
class IssuedSession:
    access_token: str
    refresh_token: str
    expires_in: int
    expires_at: int
    user: Account
    token_type: str = "bearer"


class AuthProvider:
    """アカウントとセッションの管理"""

    def __init__(
        self,
        db: Session,
        mailer: Callable[[Account, str], None] = log_confirmation_mail,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        expire_minutes: Optional[int] = None,
        autoconfirm: Optional[bool] = None,
    ):
        self.db = db
        self.mailer = mailer
        self.secret_key = secret_key or config.AUTH_SECRET_KEY
        self.algorithm = algorithm or config.AUTH_ALGORITHM
        self.expire_minutes = expire_minutes or config.ACCESS_TOKEN_EXPIRE_MINUTES
        self.autoconfirm = config.AUTH_AUTOCONFIRM if autoconfirm is None else autoconfirm

    # === アカウント ===

    def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None):
        """アカウント作成。(account, session) を返す。

        メール認証が必要な場合 session は None。プロフィール行はここでは作らない。
        """
        email = (email or "").strip().lower()
        if not validate_email(email):
            raise AuthApiError("Unable to validate email address: invalid format")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise AuthApiError("Password should be at least 6 characters", 422)
        if self.db.query(Account).filter(Account.email == email).first():
            raise AuthApiError("User already registered", 422)

        now = _now()
        account = Account(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(password),
            user_metadata=dict(metadata or {}),
        )
        token = None
        if self.autoconfirm:
            account.email_confirmed_at = now
        else:
            token = secrets.token_urlsafe(32)
            account.confirmation_token_hash = hash_token(token)
            account.confirmation_sent_at = now

        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise AuthApiError("User already registered", 422)
        self.db.refresh(account)
        logger.info(f"sign up: {account.id} ({account.email})")

        if token:
            self.mailer(account, token)
            return account, None
        return account, self._issue_session(account)

    def sign_in_with_password(self, email: str, password: str) -> IssuedSession:
        email = (email or "").strip().lower()
        account = self.db.query(Account).filter(Account.email == email).first()
        if not account or not verify_password(password or "", account.password_hash):
            raise AuthApiError("Invalid login credentials")
        if account.email_confirmed_at is None:
            raise AuthApiError("Email not confirmed")

        account.last_sign_in_at = _now()
        self.db.commit()
        return self._issue_session(account)

    def verify_otp(self, token_hash: str, type: str = "email") -> IssuedSession:
        """メール認証リンクのトークンを検証し、セッションを発行"""
        if type not in EMAIL_OTP_TYPES:
            raise AuthApiError(f"Invalid OTP type: {type}")
        account = (
            self.db.query(Account)
            .filter(Account.confirmation_token_hash == hash_token(token_hash or ""))
            .first()
        )
        if not account or not account.confirmation_sent_at:
            raise AuthApiError("Token has expired or is invalid", 403)
        if _now() - account.confirmation_sent_at > CONFIRMATION_TTL:
            raise AuthApiError("Token has expired or is invalid", 403)

        account.email_confirmed_at = account.email_confirmed_at or _now()
        account.confirmation_token_hash = None
        account.last_sign_in_at = _now()
        self.db.commit()
        logger.info(f"email confirmed: {account.id}")
        return self._issue_session(account)

    def update_user(
        self,
        account: Account,
        password: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Account:
        if password is not None:
            if len(password) < MIN_PASSWORD_LENGTH:
                raise AuthApiError("Password should be at least 6 characters", 422)
            account.password_hash = hash_password(password)
        if metadata:
            merged = dict(account.user_metadata or {})
            merged.update(metadata)
            account.user_metadata = merged
        self.db.commit()
        self.db.refresh(account)
        return account

    def delete_user(self, user_id: str) -> bool:
        account = self.db.get(Account, user_id)
        if account is None:
            return False
        self.db.delete(account)
        self.db.commit()
        logger.info(f"account deleted: {user_id}")
        return True

    # === セッション ===

    def _encode_access_token(self, account: Account, session_id: str) -> tuple:
        issued_at = datetime.now(timezone.utc)
        expire_at = issued_at + timedelta(minutes=self.expire_minutes)
        payload = {
            "sub": account.id,
            "email": account.email,
            "sid": session_id,
            "role": "authenticated",
            "iat": int(issued_at.timestamp()),
            "exp": int(expire_at.timestamp()),
        }
        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        return token, int(expire_at.timestamp())

    def _issue_session(self, account: Account, row: Optional[AuthSession] = None) -> IssuedSession:
        refresh_token = secrets.token_urlsafe(32)
        if row is None:
            row = AuthSession(id=str(uuid.uuid4()), user_id=account.id, refresh_token_hash=hash_token(refresh_token))
            self.db.add(row)
        else:
            row.refresh_token_hash = hash_token(refresh_token)
            row.refreshed_at = _now()
        self.db.commit()

        access_token, expires_at = self._encode_access_token(account, row.id)
        return IssuedSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.expire_minutes * 60,
            expires_at=expires_at,
            user=account,
        )

    def decode_access_token(self, access_token: str, verify_exp: bool = True) -> dict:
        try:
            return jwt.decode(
                access_token or "", self.secret_key,
                algorithms=[self.algorithm], options={"verify_exp": verify_exp},
            )
        except ExpiredSignatureError:
            raise AuthApiError("JWT expired", 401)
        except JWTError:
            raise AuthApiError("Invalid JWT", 401)

    def _active_session(self, session_id: Optional[str]) -> AuthSession:
        row = self.db.get(AuthSession, session_id) if session_id else None
        if row is None or row.revoked_at is not None:
            raise AuthApiError("Session not found", 401)
        return row

    def get_user(self, access_token: str) -> Account:
        """アクセストークンからアカウントを取得（失効済みセッションは不可）"""
        claims = self.decode_access_token(access_token)
        self._active_session(claims.get("sid"))
        account = self.db.get(Account, claims.get("sub"))
        if account is None:
            raise AuthApiError("User not found", 401)
        return account

    def refresh_session(self, refresh_token: str) -> IssuedSession:
        """リフレッシュトークンを使ってトークンを再発行（ローテーション）"""
        row = (
            self.db.query(AuthSession)
            .filter(AuthSession.refresh_token_hash == hash_token(refresh_token or ""))
            .first()
        )
        if row is None or row.revoked_at is not None:
            raise AuthApiError("Invalid Refresh Token: Refresh Token Not Found", 401)
        return self._issue_session(row.account, row)

    def set_session(self, access_token: str, refresh_token: str) -> IssuedSession:
        """既存のトークン組からセッションを復元。期限切れならリフレッシュ"""
        try:
            claims = self.decode_access_token(access_token)
        except AuthApiError as e:
            if e.message != "JWT expired":
                raise
            return self.refresh_session(refresh_token)

        row = self._active_session(claims.get("sid"))
        if row.refresh_token_hash != hash_token(refresh_token or ""):
            raise AuthApiError("Invalid Refresh Token: Refresh Token Not Found", 401)
        account = self.db.get(Account, claims.get("sub"))
        if account is None:
            raise AuthApiError("User not found", 401)

        expires_at = int(claims["exp"])
        return IssuedSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=max(0, expires_at - int(datetime.now(timezone.utc).timestamp())),
            expires_at=expires_at,
            user=account,
        )

    def sign_out(self, access_token: str) -> None:
        """セッションを失効させる。期限切れのトークンでもログアウトは可能"""
        claims = self.decode_access_token(access_token, verify_exp=False)
        row = self.db.get(AuthSession, claims.get("sid"))
        if row is not None and row.revoked_at is None:
            row.revoked_at = _now()
            self.db.commit()
