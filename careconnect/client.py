"""ケアコネクト API クライアント（requests）

画面側で必要になる状態をまとめたもの。

- CareConnectClient: API呼び出しと認証セッション（AuthSession）の保持
- AuthState: 起動時に一度セッションを取得し、以降は認証イベントで更新
- SearchController: 検索ごとに連番を振り、最新以外のレスポンスは捨てる
- BookmarkCache: ブックマーク済み事業所IDのローカルキャッシュ

認証状態はモジュール変数ではなく、クライアントのインスタンスが持つ。
"""
import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

import requests

from .services.validation import validate_email, validate_password, validate_password_confirmation

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"

DEFAULT_LIMIT = 12
MAP_VIEW_LIMIT = 1000


class CareConnectError(Exception):
    """API が {"error": ...} を返した場合"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class AuthSession:
    access_token: str
    refresh_token: str
    expires_at: int
    user: Dict[str, Any] = field(default_factory=dict)
    token_type: str = "bearer"

    @classmethod
    def from_payload(cls, payload: Optional[dict]) -> Optional["AuthSession"]:
        if not payload:
            return None
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_at=int(payload["expires_at"]),
            user=payload.get("user") or {},
            token_type=payload.get("token_type", "bearer"),
        )

    @property
    def expired(self) -> bool:
        return self.expires_at <= int(time.time())


class Subscription:
    def __init__(self, client: "CareConnectClient", callback: Callable):
        self._client = client
        self._callback = callback

    def unsubscribe(self) -> None:
        self._client._remove_listener(self._callback)


class CareConnectClient:
    def __init__(self, base_url: str = "http://localhost:8000", http: Optional[requests.Session] = None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout
        self.session: Optional[AuthSession] = None
        self._listeners: List[Callable] = []
        self._listeners_lock = Lock()

    # === HTTP ===

    def _request(self, method: str, path: str, auth: bool = False, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if auth:
            if self.session is None:
                raise CareConnectError("ログインが必要です", 401)
            headers["Authorization"] = f"Bearer {self.session.access_token}"

        try:
            resp = self.http.request(method, f"{self.base_url}{path}", headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"request failed: {method} {path}: {e}")
            raise CareConnectError("通信エラーが発生しました", None) from e
        if resp.status_code >= 400:
            try:
                message = resp.json().get("error") or resp.reason
            except ValueError:
                message = resp.text or resp.reason
            raise CareConnectError(message, resp.status_code)
        return resp.json() if resp.content else None

    # === 認証イベント ===

    def on_auth_state_change(self, callback: Callable[[str, Optional[AuthSession]], None]) -> Subscription:
        """callback(event, session) を登録。イベントは発生順に同期的に届く"""
        with self._listeners_lock:
            self._listeners.append(callback)
        return Subscription(self, callback)

    def _remove_listener(self, callback: Callable) -> None:
        with self._listeners_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _emit(self, event: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            callback(event, self.session)

    def _set_session(self, payload: Optional[dict], event: str) -> Optional[AuthSession]:
        self.session = AuthSession.from_payload(payload)
        if self.session is not None:
            self._emit(event)
        return self.session

    # === 認証 ===

    def sign_up_with_email(
        self,
        email: str,
        password: str,
        confirm_password: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        """登録。送信前に入力チェックを行う。メール認証待ちの場合 session は None"""
        if not validate_email(email):
            raise CareConnectError("有効なメールアドレスを入力してください")
        for ok, message in (
            validate_password(password),
            validate_password_confirmation(password, confirm_password if confirm_password is not None else password),
        ):
            if not ok:
                raise CareConnectError(message)

        data = self._request("POST", "/api/auth/signup", json={
            "email": email,
            "password": password,
            "confirm_password": confirm_password,
            "metadata": metadata or {},
        })
        self._set_session(data.get("session"), SIGNED_IN)
        return data

    def sign_in_with_email(self, email: str, password: str) -> AuthSession:
        data = self._request("POST", "/api/auth/signin", json={"email": email, "password": password})
        return self._set_session(data["session"], SIGNED_IN)

    def sign_out(self) -> None:
        """サーバー側の失効に失敗してもローカルのセッションは破棄する"""
        if self.session is None:
            return
        try:
            self._request("POST", "/api/auth/signout", auth=True)
        except CareConnectError as e:
            logger.warning(f"sign out failed on server: {e.message}")
        finally:
            self.session = None
            self._emit(SIGNED_OUT)

    def refresh_session(self) -> AuthSession:
        if self.session is None:
            raise CareConnectError("ログインが必要です", 401)
        data = self._request("POST", "/api/auth/refresh", json={"refresh_token": self.session.refresh_token})
        return self._set_session(data["session"], TOKEN_REFRESHED)

    def get_session(self) -> Optional[AuthSession]:
        """現在のセッション。期限切れならリフレッシュを試み、失敗したら None"""
        if self.session is not None and self.session.expired:
            try:
                self.refresh_session()
            except CareConnectError as e:
                logger.info(f"session refresh failed: {e.message}")
                self.session = None
                self._emit(SIGNED_OUT)
        return self.session

    def get_user(self) -> dict:
        return self._request("GET", "/api/auth/user", auth=True)

    def exchange_callback(self, query: Optional[dict] = None, fragment: Optional[str] = None) -> dict:
        """メール認証リンクのパラメータをセッションに交換"""
        body = dict(query or {})
        body["fragment"] = fragment
        headers = {}
        if self.session is not None:
            headers["Authorization"] = f"Bearer {self.session.access_token}"
        data = self._request("POST", "/api/auth/callback", json=body, headers=headers)
        if data.get("session"):
            self._set_session(data["session"], SIGNED_IN)
        return data

    # === マイページ ===

    def get_profile(self) -> dict:
        return self._request("GET", "/api/mypage/profile", auth=True)

    def update_profile(self, **changes) -> dict:
        profile = self._request("PUT", "/api/mypage/profile", auth=True, json=changes)
        if "full_name" in changes and self.session is not None:
            self.session.user.setdefault("user_metadata", {})["full_name"] = profile.get("full_name")
            self._emit(USER_UPDATED)
        return profile

    def change_password(self, new_password: str, confirm_password: str) -> dict:
        data = self._request("POST", "/api/mypage/password", auth=True, json={
            "new_password": new_password,
            "confirm_password": confirm_password,
        })
        self._emit(USER_UPDATED)
        return data

    def delete_account(self) -> dict:
        data = self._request("DELETE", "/api/mypage/account", auth=True)
        self.session = None
        self._emit(SIGNED_OUT)
        return data

    # === 事業所 ===

    def search_facilities(
        self,
        query: str = "",
        district: str = "",
        service_ids: Optional[List[int]] = None,
        availability_only: bool = False,
        page: int = 1,
        limit: int = DEFAULT_LIMIT,
    ) -> dict:
        params = {
            "query": query,
            "district": district,
            "service_ids": "[" + ",".join(str(i) for i in (service_ids or [])) + "]",
            "availability_only": "true" if availability_only else "false",
            "page": page,
            "limit": limit,
        }
        return self._request("GET", "/api/search/facilities", params=params)

    def get_facility(self, facility_id: int) -> dict:
        return self._request("GET", f"/api/facilities/{facility_id}")

    def register_facility(self, **payload) -> dict:
        return self._request("POST", "/api/register", json=payload, auth=self.session is not None)

    def list_services(self) -> list:
        return self._request("GET", "/api/services")

    # === ブックマーク ===

    def bookmark_ids(self) -> List[int]:
        return self._request("GET", "/api/bookmarks/ids", auth=True)

    def list_bookmarks(self) -> list:
        return self._request("GET", "/api/bookmarks", auth=True)

    def add_bookmark(self, facility_id: int) -> dict:
        return self._request("PUT", f"/api/bookmarks/{facility_id}", auth=True)

    def remove_bookmark(self, facility_id: int) -> dict:
        return self._request("DELETE", f"/api/bookmarks/{facility_id}", auth=True)


class AuthState:
    """{user, session, loading} のスナップショットを保持"""

    def __init__(self, client: CareConnectClient):
        self.client = client
        self.user: Optional[dict] = None
        self.session: Optional[AuthSession] = None
        self.loading = True
        self._subscription: Optional[Subscription] = None

    def start(self) -> "AuthState":
        self._apply(self.client.get_session())
        self._subscription = self.client.on_auth_state_change(self._on_change)
        self.loading = False
        return self

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _apply(self, session: Optional[AuthSession]) -> None:
        self.session = session
        self.user = session.user if session is not None else None

    def _on_change(self, event: str, session: Optional[AuthSession]) -> None:
        self._apply(None if event == SIGNED_OUT else session)
        self.loading = False

    @property
    def snapshot(self) -> dict:
        return {"user": self.user, "session": self.session, "loading": self.loading}


class SearchController:
    """検索結果の保持。古いリクエストのレスポンスで最新の結果を上書きしない"""

    def __init__(self, client: CareConnectClient):
        self.client = client
        self.facilities: List[dict] = []
        self.pagination: Optional[dict] = None
        self.error: Optional[str] = None
        self.loading = False
        self._seq = 0
        self._lock = Lock()

    def begin(self) -> int:
        with self._lock:
            self._seq += 1
            self.loading = True
            return self._seq

    def is_latest(self, seq: int) -> bool:
        with self._lock:
            return seq == self._seq

    def complete(self, seq: int, result: Optional[dict] = None, error: Optional[str] = None, map_view: bool = False) -> bool:
        """結果を反映。古い連番なら何もせず False"""
        with self._lock:
            if seq != self._seq:
                logger.debug(f"discarding stale search response #{seq} (latest #{self._seq})")
                return False
            if error is not None:
                self.error = error
                self.facilities = []
                self.pagination = None
            else:
                self.error = None
                self.facilities = result["facilities"]
                self.pagination = None if map_view else result["pagination"]
            self.loading = False
            return True

    def search(self, map_view: bool = False, **filters) -> bool:
        """地図表示では1ページ目を最大件数で取得し、ページ情報は持たない"""
        if map_view:
            filters["page"] = 1
            filters["limit"] = MAP_VIEW_LIMIT
        seq = self.begin()
        try:
            result = self.client.search_facilities(**filters)
        except CareConnectError as e:
            return self.complete(seq, error=e.message)
        return self.complete(seq, result=result, map_view=map_view)


class BookmarkCache:
    def __init__(self, client: CareConnectClient):
        self.client = client
        self.ids: List[int] = []

    def refresh(self) -> List[int]:
        self.ids = list(self.client.bookmark_ids()) if self.client.session is not None else []
        return self.ids

    def is_bookmarked(self, facility_id: int) -> bool:
        return facility_id in self.ids

    def toggle_bookmark(self, facility_id: int) -> bool:
        """キャッシュの状態で追加/削除を決める。切り替え後の状態を返す"""
        if self.is_bookmarked(facility_id):
            self.client.remove_bookmark(facility_id)
            self.ids = [i for i in self.ids if i != facility_id]
            return False
        self.client.add_bookmark(facility_id)
        self.ids.append(facility_id)
        return True
