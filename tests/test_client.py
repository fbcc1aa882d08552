"""requests クライアント（AuthState / SearchController / BookmarkCache）"""
import pytest
import requests
from requests.adapters import BaseAdapter

from careconnect.client import (
    AuthSession, AuthState, BookmarkCache, CareConnectClient, CareConnectError, SearchController,
    SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED, USER_UPDATED,
)
from conftest import PASSWORD


@pytest.fixture
def api(http):
    return CareConnectClient(base_url="http://testserver", http=http)


@pytest.fixture
def confirmed(api, mailbox):
    """メール認証済みのアカウントを作る（ログインはしない）"""
    def _confirmed(email="client@example.com", metadata=None):
        api.sign_up_with_email(email, PASSWORD, PASSWORD, metadata=metadata)
        other = CareConnectClient(base_url=api.base_url, http=api.http)
        other.exchange_callback(query={"token_hash": mailbox[-1][1], "type": "email"})
        other.sign_out()
        return email
    return _confirmed


class TestAuthFlow:
    def test_sign_up_validates_before_sending(self, api, mailbox):
        with pytest.raises(CareConnectError) as e:
            api.sign_up_with_email("bad", PASSWORD)
        assert e.value.message == "有効なメールアドレスを入力してください"
        with pytest.raises(CareConnectError) as e:
            api.sign_up_with_email("a@example.com", PASSWORD, "different")
        assert e.value.message == "パスワードが一致しません"
        with pytest.raises(CareConnectError) as e:
            api.sign_up_with_email("a@example.com", "123")
        assert e.value.message == "パスワードは6文字以上で入力してください"
        assert mailbox == []

    def test_sign_up_waits_for_confirmation(self, api):
        data = api.sign_up_with_email("wait@example.com", PASSWORD)
        assert data["session"] is None
        assert api.session is None

    def test_exchange_callback_sets_session(self, api, mailbox):
        api.sign_up_with_email("cb@example.com", PASSWORD)
        data = api.exchange_callback(fragment=f"token_hash={mailbox[-1][1]}&type=email")
        assert data["status"] == "email_confirmed"
        assert isinstance(api.session, AuthSession)
        assert api.get_user()["user"]["email"] == "cb@example.com"

    def test_events_in_order(self, api, confirmed):
        email = confirmed()
        events = []
        sub = api.on_auth_state_change(lambda event, session: events.append(event))

        api.sign_in_with_email(email, PASSWORD)
        api.refresh_session()
        api.update_profile(full_name="名前")
        api.sign_out()
        assert events == [SIGNED_IN, TOKEN_REFRESHED, USER_UPDATED, SIGNED_OUT]

        sub.unsubscribe()
        api.sign_in_with_email(email, PASSWORD)
        assert len(events) == 4

    def test_server_error_is_raised(self, api, confirmed):
        email = confirmed()
        with pytest.raises(CareConnectError) as e:
            api.sign_in_with_email(email, "wrongpass")
        assert e.value.status_code == 400
        assert e.value.message == "メールアドレスまたはパスワードが正しくありません"

    def test_clients_do_not_share_sessions(self, http, confirmed):
        email = confirmed()
        one = CareConnectClient(base_url="http://testserver", http=http)
        two = CareConnectClient(base_url="http://testserver", http=http)
        one.sign_in_with_email(email, PASSWORD)
        assert one.session is not None
        assert two.session is None

    def test_expired_session_is_refreshed(self, api, confirmed):
        email = confirmed()
        api.sign_in_with_email(email, PASSWORD)
        old = api.session.refresh_token
        api.session.expires_at = 0
        assert api.get_session().refresh_token != old


class TestAuthState:
    def test_snapshot_follows_events(self, api, confirmed):
        email = confirmed()
        state = AuthState(api)
        assert state.snapshot["loading"] is True

        state.start()
        assert state.snapshot == {"user": None, "session": None, "loading": False}

        api.sign_in_with_email(email, PASSWORD)
        assert state.snapshot["user"]["email"] == email
        assert state.snapshot["session"] is api.session

        api.sign_out()
        assert state.snapshot["user"] is None

        state.close()
        api.sign_in_with_email(email, PASSWORD)
        assert state.snapshot["user"] is None


class TestSearchController:
    def test_search(self, api, make_facility):
        for i in range(14):
            make_facility(f"事業所{i}", services=[(1, "available")])
        ctl = SearchController(api)
        assert ctl.search(query="事業所") is True
        assert len(ctl.facilities) == 12
        assert ctl.pagination["pages"] == 2
        assert ctl.loading is False

    def test_map_view_fetches_everything(self, api, make_facility):
        for i in range(14):
            make_facility(f"事業所{i}")
        ctl = SearchController(api)
        ctl.search(map_view=True, page=2, limit=12)
        assert len(ctl.facilities) == 14
        assert ctl.pagination is None

    def test_stale_response_is_discarded(self, api):
        ctl = SearchController(api)
        first = ctl.begin()
        second = ctl.begin()
        newest = {"facilities": [{"id": 2}], "pagination": {"page": 1}}
        stale = {"facilities": [{"id": 1}], "pagination": {"page": 1}}

        assert ctl.complete(second, result=newest) is True
        assert ctl.complete(first, result=stale) is False
        assert ctl.facilities == [{"id": 2}]
        assert ctl.is_latest(second)

    def test_stale_error_is_discarded(self, api):
        ctl = SearchController(api)
        first = ctl.begin()
        second = ctl.begin()
        ctl.complete(second, result={"facilities": [], "pagination": {}})
        assert ctl.complete(first, error="boom") is False
        assert ctl.error is None

    def test_error_is_recorded(self, api, monkeypatch):
        from careconnect import config
        monkeypatch.setattr(config, "DATABASE_URL", "")
        ctl = SearchController(api)
        assert ctl.search() is True
        assert ctl.error == "Server configuration error"
        assert ctl.facilities == []

    def test_network_error_is_recorded(self):
        class Unreachable(BaseAdapter):
            def send(self, request, **kwargs):
                raise requests.ConnectionError("connection refused")

            def close(self):
                pass

        http = requests.Session()
        http.mount("http://offline", Unreachable())
        ctl = SearchController(CareConnectClient(base_url="http://offline", http=http))
        assert ctl.search(query="x") is True
        assert ctl.loading is False
        assert ctl.error == "通信エラーが発生しました"
        assert ctl.facilities == []
        assert ctl.pagination is None


class TestBookmarkCache:
    def test_toggle(self, api, confirmed, make_facility):
        email = confirmed()
        fac = make_facility("キャッシュ")
        api.sign_in_with_email(email, PASSWORD)
        cache = BookmarkCache(api)
        assert cache.refresh() == []

        assert cache.toggle_bookmark(fac.id) is True
        assert cache.is_bookmarked(fac.id)
        assert api.bookmark_ids() == [fac.id]

        assert cache.toggle_bookmark(fac.id) is False
        assert not cache.is_bookmarked(fac.id)
        assert api.bookmark_ids() == []

    def test_requires_login(self, api, make_facility):
        fac = make_facility("未ログイン")
        cache = BookmarkCache(api)
        assert cache.refresh() == []
        with pytest.raises(CareConnectError):
            cache.toggle_bookmark(fac.id)
        assert cache.ids == []
