"""認証API・コールバック"""
from datetime import datetime, timedelta

import pytest

from careconnect import config, deps
from careconnect.deps import enforce_rate_limit, reset_rate_limits
from careconnect.models import Account, AuthSession, Profile, UserDetail, Facility
from careconnect.services.auth import AuthApiError, AuthProvider, localize_auth_error
from careconnect.services.callback import (
    parse_callback, resolve_callback,
    TokenHashParams, TokenPairParams, ProviderErrorParams, NoParams,
    EmailConfirmed, SessionEstablished, CallbackFailed,
)
from conftest import PASSWORD


def _bearer(session):
    return {"Authorization": f"Bearer {session['access_token']}"}


class TestSignUp:
    def test_signup_requires_confirmation(self, client, mailbox):
        r = client.post("/api/auth/signup", json={"email": "New@Example.com", "password": PASSWORD})
        assert r.status_code == 201
        body = r.json()
        assert body["session"] is None
        assert body["user"]["email"] == "new@example.com"
        assert body["user"]["email_confirmed_at"] is None
        assert [e for e, _ in mailbox] == ["new@example.com"]

    def test_profile_is_not_created_at_signup(self, client, db):
        r = client.post("/api/auth/signup", json={"email": "a@example.com", "password": PASSWORD})
        assert db.get(Profile, r.json()["user"]["id"]) is None

    def test_duplicate_email(self, client):
        client.post("/api/auth/signup", json={"email": "dup@example.com", "password": PASSWORD})
        r = client.post("/api/auth/signup", json={"email": "dup@example.com", "password": PASSWORD})
        assert r.status_code == 422
        assert r.json() == {"error": "このメールアドレスは既に登録されています"}

    def test_short_password(self, client):
        r = client.post("/api/auth/signup", json={"email": "s@example.com", "password": "12345"})
        assert r.json() == {"error": "パスワードは6文字以上で入力してください"}

    def test_invalid_email(self, client):
        r = client.post("/api/auth/signup", json={"email": "not-an-email", "password": PASSWORD})
        assert r.status_code == 400
        assert r.json() == {"error": "有効なメールアドレスを入力してください"}

    def test_password_confirmation_mismatch(self, client):
        r = client.post("/api/auth/signup", json={
            "email": "m@example.com", "password": PASSWORD, "confirm_password": "other123",
        })
        assert r.status_code == 400
        assert r.json() == {"error": "パスワードが一致しません"}

    def test_role_cannot_be_self_assigned(self, client, signup):
        session = signup(email="sneaky@example.com", metadata={"role": "admin", "full_name": "X"})
        r = client.get("/api/auth/user", headers=_bearer(session))
        assert r.json()["isAdmin"] is False
        assert "role" not in r.json()["user"]["user_metadata"]

    def test_autoconfirm_issues_session(self, client, monkeypatch):
        monkeypatch.setattr(config, "AUTH_AUTOCONFIRM", True)
        r = client.post("/api/auth/signup", json={"email": "auto@example.com", "password": PASSWORD})
        assert r.status_code == 201
        assert r.json()["session"]["access_token"]


class TestSignIn:
    def test_unconfirmed_email(self, client):
        client.post("/api/auth/signup", json={"email": "u@example.com", "password": PASSWORD})
        r = client.post("/api/auth/signin", json={"email": "u@example.com", "password": PASSWORD})
        assert r.status_code == 400
        assert "認証されていません" in r.json()["error"]

    def test_signin(self, client, signup):
        signup(email="ok@example.com")
        r = client.post("/api/auth/signin", json={"email": "OK@example.com", "password": PASSWORD})
        assert r.status_code == 200
        session = r.json()["session"]
        me = client.get("/api/auth/user", headers=_bearer(session)).json()
        assert me["user"]["email"] == "ok@example.com"
        assert me["isAdmin"] is False

    def test_wrong_password(self, client, signup):
        signup(email="ok@example.com")
        r = client.post("/api/auth/signin", json={"email": "ok@example.com", "password": "wrongpass"})
        assert r.status_code == 400
        assert r.json() == {"error": "メールアドレスまたはパスワードが正しくありません"}

    def test_rate_limited(self, client, monkeypatch):
        monkeypatch.setattr(config, "SIGNIN_RATE_LIMIT_PER_MINUTE", 2)
        for _ in range(2):
            client.post("/api/auth/signin", json={"email": "x@example.com", "password": "whatever"})
        r = client.post("/api/auth/signin", json={"email": "x@example.com", "password": "whatever"})
        assert r.status_code == 429
        assert r.json()["error"].startswith("リクエストが多すぎます")

    def test_rate_limit_forgets_expired_keys(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(deps.time, "time", lambda: clock[0])
        reset_rate_limits()
        for i in range(3):
            enforce_rate_limit(scope="signin", identity=f"u{i}@example.com", max_requests=2)
        assert len(deps._RATE_LIMIT_STATE) == 3

        clock[0] += 61
        enforce_rate_limit(scope="signin", identity="u0@example.com", max_requests=2)
        assert list(deps._RATE_LIMIT_STATE) == ["signin:u0@example.com"]
        assert len(deps._RATE_LIMIT_STATE["signin:u0@example.com"]) == 1
        reset_rate_limits()


class TestSession:
    def test_user_requires_token(self, client):
        r = client.get("/api/auth/user")
        assert r.status_code == 401
        assert r.json() == {"error": "認証が必要です"}

    def test_garbage_token(self, client):
        r = client.get("/api/auth/user", headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401

    def test_refresh_rotates_token(self, client, signup):
        session = signup()
        r = client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})
        assert r.status_code == 200
        new_session = r.json()["session"]
        assert new_session["refresh_token"] != session["refresh_token"]
        # 使用済みのリフレッシュトークンは再利用できない
        r = client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})
        assert r.status_code == 401

    def test_signout_revokes_session(self, client, signup):
        session = signup()
        assert client.post("/api/auth/signout", headers=_bearer(session)).status_code == 200
        assert client.get("/api/auth/user", headers=_bearer(session)).status_code == 401
        r = client.post("/api/auth/refresh", json={"refresh_token": session["refresh_token"]})
        assert r.status_code == 401

    def test_signout_requires_token(self, client):
        assert client.post("/api/auth/signout").status_code == 401


class TestCallback:
    def test_confirmation_provisions_profile(self, client, mailbox, db):
        client.post("/api/auth/signup", json={
            "email": "cb@example.com", "password": PASSWORD,
            "metadata": {"user_type": "user", "full_name": "山田太郎", "district": "新宿区",
                         "user_details": {"age": 30, "disability_types": ["身体障害"]}},
        })
        token = mailbox[-1][1]
        r = client.post("/api/auth/callback", json={"fragment": f"#token_hash={token}&type=email"})
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "email_confirmed"
        assert body["user"]["email_confirmed_at"] is not None

        profile = db.get(Profile, body["user"]["id"])
        assert profile.full_name == "山田太郎"
        assert profile.district == "新宿区"
        details = db.query(UserDetail).filter(UserDetail.user_id == profile.id).one()
        assert details.age == 30
        assert details.disability_types == ["身体障害"]

    def test_token_is_single_use(self, client, mailbox):
        client.post("/api/auth/signup", json={"email": "once@example.com", "password": PASSWORD})
        token = mailbox[-1][1]
        assert client.get("/api/auth/callback", params={"token_hash": token, "type": "email"}).status_code == 200
        r = client.get("/api/auth/callback", params={"token_hash": token, "type": "email"})
        assert r.status_code == 400
        assert r.json() == {"error": "Token has expired or is invalid"}

    def test_expired_token(self, client, mailbox, db):
        r = client.post("/api/auth/signup", json={"email": "late@example.com", "password": PASSWORD})
        account = db.get(Account, r.json()["user"]["id"])
        account.confirmation_sent_at = datetime.utcnow() - timedelta(days=2)
        db.commit()
        r = client.get("/api/auth/callback", params={"token_hash": mailbox[-1][1], "type": "email"})
        assert r.status_code == 400

    def test_token_pair(self, client, signup):
        session = signup()
        r = client.post("/api/auth/callback", json={
            "access_token": session["access_token"], "refresh_token": session["refresh_token"],
        })
        assert r.status_code == 200
        assert r.json()["status"] == "session_established"

    def test_existing_session(self, client, signup):
        session = signup()
        r = client.get("/api/auth/callback", headers=_bearer(session))
        assert r.status_code == 200
        assert r.json()["status"] == "session_established"
        assert r.json()["session"] is None

    def test_no_parameters(self, client):
        r = client.get("/api/auth/callback")
        assert r.status_code == 400
        assert r.json() == {"error": "認証情報が見つかりません"}

    def test_provider_error(self, client):
        r = client.get("/api/auth/callback", params={"error": "access_denied", "error_description": "Email link is invalid"})
        assert r.json() == {"error": "Email link is invalid"}

    def test_operator_facility_is_provisioned(self, client, signup, db):
        session = signup(email="op@example.com", metadata={
            "user_type": "facility", "full_name": "運営者",
            "facility_details": {"name": "みどり園", "address": "東京都杉並区1-1", "district": "杉並区",
                                 "service_ids": [7, 8]},
        })
        fac = db.query(Facility).filter(Facility.profile_id == session["user"]["id"]).one()
        assert fac.name == "みどり園"
        assert sorted(s.service_id for s in fac.services) == [7, 8]

    def test_repeated_callback_does_not_duplicate_profile(self, client, signup, db):
        session = signup()
        client.get("/api/auth/callback", headers=_bearer(session))
        assert db.query(Profile).count() == 1
        assert db.query(UserDetail).count() == 1


class TestParseCallback:
    def test_token_hash(self):
        assert parse_callback({"token_hash": "abc", "type": "email"}) == TokenHashParams("abc", "email")

    def test_fragment(self):
        params = parse_callback({}, "#access_token=a&refresh_token=r&type=signup")
        assert params == TokenPairParams("a", "r", "signup")

    def test_query_wins_over_fragment(self):
        params = parse_callback({"token_hash": "q", "type": "email"}, "token_hash=f&type=email")
        assert params == TokenHashParams("q", "email")

    def test_error(self):
        assert parse_callback({"error": "denied"}) == ProviderErrorParams("denied")

    def test_token_hash_with_other_type_is_ignored(self):
        assert parse_callback({"token_hash": "abc", "type": "recovery"}) == NoParams()

    def test_nothing(self):
        assert parse_callback({}, None) == NoParams()


class TestAuthProvider:
    @pytest.fixture
    def provider(self, db):
        sent = []
        p = AuthProvider(db, mailer=lambda account, token: sent.append(token), autoconfirm=False)
        p.sent = sent
        return p

    def test_resolve_email_confirmation(self, provider):
        account, session = provider.sign_up("p@example.com", PASSWORD)
        assert session is None
        result = resolve_callback(provider, TokenHashParams(provider.sent[-1], "email"))
        assert isinstance(result, EmailConfirmed)
        assert result.user.id == account.id

    def test_resolve_existing_session(self, provider):
        provider.sign_up("p@example.com", PASSWORD)
        session = provider.verify_otp(provider.sent[-1])
        result = resolve_callback(provider, NoParams(), current_access_token=session.access_token)
        assert isinstance(result, SessionEstablished)

    def test_resolve_failure_is_localized(self, provider):
        result = resolve_callback(provider, TokenPairParams("bad", "bad"))
        assert isinstance(result, CallbackFailed)
        assert result.message == "Invalid JWT"

    def test_expired_access_token_is_refreshed_by_set_session(self, db, provider):
        provider.sign_up("p@example.com", PASSWORD)
        session = provider.verify_otp(provider.sent[-1])
        expired = AuthProvider(db, expire_minutes=-1)._encode_access_token(session.user, db.query(AuthSession).one().id)[0]
        restored = provider.set_session(expired, session.refresh_token)
        assert restored.refresh_token != session.refresh_token

    def test_delete_user_removes_sessions(self, db, provider):
        provider.sign_up("p@example.com", PASSWORD)
        session = provider.verify_otp(provider.sent[-1])
        assert provider.delete_user(session.user.id) is True
        assert db.query(AuthSession).count() == 0
        with pytest.raises(AuthApiError):
            provider.get_user(session.access_token)

    def test_invalid_email_error_text(self, provider):
        with pytest.raises(AuthApiError) as e:
            provider.sign_up("not-an-email", PASSWORD)
        assert e.value.message == "Unable to validate email address: invalid format"
        assert localize_auth_error(e.value.message) == "有効なメールアドレスを入力してください"

    def test_localize_auth_error(self):
        assert localize_auth_error("Invalid login credentials") == "メールアドレスまたはパスワードが正しくありません"
        assert localize_auth_error("Email not confirmed").startswith("メールアドレスが認証されていません")
        assert localize_auth_error("something else") == "something else"
        assert localize_auth_error("") == "不明なエラーが発生しました"
        assert localize_auth_error(None) == "不明なエラーが発生しました"
