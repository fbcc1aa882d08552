"""テスト共通フィクスチャ：テストごとにインメモリSQLiteを用意する"""
import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from careconnect.main import app
from careconnect.admin_models import ManagedFacility  # noqa: F401
from careconnect.database import Base, AdminBase, get_db, get_admin_db
from careconnect.deps import get_mailer, reset_rate_limits
from careconnect.models import Account, Facility, FacilityService
from careconnect.routes.facilities import clear_cache
from careconnect.services.facilities import seed_service_catalog

PASSWORD = "secret123"


def _memory_engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    @event.listens_for(eng, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return eng


@pytest.fixture
def session_factory():
    eng = _memory_engine()
    Base.metadata.create_all(bind=eng)
    factory = sessionmaker(bind=eng, autocommit=False, autoflush=False)
    db = factory()
    try:
        seed_service_catalog(db)
    finally:
        db.close()
    yield factory
    eng.dispose()


@pytest.fixture
def admin_session_factory():
    eng = _memory_engine()
    AdminBase.metadata.create_all(bind=eng)
    yield sessionmaker(bind=eng, autocommit=False, autoflush=False)
    eng.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def mailbox():
    """送信された確認メール [(email, token), ...]"""
    return []


@pytest.fixture
def client(session_factory, admin_session_factory, mailbox):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_get_admin_db():
        session = admin_session_factory()
        try:
            yield session
        finally:
            session.close()

    def capture_mail(account, token):
        mailbox.append((account.email, token))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_admin_db] = override_get_admin_db
    app.dependency_overrides[get_mailer] = lambda: capture_mail
    reset_rate_limits()
    clear_cache()
    yield TestClient(app)
    app.dependency_overrides.clear()
    reset_rate_limits()


@pytest.fixture
def make_facility(db):
    """make_facility("A", "新宿区", [(1, "available")]) → Facility"""
    def _make(name, district="新宿区", services=(), is_active=True, **fields):
        fac = Facility(name=name, district=district, address=fields.pop("address", f"東京都{district}1-1"),
                       is_active=is_active, **fields)
        fac.services = [
            FacilityService(service_id=sid, availability=availability, capacity=10, current_users=0)
            for sid, availability in services
        ]
        db.add(fac)
        db.commit()
        db.refresh(fac)
        return fac
    return _make


@pytest.fixture
def signup(client, mailbox):
    """サインアップしてメール認証まで済ませ、セッション(dict)を返す"""
    def _signup(email="user@example.com", password=PASSWORD, metadata=None):
        r = client.post("/api/auth/signup", json={"email": email, "password": password, "metadata": metadata or {}})
        assert r.status_code == 201, r.text
        token = [t for e, t in mailbox if e == email][-1]
        r = client.get("/api/auth/callback", params={"token_hash": token, "type": "email"})
        assert r.status_code == 200, r.text
        return r.json()["session"]
    return _signup


@pytest.fixture
def auth_headers(signup):
    def _headers(email="user@example.com", metadata=None):
        session = signup(email=email, metadata=metadata)
        return {"Authorization": f"Bearer {session['access_token']}"}
    return _headers


@pytest.fixture
def make_admin(db, client, signup):
    """admin ロールのアカウントを作成してセッションを返す"""
    def _make(email="admin@example.com"):
        session = signup(email=email)
        account = db.get(Account, session["user"]["id"])
        account.user_metadata = {**(account.user_metadata or {}), "role": "admin"}
        db.commit()
        return session
    return _make


class TestClientAdapter(BaseAdapter):
    """requests のリクエストを TestClient に転送する"""

    def __init__(self, test_client):
        super().__init__()
        self.test_client = test_client

    def send(self, request, **kwargs):
        r = self.test_client.request(
            request.method, request.url,
            headers=dict(request.headers), content=request.body,
        )
        resp = requests.Response()
        resp.status_code = r.status_code
        resp._content = r.content
        resp.headers = CaseInsensitiveDict(r.headers)
        resp.encoding = "utf-8"
        resp.reason = r.reason_phrase
        resp.url = request.url
        resp.request = request
        return resp

    def close(self):
        pass


@pytest.fixture
def http(client):
    session = requests.Session()
    session.mount("http://testserver", TestClientAdapter(client))
    return session
