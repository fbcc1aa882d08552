"""DB接続・セッション管理"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .config import DATABASE_URL, ADMIN_DATABASE_URL


def _make_engine(url: str):
    # SQLite用: スレッド間共有を許可
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    eng = create_engine(url or "sqlite://", connect_args=connect_args, echo=False)

    # SQLite: WALモード + 外部キー有効化
    if url.startswith("sqlite"):
        @event.listens_for(eng, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return eng


engine = _make_engine(DATABASE_URL)
admin_engine = _make_engine(ADMIN_DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
AdminSessionLocal = sessionmaker(bind=admin_engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    pass


class AdminBase(DeclarativeBase):
    """管理用CRUDアプリのモデル基底（別DB）"""
    pass


def get_db():
    """FastAPI Depends用"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_admin_db():
    """管理用DBのFastAPI Depends用"""
    db = AdminSessionLocal()
    try:
        yield db
    finally:
        db.close()
