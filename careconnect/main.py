"""FastAPI アプリケーション"""
import logging
from pathlib import Path
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse

from . import config
from .admin_models import ManagedFacility  # noqa: F401  AdminBase へのテーブル登録
from .database import Base, AdminBase, SessionLocal, engine, admin_engine
from .errors import install_error_handlers
from .routes.search import router as search_router
from .routes.facilities import router as facilities_router
from .routes.auth import router as auth_router
from .routes.mypage import router as mypage_router, bookmarks_router
from .routes.dashboard import router as dashboard_router
from .routes.admin import router as admin_router
from .services.facilities import seed_service_catalog

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """起動時にテーブル作成とサービス種別マスタの投入"""
    (config.BASE_DIR / "data").mkdir(exist_ok=True)
    Base.metadata.create_all(bind=engine)
    AdminBase.metadata.create_all(bind=admin_engine)

    db = SessionLocal()
    try:
        count = seed_service_catalog(db)
        logger.info(f"service catalog: {count} services")
    finally:
        db.close()
    yield


app = FastAPI(
    title="CareConnect API",
    description="東京都の障害福祉サービス事業所検索API（ケアコネクト）",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)

app.include_router(search_router)
app.include_router(facilities_router)
app.include_router(auth_router)
app.include_router(mypage_router)
app.include_router(bookmarks_router)
app.include_router(dashboard_router)
app.include_router(admin_router)


@app.get("/")
def root():
    return FileResponse(STATIC_DIR / "index.html")


app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
