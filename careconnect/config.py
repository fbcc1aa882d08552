"""アプリケーション設定"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).parent.parent

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'data' / 'careconnect.db'}"
)

# 管理用CRUDアプリは別DB
ADMIN_DATABASE_URL = os.getenv(
    "ADMIN_DATABASE_URL",
    f"sqlite:///{BASE_DIR / 'data' / 'admin.db'}"
)

# 認証（トークン署名鍵）
AUTH_SECRET_KEY = os.getenv("AUTH_SECRET_KEY", "change-this-in-production")
AUTH_ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
# true の場合、サインアップ時にメール認証を省略
AUTH_AUTOCONFIRM = os.getenv("AUTH_AUTOCONFIRM", "false").lower() == "true"
SIGNIN_RATE_LIMIT_PER_MINUTE = int(os.getenv("SIGNIN_RATE_LIMIT_PER_MINUTE", "10"))

# メール認証リンクの生成に使う公開URL
SITE_URL = os.getenv("SITE_URL", "http://localhost:8000")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
