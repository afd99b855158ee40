# config.py
import os
from dotenv import load_dotenv

load_dotenv()

ENV = (os.getenv("ENV", "dev") or "dev").strip().lower()
is_prod = ENV == "prod"

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()
PORT = int(os.getenv("PORT", "3001"))

# =============================================================================
# Database
# =============================================================================

DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "1"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "10"))
DB_SEARCH_PATH = "financeiro, equipamentos, estoque, public"


def _database_url_from_parts() -> str:
    host = os.getenv("DB_HOST")
    if not host:
        return ""
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "postgres")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "")
    sslmode = "require" if (os.getenv("DB_SSL", "") or "").lower() in ("1", "true", "require") else "prefer"
    return f"host={host} port={port} dbname={name} user={user} password={password} sslmode={sslmode}"


DATABASE_URL = (os.getenv("DATABASE_URL", "") or "").strip() or _database_url_from_parts()

# =============================================================================
# Auth
# =============================================================================

_DEFAULT_JWT_SECRET = "change-me-in-production"

JWT_SECRET = (os.getenv("JWT_SECRET", "") or "").strip() or _DEFAULT_JWT_SECRET
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_DAYS = int(os.getenv("JWT_EXPIRES_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))
COOKIE_NAME = "token"

if is_prod and JWT_SECRET == _DEFAULT_JWT_SECRET:
    raise RuntimeError("JWT_SECRET env var is required when ENV=prod")

# =============================================================================
# CORS
# =============================================================================

FRONTEND_URL = (os.getenv("FRONTEND_URL", "") or "").strip()

CORS_ORIGINS = [o for o in [
    FRONTEND_URL,
    "http://localhost:5173",
    "http://localhost:8080",
    "http://localhost:3000",
] if o]
