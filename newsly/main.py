import os
import time
import logging
from pathlib import Path
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy import inspect

from .routers import newsletter, subscribers, payments, tools, news
from .config import get_settings, clear_settings_cache
from .database import Base, engine
from .services.email_service import get_email_config_info

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env (local development only)
backend_dir = Path(__file__).parent.parent
env_path = backend_dir / ".env"
loaded = load_dotenv(dotenv_path=env_path)
if loaded:
    logger.info(f"Environment loaded from: {env_path}")
else:
    logger.warning(f"No .env file found at: {env_path}")

clear_settings_cache()

# Register every model with SQLAlchemy before create_all()
from . import models  # noqa: F401,E402

app_settings = get_settings()
logger.info(f"🔧 CORS_ORIGIN at startup: {app_settings.cors_origin}")

app = FastAPI(title="Newsly API", version="0.1.0", redirect_slashes=False)

allowed_origins = [
    "http://localhost:3000",
    "http://localhost:3001",
]

cors_origin_env = os.getenv("CORS_ORIGIN", "")
cors_origin_configured = cors_origin_env and cors_origin_env != "http://localhost:3000"

# CORS_ORIGIN may hold several origins separated by commas
if cors_origin_configured:
    for origin in [o.strip() for o in cors_origin_env.split(",")]:
        if origin and origin not in allowed_origins:
            allowed_origins.append(origin)

if app_settings.environment == "production" and not cors_origin_configured:
    logger.warning("⚠️ CORS_ORIGIN not set in production, allowing every origin")
    allowed_origins = ["*"]

logger.info(f"🌐 Allowed CORS origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins if "*" not in allowed_origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def create_tables():
    """Create missing tables."""
    try:
        expected_tables = list(Base.metadata.tables.keys())
        logger.info(f"Expected tables: {', '.join(expected_tables)}")

        Base.metadata.create_all(bind=engine)

        existing_tables = inspect(engine).get_table_names()
        missing_tables = [t for t in expected_tables if t not in existing_tables]
        if missing_tables:
            logger.warning(f"⚠️  Missing tables: {', '.join(missing_tables)}")
        else:
            logger.info("✅ All tables created/verified")
    except Exception as e:
        logger.error(f"❌ ERROR creating tables: {str(e)}", exc_info=True)
        raise


# Do not block startup if the database is unreachable
try:
    create_tables()
except Exception as e:
    logger.error(f"❌ Error creating tables at startup: {str(e)}", exc_info=True)
    logger.warning("⚠️ Server keeps starting, some features may be unavailable")

app.include_router(newsletter.router, prefix="/api")
app.include_router(subscribers.router, prefix="/api")
app.include_router(payments.router, prefix="/api/payments")
app.include_router(tools.router, prefix="/api")
app.include_router(news.router, prefix="/api")


@app.get("/", tags=["root"])
async def root():
    return {"message": "Welcome to the Newsly API"}


@app.get("/api/health", tags=["health"])
async def health():
    logger.info("💓 Health check")
    return {"status": "ok", "server": "alive", "email": get_email_config_info()}


@app.get("/api/ping", tags=["health"])
async def ping():
    return {"pong": True, "time": time.time()}


@app.get("/favicon.ico", tags=["static"])
async def favicon():
    return Response(status_code=204)
