# Database configuration using SQLAlchemy.
#
# - Local development: SQLite file (newsly.db) when DATABASE_URL is not set
# - Production: whatever DATABASE_URL points to (PostgreSQL on the host)

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

logger = logging.getLogger(__name__)

backend_dir = Path(__file__).parent.parent
load_dotenv(dotenv_path=backend_dir / ".env")

env_database_url = os.getenv("DATABASE_URL", "").strip()

if env_database_url:
    DATABASE_URL = env_database_url
else:
    DATABASE_URL = "sqlite:///./newsly.db"
    logger.info("Using local SQLite database (newsly.db)")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Dependency that injects a DB session into FastAPI endpoints.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
