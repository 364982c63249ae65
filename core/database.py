from typing import Generator
from datetime import datetime, timezone
import logging

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

logger = logging.getLogger(__name__)


# ============================================================
# ✅ Engine factory (owned by the application entry point)
# ============================================================
def create_db_engine(database_url: str, **kwargs) -> Engine:
    """
    Build the SQLModel engine for the given URL.
    SQLite needs check_same_thread disabled because FastAPI runs sync
    endpoints in a threadpool.
    """
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
        logger.warning("⚠️ Using SQLite database: %s", database_url)
    else:
        # For PostgreSQL, pool_pre_ping avoids stale connections
        kwargs.setdefault("pool_pre_ping", True)
        logger.info("✅ Using database from environment")

    return create_engine(database_url, echo=False, **kwargs)


# ============================================================
# ✅ Create tables (called at startup)
# ============================================================
def create_db_and_tables(engine: Engine) -> None:
    """
    Create all database tables based on SQLModel models.
    This runs automatically at app startup.
    """
    # Register table metadata before create_all
    import models.models  # noqa: F401

    try:
        SQLModel.metadata.create_all(engine)
        logger.info("✅ All database tables created successfully.")
    except Exception as e:
        logger.error(f"❌ Failed to create tables: {e}")
        raise


# ============================================================
# ✅ Dependency: FastAPI session generator
# ============================================================
def get_session(request: Request) -> Generator[Session, None, None]:
    """
    Provides a SQLModel Session bound to the application's engine.
    Closes automatically after request completes.
    """
    with Session(request.app.state.engine) as session:
        yield session


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
