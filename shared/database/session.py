import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shared.app_logging.logger import get_logger
from shared.config.settings import get_settings

from .base import Base
from .models.document import Document  # noqa: F401  registers the table

logger = get_logger("database")

settings = get_settings()
DATABASE_URL = settings.database.database_url

logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


def create_db_engine(url: str, echo: bool = False):
    logger.info(f"▶︎ Connecting to database: {url.split('@')[1] if '@' in url else url}")
    return create_engine(url, echo=echo, **_engine_kwargs(url))


engine = create_db_engine(DATABASE_URL, echo=settings.database.echo)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(bind=None):
    """Initialize database tables."""
    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("✅ Database initialized successfully")
    except Exception as e:
        logger.error(f"❌ Failed to initialize database: {e}")
        raise
