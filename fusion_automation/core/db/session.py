from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from fusion_automation.core.config_file import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict[str, Any]:
    """Build engine keyword arguments for the configured backend."""
    if database_url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "connect_args": {
            "connect_timeout": 10,
            "options": "-c timezone=utc",
        },
    }


# Use database_url property which handles both DATABASE_URL env var and component construction
engine = create_engine(
    settings.database_url,
    echo=settings.DEBUG,
    future=True,
    **_engine_options(settings.database_url),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()
