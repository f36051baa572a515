"""Database engine builder.

- Default pool: NullPool (Supabase pooler in transaction mode does the pooling)
- pool_pre_ping=True always
- Driver connect timeout bounded by DB_CONNECT_TIMEOUT_SECONDS
- ENV: UNITLOCK_DB_POOL=nullpool|queuepool (default: nullpool)
"""

import logging
import os
import re
from typing import Any

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from unitlock_api.config.env import get_database_url, get_db_connect_timeout_seconds

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def _connect_args(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {
        "connect_timeout": get_db_connect_timeout_seconds(),
        "application_name": os.getenv("UNITLOCK_DB_APPLICATION_NAME", "unitlock-api"),
    }


def build_engine(database_url: str | None = None) -> Engine:
    """Build SQLAlchemy engine.

    Args:
        database_url: Database URL. If None, resolved via get_database_url().

    Raises:
        ValueError: If UNITLOCK_DB_POOL holds an unknown value
    """
    url = database_url or get_database_url()
    connect_args = _connect_args(url)
    pool_mode = os.getenv("UNITLOCK_DB_POOL", "nullpool").lower()

    if pool_mode == "nullpool":
        engine = create_engine(
            url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    elif pool_mode == "queuepool":
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=int(os.getenv("UNITLOCK_DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("UNITLOCK_DB_MAX_OVERFLOW", "10")),
            connect_args=connect_args,
        )
    else:
        raise ValueError(
            f"Invalid UNITLOCK_DB_POOL value: {pool_mode}. "
            "Must be 'nullpool' or 'queuepool'."
        )

    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        _mask_password(url),
    )
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """Build sessionmaker configured with autocommit=False, autoflush=False."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
