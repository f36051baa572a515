"""Database session management.

The engine is built lazily on first use so importing the app never opens a
connection or requires DATABASE_URL.
"""

from functools import lru_cache
from typing import Generator

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from unitlock_api.db.engine import build_engine, build_sessionmaker


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return build_engine()


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker[Session]:
    return build_sessionmaker(get_engine())


def get_db() -> Generator[Session, None, None]:
    """
    Get database session.

    Yields:
        Session: SQLAlchemy session
    """
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()
