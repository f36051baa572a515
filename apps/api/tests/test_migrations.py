"""Alembic migrations build the same schema as the ORM models.

Runs the migration chain against a throwaway SQLite file so the local
default database (sqlite:///./unitlock.db) can be migrated too.
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

from unitlock_api.db.models import Base

REPO_ROOT = Path(__file__).resolve().parents[3]


@pytest.fixture
def migrated_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.delenv("DATABASE_URL_MIGRATIONS", raising=False)
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("UNITLOCK_DB_POOL", "nullpool")
    config = Config(str(REPO_ROOT / "alembic.ini"))
    config.attributes["configure_logger"] = False
    command.upgrade(config, "head")
    return url


def test_migration_creates_model_tables(migrated_url):
    engine = create_engine(migrated_url)
    inspector = inspect(engine)

    assert set(Base.metadata.tables) <= set(inspector.get_table_names())
    for table in Base.metadata.tables.values():
        migrated = {c["name"] for c in inspector.get_columns(table.name)}
        assert migrated == {c.name for c in table.columns}, table.name


def test_migration_enforces_one_active_row_per_user_unit(migrated_url):
    engine = create_engine(migrated_url)
    period_end = datetime(2026, 4, 1, tzinfo=timezone.utc).isoformat()
    insert_sub = text(
        "INSERT INTO subscriptions (user_id, unit_id, stripe_subscription_id, status, current_period_end) "
        "VALUES ('user-42', 7, :ext, :status, :end)"
    )

    with engine.begin() as conn:
        conn.execute(text("INSERT INTO profiles (id) VALUES ('user-42')"))
        conn.execute(text("INSERT INTO units (id, name, price_monthly) VALUES (7, 'A-07', 29900)"))
        conn.execute(insert_sub, {"ext": "sub_old", "status": "canceled", "end": period_end})
        conn.execute(insert_sub, {"ext": "sub_new", "status": "active", "end": period_end})

    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(insert_sub, {"ext": "sub_other", "status": "active", "end": period_end})


def test_migration_applies_server_defaults(migrated_url):
    engine = create_engine(migrated_url)

    with engine.begin() as conn:
        conn.execute(text("INSERT INTO units (id, name, price_monthly) VALUES (8, 'A-08', 19900)"))
        row = conn.execute(text("SELECT status, updated_at FROM units WHERE id = 8")).one()

    assert row.status == "vacant"
    assert row.updated_at is not None
