"""SQLAlchemy ORM models for Unitlock."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BIGINT, INTEGER, TEXT, TIMESTAMP, ForeignKey, Index, text
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_CANCELED = "canceled"

UNIT_VACANT = "vacant"
UNIT_OCCUPIED = "occupied"

ACCESS_ACTION_OPEN_GATE = "OPEN_GATE"
ACCESS_STATUS_SUCCESS = "SUCCESS"
ACCESS_STATUS_DENIED = "DENIED_NO_PAYMENT"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    SQLite drops tzinfo on storage; values read back naive are tagged UTC.
    """

    impl = TIMESTAMP(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime stored in a UTC column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Profile(Base):
    """Customer profile.

    Created by signup, or lazily by webhook reconciliation using the
    processor's customer id as the profile id.
    """

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    full_name: Mapped[str] = mapped_column(TEXT, nullable=False, default="")
    phone_number: Mapped[str] = mapped_column(TEXT, nullable=False, default="")
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("idx_profiles_stripe_customer", "stripe_customer_id"),)


class Unit(Base):
    """Rentable storage unit. price_monthly is in minor units (grosze)."""

    __tablename__ = "units"

    id: Mapped[int] = mapped_column(INTEGER, primary_key=True)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    price_monthly: Mapped[int] = mapped_column(BIGINT, nullable=False)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=UNIT_VACANT)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class Subscription(Base):
    """Entitlement record - the single source of truth for gate access.

    Invariants enforced by the schema:
    - stripe_subscription_id is unique across all rows (webhook idempotency)
    - at most one active row per (user_id, unit_id) (partial unique index)

    Rows are never deleted; cancellation flips status to "canceled".
    """

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(INTEGER, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(TEXT, ForeignKey("profiles.id"), nullable=False)
    unit_id: Mapped[int] = mapped_column(INTEGER, ForeignKey("units.id"), nullable=False)
    stripe_subscription_id: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default=SUBSCRIPTION_ACTIVE)
    current_period_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index(
            "uq_subscriptions_active_user_unit",
            "user_id",
            "unit_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_subscriptions_user_unit_status", "user_id", "unit_id", "status"),
    )


class AccessLog(Base):
    """Append-only record of gate access attempts."""

    __tablename__ = "access_logs"

    id: Mapped[int] = mapped_column(INTEGER, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    unit_id: Mapped[Optional[int]] = mapped_column(INTEGER, nullable=True)
    action: Mapped[str] = mapped_column(TEXT, nullable=False, default=ACCESS_ACTION_OPEN_GATE)
    status: Mapped[str] = mapped_column(TEXT, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_access_logs_user_created", "user_id", "created_at"),)
