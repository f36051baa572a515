"""Subscription Store: the narrow read/write contract over entitlement state.

Both engines depend on the SubscriptionStore protocol only. The SQLAlchemy
implementation never commits on its own; writes become durable when the
enclosing transaction() block exits cleanly.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import ContextManager, Iterator, Optional, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from unitlock_api.db.models import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELED,
    Profile,
    Subscription,
    Unit,
)
from unitlock_api.errors import DuplicateSubscriptionError, TransientDependencyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionRecord:
    user_id: str
    unit_id: int
    external_id: str
    status: str
    current_period_end: datetime

    @property
    def is_active(self) -> bool:
        return self.status == SUBSCRIPTION_ACTIVE


@dataclass(frozen=True)
class UnitRecord:
    id: int
    name: str
    price_monthly: int
    status: str


@dataclass(frozen=True)
class ProfileData:
    """Billing identity used to create or refresh a Profile row."""

    id: str
    email: Optional[str]
    full_name: str = ""
    phone_number: str = ""
    stripe_customer_id: Optional[str] = None


@runtime_checkable
class SubscriptionStore(Protocol):
    """Durable entitlement record accessed by both engines."""

    def get_active_subscription(self, user_id: str, unit_id: int) -> Optional[SubscriptionRecord]:
        ...

    def get_subscription_by_external_id(self, external_id: str) -> Optional[SubscriptionRecord]:
        ...

    def insert_subscription(
        self, *, user_id: str, unit_id: int, external_id: str, current_period_end: datetime
    ) -> SubscriptionRecord:
        """Raises DuplicateSubscriptionError on any uniqueness violation."""
        ...

    def renew_subscription(
        self, external_id: str, current_period_end: datetime
    ) -> Optional[SubscriptionRecord]:
        ...

    def cancel_subscription(self, external_id: str) -> Optional[SubscriptionRecord]:
        ...

    def get_unit(self, unit_id: int) -> Optional[UnitRecord]:
        ...

    def set_unit_status(self, unit_id: int, status: str) -> bool:
        ...

    def attach_customer_to_profile(self, profile_id: str, customer_id: Optional[str]) -> bool:
        """Returns False when no profile with that id exists."""
        ...

    def upsert_profile(self, profile: ProfileData) -> bool:
        """Returns True when a new row was created."""
        ...

    def transaction(self) -> ContextManager[None]:
        ...


def _to_record(row: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        user_id=row.user_id,
        unit_id=row.unit_id,
        external_id=row.stripe_subscription_id,
        status=row.status,
        current_period_end=row.current_period_end,
    )


class SqlSubscriptionStore:
    """SQLAlchemy-backed SubscriptionStore.

    Database failures surface as TransientDependencyError so callers can
    fail closed (authorization) or ask the event source to redeliver
    (reconciliation).
    """

    def __init__(self, session: Session):
        self.session = session

    # ── Transactions ─────────────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit on clean exit, roll back on any exception."""
        try:
            yield
            self.session.commit()
        except BaseException:
            self.session.rollback()
            raise

    # ── Subscriptions ────────────────────────────────────────────────────────

    def get_active_subscription(self, user_id: str, unit_id: int) -> Optional[SubscriptionRecord]:
        stmt = select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.unit_id == unit_id,
            Subscription.status == SUBSCRIPTION_ACTIVE,
        )
        row = self._scalar(stmt, "subscriptions.get_active")
        return _to_record(row) if row else None

    def get_subscription_by_external_id(self, external_id: str) -> Optional[SubscriptionRecord]:
        row = self._get_by_external_id(external_id)
        return _to_record(row) if row else None

    def insert_subscription(
        self, *, user_id: str, unit_id: int, external_id: str, current_period_end: datetime
    ) -> SubscriptionRecord:
        row = Subscription(
            user_id=user_id,
            unit_id=unit_id,
            stripe_subscription_id=external_id,
            status=SUBSCRIPTION_ACTIVE,
            current_period_end=current_period_end,
        )
        try:
            self.session.add(row)
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateSubscriptionError(
                f"Subscription insert violated a unique constraint: {external_id}"
            ) from e
        except SQLAlchemyError as e:
            raise TransientDependencyError("Subscription store unavailable") from e
        return _to_record(row)

    def renew_subscription(
        self, external_id: str, current_period_end: datetime
    ) -> Optional[SubscriptionRecord]:
        """Mark active and extend the period end; never moves it backwards.

        Canceled rows are returned unchanged.
        """
        row = self._get_by_external_id(external_id, for_update=True)
        if row is None or row.status == SUBSCRIPTION_CANCELED:
            return _to_record(row) if row else None
        row.status = SUBSCRIPTION_ACTIVE
        if current_period_end > row.current_period_end:
            row.current_period_end = current_period_end
        self._flush("subscriptions.renew")
        return _to_record(row)

    def cancel_subscription(self, external_id: str) -> Optional[SubscriptionRecord]:
        row = self._get_by_external_id(external_id, for_update=True)
        if row is None:
            return None
        row.status = SUBSCRIPTION_CANCELED
        self._flush("subscriptions.cancel")
        return _to_record(row)

    # ── Units ────────────────────────────────────────────────────────────────

    def get_unit(self, unit_id: int) -> Optional[UnitRecord]:
        row = self._scalar(select(Unit).where(Unit.id == unit_id), "units.get")
        if row is None:
            return None
        return UnitRecord(id=row.id, name=row.name, price_monthly=row.price_monthly, status=row.status)

    def set_unit_status(self, unit_id: int, status: str) -> bool:
        row = self._scalar(select(Unit).where(Unit.id == unit_id), "units.get")
        if row is None:
            return False
        row.status = status
        self._flush("units.set_status")
        return True

    # ── Profiles ─────────────────────────────────────────────────────────────

    def attach_customer_to_profile(self, profile_id: str, customer_id: Optional[str]) -> bool:
        row = self._scalar(select(Profile).where(Profile.id == profile_id), "profiles.get")
        if row is None:
            return False
        if customer_id:
            row.stripe_customer_id = customer_id
        self._flush("profiles.attach_customer")
        return True

    def upsert_profile(self, profile: ProfileData) -> bool:
        row = self._scalar(select(Profile).where(Profile.id == profile.id), "profiles.get")
        created = row is None
        if created:
            row = Profile(id=profile.id)
            self.session.add(row)
        row.email = profile.email
        row.full_name = profile.full_name
        row.phone_number = profile.phone_number
        if profile.stripe_customer_id:
            row.stripe_customer_id = profile.stripe_customer_id
        self._flush("profiles.upsert")
        return created

    # ── Internals ────────────────────────────────────────────────────────────

    def _get_by_external_id(self, external_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        stmt = select(Subscription).where(Subscription.stripe_subscription_id == external_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._scalar(stmt, "subscriptions.get_by_external_id")

    def _scalar(self, stmt, op: str):
        try:
            return self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Subscription store read failed",
                extra={"event": "store.read.failed", "op": op, "error_type": type(e).__name__},
            )
            raise TransientDependencyError("Subscription store unavailable") from e

    def _flush(self, op: str) -> None:
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Subscription store write failed",
                extra={"event": "store.write.failed", "op": op, "error_type": type(e).__name__},
            )
            raise TransientDependencyError("Subscription store unavailable") from e
