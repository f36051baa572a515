"""Access log sinks for gate open attempts.

Every call to the authorization engine appends exactly one entry:
  SUCCESS            entitlement granted (whether or not the gate confirmed)
  DENIED_NO_PAYMENT  no active subscription, or the period has ended

Sinks:
  DatabaseAccessLogSink  → access_logs table (production)
  InMemoryAccessLogSink  → list in memory (tests, local tooling)

Test helpers:
  FailingAccessLogSink   → always raises TransientDependencyError
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from unitlock_api.db.models import ACCESS_ACTION_OPEN_GATE, AccessLog
from unitlock_api.errors import TransientDependencyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessLogEntry:
    user_id: str
    status: str
    unit_id: Optional[int] = None
    action: str = ACCESS_ACTION_OPEN_GATE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ── Protocol ──────────────────────────────────────────────────────────────────

@runtime_checkable
class AccessLogSink(Protocol):
    """Append-only recorder of access attempts."""

    def record(self, entry: AccessLogEntry) -> None:
        """Durably append one entry.

        Raises:
            TransientDependencyError: If the entry could not be written
        """
        ...


# ── Implementations ───────────────────────────────────────────────────────────

class DatabaseAccessLogSink:
    """Writes entries to access_logs and commits immediately.

    The entry is committed on its own so an audit record survives even when
    the surrounding request later fails.
    """

    def __init__(self, session: Session):
        self.session = session

    def record(self, entry: AccessLogEntry) -> None:
        row = AccessLog(
            user_id=entry.user_id,
            unit_id=entry.unit_id,
            action=entry.action,
            status=entry.status,
            created_at=entry.created_at,
        )
        try:
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(
                "ACCESS_LOG_WRITE_FAILED",
                extra={"status": entry.status, "error_type": type(e).__name__},
            )
            raise TransientDependencyError("Access log unavailable") from e

        logger.info(
            "Access attempt recorded",
            extra={"event": "access_log.recorded", "status": entry.status, "action": entry.action},
        )


class InMemoryAccessLogSink:
    """Keeps entries in a list. Used by tests and local tooling."""

    def __init__(self) -> None:
        self.entries: list[AccessLogEntry] = []

    def record(self, entry: AccessLogEntry) -> None:
        self.entries.append(entry)


class FailingAccessLogSink:
    """Test helper: every write fails."""

    def __init__(self) -> None:
        self.attempts = 0

    def record(self, entry: AccessLogEntry) -> None:
        self.attempts += 1
        raise TransientDependencyError("FailingAccessLogSink: simulated write failure")
