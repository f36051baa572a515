"""Subscription-gated access authorization.

Decides whether a verified user may open the gate of a storage unit:

  1. look up the active subscription for (user, unit)
  2. none                       → DENY  NO_ACTIVE_SUBSCRIPTION
  3. current_period_end < now   → DENY  SUBSCRIPTION_EXPIRED
  4. otherwise                  → ALLOW, then one actuator call (no retries)

Entitlement and actuation are reported separately: a paying customer whose
gate controller is offline is still granted, with a fallback hint.
Exactly one access log entry is written per call. A store failure never
defaults to ALLOW.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from unitlock_api.audit.sinks import AccessLogEntry, AccessLogSink
from unitlock_api.context import unit_id_var
from unitlock_api.db.models import ACCESS_STATUS_DENIED, ACCESS_STATUS_SUCCESS
from unitlock_api.db.repository import SubscriptionStore
from unitlock_api.errors import HardwareUnavailableError, InvalidRequestError
from unitlock_api.gate.actuator import ActuationResult, GateActuator

logger = logging.getLogger(__name__)

FALLBACK_HINT = "Use the PIN code from the customer panel."

_MESSAGES = {
    "granted": "Gate opened.",
    "granted_fallback": "Access granted, but the gate controller did not respond.",
    "no_subscription": "No active subscription for this unit.",
    "expired": "Subscription has expired.",
}


class AccessReason(str, Enum):
    GRANTED = "GRANTED"
    NO_ACTIVE_SUBSCRIPTION = "NO_ACTIVE_SUBSCRIPTION"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"


class Actuation(str, Enum):
    OPENED = "OPENED"
    SIMULATED = "SIMULATED"
    FAILED = "FAILED"
    NOT_ATTEMPTED = "NOT_ATTEMPTED"


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: AccessReason
    message: str
    actuation: Actuation
    fallback_hint: Optional[str] = None


def parse_unit_id(raw: Any) -> int:
    """Normalize a unit identifier from request input.

    Raises:
        InvalidRequestError: If the value is empty or not an integer
    """
    if raw is None or isinstance(raw, bool):
        raise InvalidRequestError("unit_id is required")
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if not text:
        raise InvalidRequestError("unit_id is required")
    try:
        return int(text)
    except ValueError:
        raise InvalidRequestError(f"unit_id must be an integer, got {text!r}") from None


class AccessAuthorizer:
    """Authorization engine with injected collaborators."""

    def __init__(
        self,
        store: SubscriptionStore,
        access_log: AccessLogSink,
        actuator: GateActuator,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.access_log = access_log
        self.actuator = actuator
        self.clock = clock

    async def authorize(self, user_id: str, unit_id: Any) -> AccessDecision:
        """Decide and, on ALLOW, actuate the gate.

        Raises:
            InvalidRequestError: If unit_id is malformed (nothing is logged)
            TransientDependencyError: If the store or access log is unavailable
        """
        unit = parse_unit_id(unit_id)
        unit_id_var.set(str(unit))

        subscription = self.store.get_active_subscription(user_id, unit)
        now = self.clock()

        if subscription is None:
            return self._deny(user_id, unit, AccessReason.NO_ACTIVE_SUBSCRIPTION, _MESSAGES["no_subscription"])

        if subscription.current_period_end < now:
            return self._deny(user_id, unit, AccessReason.SUBSCRIPTION_EXPIRED, _MESSAGES["expired"])

        try:
            result = await self.actuator.open(unit_id=unit, user_id=user_id)
        except HardwareUnavailableError as e:
            logger.warning(
                "ACCESS_GRANTED_ACTUATION_FAILED",
                extra={"reason": e.detail},
            )
            decision = AccessDecision(
                granted=True,
                reason=AccessReason.GRANTED,
                message=_MESSAGES["granted_fallback"],
                actuation=Actuation.FAILED,
                fallback_hint=FALLBACK_HINT,
            )
        else:
            decision = AccessDecision(
                granted=True,
                reason=AccessReason.GRANTED,
                message=_MESSAGES["granted"],
                actuation=Actuation.SIMULATED if result == ActuationResult.SIMULATED else Actuation.OPENED,
            )

        self.access_log.record(AccessLogEntry(user_id=user_id, unit_id=unit, status=ACCESS_STATUS_SUCCESS))
        logger.info("ACCESS_GRANTED", extra={"actuation": decision.actuation.value})
        return decision

    def _deny(self, user_id: str, unit: int, reason: AccessReason, message: str) -> AccessDecision:
        self.access_log.record(AccessLogEntry(user_id=user_id, unit_id=unit, status=ACCESS_STATUS_DENIED))
        logger.info("ACCESS_DENIED", extra={"reason": reason.value})
        return AccessDecision(
            granted=False,
            reason=reason,
            message=message,
            actuation=Actuation.NOT_ATTEMPTED,
        )
