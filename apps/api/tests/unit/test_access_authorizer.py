"""Tests for the subscription-gated access authorization engine.

Test Coverage:
1. No subscription row → DENY NO_ACTIVE_SUBSCRIPTION, one DENIED_NO_PAYMENT, no actuation
2. Expired period → DENY SUBSCRIPTION_EXPIRED, one DENIED_NO_PAYMENT, no actuation
3. Active + unexpired → ALLOW, exactly one actuator call, one SUCCESS
4. Controller offline or misaddressed → still granted, fallback hint, actuation FAILED, SUCCESS logged
5. Canceled row is not an entitlement
6. Malformed unit_id → InvalidRequestError before any store access or logging
7. Store unavailable → TransientDependencyError, never ALLOW
8. Simulated controller is reported as SIMULATED
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from unitlock_api.audit.sinks import FailingAccessLogSink
from unitlock_api.db.models import (
    ACCESS_STATUS_DENIED,
    ACCESS_STATUS_SUCCESS,
    SUBSCRIPTION_CANCELED,
)
from unitlock_api.errors import InvalidRequestError, TransientDependencyError
from unitlock_api.gate.actuator import ActuationResult, HttpGateActuator
from unitlock_api.gate.authorizer import (
    FALLBACK_HINT,
    AccessAuthorizer,
    AccessReason,
    Actuation,
    parse_unit_id,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_authorizer(store, access_log, actuator) -> AccessAuthorizer:
    return AccessAuthorizer(store=store, access_log=access_log, actuator=actuator, clock=lambda: NOW)


@pytest.fixture
def tenant(seed):
    seed.profile("user-42")
    seed.unit(7)


# ============================================================================
# Denials
# ============================================================================


@pytest.mark.asyncio
async def test_no_subscription_denies(tenant, fixed_authorizer, access_log, actuator):
    decision = await fixed_authorizer.authorize("user-42", 7)

    assert decision.granted is False
    assert decision.reason == AccessReason.NO_ACTIVE_SUBSCRIPTION
    assert decision.actuation == Actuation.NOT_ATTEMPTED
    assert [e.status for e in access_log.entries] == [ACCESS_STATUS_DENIED]
    assert actuator.calls == []


@pytest.mark.asyncio
async def test_expired_subscription_denies(tenant, seed, fixed_authorizer, access_log, actuator):
    """user 42 / unit 7 with period end one day in the past."""
    seed.subscription(period_end=NOW - timedelta(days=1))

    decision = await fixed_authorizer.authorize("user-42", "7")

    assert decision.granted is False
    assert decision.reason == AccessReason.SUBSCRIPTION_EXPIRED
    assert len(access_log.entries) == 1
    assert access_log.entries[0].status == ACCESS_STATUS_DENIED
    assert access_log.entries[0].unit_id == 7
    assert actuator.calls == []


@pytest.mark.asyncio
async def test_canceled_subscription_denies(tenant, seed, fixed_authorizer, access_log):
    seed.subscription(status=SUBSCRIPTION_CANCELED, period_end=NOW + timedelta(days=10))

    decision = await fixed_authorizer.authorize("user-42", 7)

    assert decision.granted is False
    assert decision.reason == AccessReason.NO_ACTIVE_SUBSCRIPTION


@pytest.mark.asyncio
async def test_subscription_for_other_unit_denies(tenant, seed, fixed_authorizer):
    seed.unit(8, name="A-08")
    seed.subscription(unit_id=8, period_end=NOW + timedelta(days=10))

    decision = await fixed_authorizer.authorize("user-42", 7)

    assert decision.granted is False


# ============================================================================
# Grants
# ============================================================================


@pytest.mark.asyncio
async def test_active_subscription_grants_and_opens_once(tenant, seed, fixed_authorizer, access_log, actuator):
    seed.subscription(period_end=NOW + timedelta(days=30))

    decision = await fixed_authorizer.authorize("user-42", 7)

    assert decision.granted is True
    assert decision.reason == AccessReason.GRANTED
    assert decision.actuation == Actuation.OPENED
    assert decision.fallback_hint is None
    assert actuator.calls == [{"unit_id": 7, "user_id": "user-42"}]
    assert [e.status for e in access_log.entries] == [ACCESS_STATUS_SUCCESS]


@pytest.mark.asyncio
async def test_hardware_failure_still_grants_with_fallback(tenant, seed, fixed_authorizer, access_log, actuator):
    seed.subscription(period_end=NOW + timedelta(days=30))
    actuator.fail = True

    decision = await fixed_authorizer.authorize("user-42", 7)

    assert decision.granted is True
    assert decision.actuation == Actuation.FAILED
    assert decision.fallback_hint == FALLBACK_HINT
    assert len(actuator.calls) == 1  # no retries
    assert [e.status for e in access_log.entries] == [ACCESS_STATUS_SUCCESS]


@pytest.mark.asyncio
async def test_malformed_controller_url_still_grants_with_fallback(tenant, seed, store, access_log):
    seed.subscription(period_end=NOW + timedelta(days=30))
    engine = AccessAuthorizer(
        store=store,
        access_log=access_log,
        actuator=HttpGateActuator("http://[::1", "gate-token"),
        clock=lambda: NOW,
    )

    decision = await engine.authorize("user-42", 7)

    assert decision.granted is True
    assert decision.actuation == Actuation.FAILED
    assert decision.fallback_hint == FALLBACK_HINT
    assert [e.status for e in access_log.entries] == [ACCESS_STATUS_SUCCESS]


@pytest.mark.asyncio
async def test_simulated_controller_reported(tenant, seed, store, access_log, actuator):
    seed.subscription(period_end=NOW + timedelta(days=30))
    actuator.result = ActuationResult.SIMULATED
    engine = AccessAuthorizer(store=store, access_log=access_log, actuator=actuator, clock=lambda: NOW)

    decision = await engine.authorize("user-42", 7)

    assert decision.actuation == Actuation.SIMULATED


@pytest.mark.asyncio
async def test_period_end_exactly_now_is_not_expired(tenant, seed, fixed_authorizer):
    seed.subscription(period_end=NOW)

    decision = await fixed_authorizer.authorize("user-42", 7)

    assert decision.granted is True


# ============================================================================
# Rejections before the store is touched
# ============================================================================


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", "7a", True])
def test_parse_unit_id_rejects_malformed(raw):
    with pytest.raises(InvalidRequestError):
        parse_unit_id(raw)


@pytest.mark.parametrize("raw,expected", [(7, 7), ("7", 7), (" 12 ", 12)])
def test_parse_unit_id_accepts_integers(raw, expected):
    assert parse_unit_id(raw) == expected


@pytest.mark.asyncio
async def test_malformed_unit_id_writes_no_log(access_log, actuator):
    store = MagicMock()
    engine = AccessAuthorizer(store=store, access_log=access_log, actuator=actuator)

    with pytest.raises(InvalidRequestError):
        await engine.authorize("user-42", "not-a-unit")

    store.get_active_subscription.assert_not_called()
    assert access_log.entries == []


@pytest.mark.asyncio
async def test_store_failure_never_allows(access_log, actuator):
    store = MagicMock()
    store.get_active_subscription.side_effect = TransientDependencyError("db down")
    engine = AccessAuthorizer(store=store, access_log=access_log, actuator=actuator)

    with pytest.raises(TransientDependencyError):
        await engine.authorize("user-42", 7)

    assert actuator.calls == []


@pytest.mark.asyncio
async def test_access_log_failure_propagates(tenant, seed, store, actuator):
    seed.subscription(period_end=NOW + timedelta(days=30))
    sink = FailingAccessLogSink()
    engine = AccessAuthorizer(store=store, access_log=sink, actuator=actuator, clock=lambda: NOW)

    with pytest.raises(TransientDependencyError):
        await engine.authorize("user-42", 7)

    assert sink.attempts == 1
