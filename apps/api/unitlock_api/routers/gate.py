"""Gate access endpoint.

POST /api/gate/open
  401  missing / invalid session token (no access log entry)
  400  malformed unit_id (no access log entry)
  402  no active subscription, or subscription expired
  200  granted; fallback_code present when the controller did not respond
  500  subscription store or access log unavailable
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from unitlock_api.audit.sinks import DatabaseAccessLogSink
from unitlock_api.auth.session_auth import VerifiedPrincipal, get_verified_principal
from unitlock_api.db.repository import SqlSubscriptionStore
from unitlock_api.db.session import get_db
from unitlock_api.errors import ConfigurationError
from unitlock_api.gate.actuator import GateActuator, get_gate_actuator
from unitlock_api.gate.authorizer import AccessAuthorizer
from unitlock_api.problems import PROBLEM_BASE_URI, problem_response
from unitlock_api.schemas import GateOpenRequest, GateOpenResponse

router = APIRouter(prefix="/api/gate", tags=["gate"])
logger = logging.getLogger(__name__)


def get_actuator() -> GateActuator:
    try:
        return get_gate_actuator()
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def get_access_authorizer(
    db: Session = Depends(get_db),
    actuator: GateActuator = Depends(get_actuator),
) -> AccessAuthorizer:
    """Build the authorization engine for one request."""
    return AccessAuthorizer(
        store=SqlSubscriptionStore(db),
        access_log=DatabaseAccessLogSink(db),
        actuator=actuator,
    )


@router.post(
    "/open",
    response_model=GateOpenResponse,
    responses={402: {"description": "No active or unexpired subscription"}},
)
async def open_gate(
    payload: Optional[GateOpenRequest] = None,
    principal: VerifiedPrincipal = Depends(get_verified_principal),
    authorizer: AccessAuthorizer = Depends(get_access_authorizer),
):
    """Authorize the caller for a unit and open its gate."""
    unit_id = payload.unit_id if payload else None
    decision = await authorizer.authorize(principal.user_id, unit_id)

    if not decision.granted:
        return problem_response(
            402,
            detail=decision.message,
            type_=f"{PROBLEM_BASE_URI}/{decision.reason.value.lower().replace('_', '-')}",
            error_code=decision.reason.value,
            reason=decision.reason.value,
        )

    return GateOpenResponse(
        message=decision.message,
        actuation=decision.actuation.value,
        fallback_code=decision.fallback_hint,
    )
