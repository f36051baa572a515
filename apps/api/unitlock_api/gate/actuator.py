"""Gate controller client.

Sends a single "open" command to the gate hardware. The controller may be
offline; callers treat HardwareUnavailableError as a degraded success, not
as a denial.

Environment Variables:
- GATE_API_URL: controller base URL (POST {url}/trigger)
- GATE_API_TOKEN: bearer token for the controller
- GATE_API_TIMEOUT_SECONDS: request timeout (default 5)
"""

import logging
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

import httpx

from unitlock_api.config.env import (
    get_gate_api_config,
    get_gate_timeout_seconds,
    is_production_env,
)
from unitlock_api.errors import HardwareUnavailableError

logger = logging.getLogger(__name__)


class ActuationResult(str, Enum):
    """What the gate actually did after an authorized request."""

    OPENED = "opened"
    SIMULATED = "simulated"


@runtime_checkable
class GateActuator(Protocol):
    async def open(self, *, unit_id: int, user_id: str) -> ActuationResult:
        """Open the gate for a unit.

        Raises:
            HardwareUnavailableError: If the controller did not confirm
        """
        ...


class HttpGateActuator:
    """Gate controller reached over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def open(self, *, unit_id: int, user_id: str) -> ActuationResult:
        url = f"{self.base_url}/trigger"
        headers = {"Authorization": f"Bearer {self.token}"}
        body = {"unitId": unit_id, "userId": user_id, "action": "open"}

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(url, json=body, headers=headers, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(
                "Gate controller unreachable",
                extra={"event": "gate.trigger.unreachable", "error_type": type(e).__name__},
            )
            raise HardwareUnavailableError(f"Gate controller unreachable: {type(e).__name__}") from e

        if response.is_error:
            logger.warning(
                "Gate controller rejected open command",
                extra={"event": "gate.trigger.rejected", "http_status": response.status_code},
            )
            raise HardwareUnavailableError(
                f"Gate controller returned HTTP {response.status_code}"
            )

        logger.info("Gate opened", extra={"event": "gate.trigger.opened"})
        return ActuationResult.OPENED


class SimulatedGateActuator:
    """Stand-in used when no controller is configured outside production."""

    async def open(self, *, unit_id: int, user_id: str) -> ActuationResult:
        logger.info("Gate controller not configured, simulating open", extra={"event": "gate.trigger.simulated"})
        return ActuationResult.SIMULATED


class UnconfiguredGateActuator:
    """Production without a controller: every open is reported as a hardware failure."""

    async def open(self, *, unit_id: int, user_id: str) -> ActuationResult:
        logger.error(
            "GATE_API_URL/GATE_API_TOKEN missing in production",
            extra={"event": "gate.trigger.misconfigured"},
        )
        raise HardwareUnavailableError("Gate controller is not configured")


_gate_actuator: Optional[GateActuator] = None


def get_gate_actuator() -> GateActuator:
    """Get or create the process-wide gate actuator."""
    global _gate_actuator
    if _gate_actuator is None:
        url, token = get_gate_api_config()
        if url and token:
            _gate_actuator = HttpGateActuator(url, token, timeout=get_gate_timeout_seconds())
        elif is_production_env():
            _gate_actuator = UnconfiguredGateActuator()
        else:
            _gate_actuator = SimulatedGateActuator()
    return _gate_actuator
