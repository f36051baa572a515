"""Payment processor (Stripe) REST client.

Only the two lookups reconciliation needs: the authoritative subscription
period end and the customer billing identity. Calls are never retried here;
a failure is surfaced so the webhook is redelivered.

Environment Variables:
- STRIPE_SECRET_KEY: secret API key (sk_test_* or sk_live_*)
- STRIPE_API_TIMEOUT_SECONDS: request timeout (default 10)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

import httpx

from unitlock_api.config.env import get_stripe_secret_key, get_stripe_timeout_seconds
from unitlock_api.errors import TransientDependencyError

logger = logging.getLogger(__name__)

STRIPE_API_BASE = "https://api.stripe.com"
STRIPE_API_VERSION = "2023-10-16"


@dataclass(frozen=True)
class ProcessorSubscription:
    id: str
    status: str
    current_period_end: datetime


@dataclass(frozen=True)
class ProcessorCustomer:
    id: str
    deleted: bool = False
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None


@runtime_checkable
class PaymentProcessor(Protocol):
    async def get_subscription(self, subscription_id: str) -> ProcessorSubscription:
        ...

    async def get_customer(self, customer_id: str) -> ProcessorCustomer:
        ...


def from_unix(ts: int) -> datetime:
    """Processor timestamps are unix seconds."""
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _period_end(payload: dict) -> int:
    # Newer API versions moved current_period_end onto subscription items
    if payload.get("current_period_end") is not None:
        return payload["current_period_end"]
    items = (payload.get("items") or {}).get("data") or []
    ends = [item["current_period_end"] for item in items if item.get("current_period_end") is not None]
    if not ends:
        raise KeyError("current_period_end")
    return max(ends)


class StripeClient:
    """Minimal Stripe REST client."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        base_url: str = STRIPE_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key or get_stripe_secret_key()
        self.timeout = timeout if timeout is not None else get_stripe_timeout_seconds()
        self.base_url = base_url.rstrip("/")
        self.env = "sandbox" if self.secret_key.startswith("sk_test_") else "live"
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Stripe-Version": STRIPE_API_VERSION,
        }

    async def _get(self, path: str, *, resource: str) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(url, headers=self._headers(), timeout=self.timeout)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Stripe lookup rejected",
                extra={
                    "event": f"stripe.{resource}.rejected",
                    "http_status": e.response.status_code,
                },
            )
            raise TransientDependencyError(
                f"Payment processor returned HTTP {e.response.status_code} for {resource}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Stripe lookup failed",
                extra={"event": f"stripe.{resource}.failed", "error_type": type(e).__name__},
            )
            raise TransientDependencyError(f"Payment processor unavailable ({resource})") from e

    async def get_subscription(self, subscription_id: str) -> ProcessorSubscription:
        """Retrieve a subscription.

        Raises:
            TransientDependencyError: If the lookup fails or the payload is unusable
        """
        payload = await self._get(f"/v1/subscriptions/{subscription_id}", resource="subscription")
        try:
            period_end = from_unix(_period_end(payload))
        except (KeyError, TypeError, ValueError) as e:
            raise TransientDependencyError("Subscription payload has no current_period_end") from e

        logger.info(
            "Stripe subscription retrieved",
            extra={
                "event": "stripe.subscription.retrieved",
                "subscription_id": subscription_id,
                "status": payload.get("status"),
            },
        )
        return ProcessorSubscription(
            id=payload.get("id", subscription_id),
            status=payload.get("status", ""),
            current_period_end=period_end,
        )

    async def get_customer(self, customer_id: str) -> ProcessorCustomer:
        """Retrieve a customer. Deleted customers come back with deleted=True.

        Raises:
            TransientDependencyError: If the lookup fails
        """
        payload = await self._get(f"/v1/customers/{customer_id}", resource="customer")
        metadata = payload.get("metadata") or {}
        return ProcessorCustomer(
            id=payload.get("id", customer_id),
            deleted=bool(payload.get("deleted", False)),
            email=payload.get("email"),
            name=payload.get("name"),
            phone=payload.get("phone"),
            tax_id=metadata.get("nip") or None,
        )


_stripe_client: Optional[StripeClient] = None


def get_stripe_client() -> StripeClient:
    """Get or create the process-wide Stripe client.

    Raises:
        ValueError: If STRIPE_SECRET_KEY is missing
    """
    global _stripe_client
    if _stripe_client is None:
        _stripe_client = StripeClient()
    return _stripe_client
