"""Fakturownia invoicing client.

Issues a paid VAT invoice after a checkout is reconciled. Invoicing is
best-effort: callers log InvoicingError and move on.

Environment Variables:
- FAKTUROWNIA_API_KEY: API token
- FAKTUROWNIA_ACCOUNT_NAME: account subdomain ({account}.fakturownia.pl)
- FAKTUROWNIA_TIMEOUT_SECONDS: request timeout (default 10)
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Protocol, runtime_checkable

import httpx

from unitlock_api.config.env import get_fakturownia_config, get_invoicing_timeout_seconds
from unitlock_api.errors import InvoicingError

logger = logging.getLogger(__name__)

VAT_RATE = 23
POSITION_NAME_TEMPLATE = "Wynajem kontenera {unit_name}"


@dataclass(frozen=True)
class InvoiceRequest:
    client_name: str
    client_email: Optional[str]
    unit_name: str
    gross_price: Decimal
    tax_no: Optional[str] = None


@dataclass(frozen=True)
class IssuedInvoice:
    id: Optional[int]
    number: Optional[str]


@runtime_checkable
class InvoicingClient(Protocol):
    async def create_invoice(self, request: InvoiceRequest) -> IssuedInvoice:
        """Raises InvoicingError on any provider failure."""
        ...


def price_from_minor_units(amount: int) -> Decimal:
    """Convert grosze to a 2dp PLN amount."""
    return (Decimal(int(amount)) / Decimal(100)).quantize(Decimal("0.01"))


class FakturowniaClient:
    """Fakturownia REST client."""

    def __init__(
        self,
        api_token: str,
        account_name: str,
        *,
        timeout: float = 10.0,
        today: Callable[[], date] = date.today,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = api_token
        self.account_name = account_name
        self.timeout = timeout
        self.base_url = f"https://{account_name}.fakturownia.pl"
        self._today = today
        self._transport = transport

    def build_payload(self, request: InvoiceRequest) -> dict:
        today = self._today().isoformat()
        return {
            "api_token": self.api_token,
            "invoice": {
                "kind": "vat",
                "number": None,
                "sell_date": today,
                "client_name": request.client_name,
                "client_email": request.client_email,
                "client_tax_no": request.tax_no or None,
                "positions": [
                    {
                        "name": POSITION_NAME_TEMPLATE.format(unit_name=request.unit_name),
                        "quantity": 1,
                        "total_price_gross": str(request.gross_price),
                        "tax": VAT_RATE,
                    }
                ],
                "paid": 1,
                "payment_date": today,
            },
        }

    async def create_invoice(self, request: InvoiceRequest) -> IssuedInvoice:
        """Create a paid invoice.

        Raises:
            InvoicingError: On network failure or non-2xx response
        """
        url = f"{self.base_url}/invoices.json"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(url, json=self.build_payload(request), timeout=self.timeout)
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            raise InvoicingError(
                f"Fakturownia returned HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise InvoicingError(f"Fakturownia unavailable: {type(e).__name__}") from e

        invoice = IssuedInvoice(id=result.get("id"), number=result.get("number"))
        logger.info(
            "Invoice issued",
            extra={"event": "invoice.issued", "invoice_id": invoice.id, "invoice_number": invoice.number},
        )
        return invoice


class DisabledInvoicingClient:
    """Used when Fakturownia is not configured; every call fails softly."""

    async def create_invoice(self, request: InvoiceRequest) -> IssuedInvoice:
        raise InvoicingError("Invoicing provider is not configured")


_invoicing_client: Optional[InvoicingClient] = None


def get_invoicing_client() -> InvoicingClient:
    """Get or create the process-wide invoicing client."""
    global _invoicing_client
    if _invoicing_client is None:
        try:
            api_token, account = get_fakturownia_config()
        except ValueError:
            logger.warning(
                "Fakturownia not configured; invoices will not be issued",
                extra={"event": "invoice.disabled"},
            )
            _invoicing_client = DisabledInvoicingClient()
        else:
            _invoicing_client = FakturowniaClient(
                api_token, account, timeout=get_invoicing_timeout_seconds()
            )
    return _invoicing_client
