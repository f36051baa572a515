"""Payment lifecycle events as a closed set of variants.

parse_event() turns a verified webhook body into exactly one of:

  CheckoutCompleted         checkout.session.completed
  InvoicePaymentSucceeded   invoice.payment_succeeded
  InvoicePaymentFailed      invoice.payment_failed
  SubscriptionCanceled      customer.subscription.deleted
  UnrecognizedEvent         anything else (acknowledged, no state change)
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from unitlock_api.errors import InvalidRequestError

CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# Checkout metadata written by the storefront when userId was unknown
_ABSENT_MARKERS = frozenset({"", "undefined", "null", "none"})


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    external_subscription_id: str
    external_customer_id: Optional[str]
    unit_id: int
    user_id: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentSucceeded:
    event_id: str
    external_subscription_id: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    external_subscription_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionCanceled:
    event_id: str
    external_subscription_id: str


@dataclass(frozen=True)
class UnrecognizedEvent:
    event_id: str
    type: str


PaymentEvent = Union[
    CheckoutCompleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    SubscriptionCanceled,
    UnrecognizedEvent,
]


def _invalid(detail: str) -> InvalidRequestError:
    return InvalidRequestError(detail, error_code="WEBHOOK_INVALID_PAYLOAD")


def _optional_str(value: Any) -> Optional[str]:
    """Normalize ids that may arrive as strings, expanded objects, or sentinels."""
    if isinstance(value, dict):
        value = value.get("id")
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _ABSENT_MARKERS:
        return None
    return text


def _object_field(obj: dict, key: str, path: str) -> dict:
    """Return a nested object field; absent or null is an empty object."""
    value = obj.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _invalid(f"{path} must be an object")
    return value


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    direct = _optional_str(invoice.get("subscription"))
    if direct:
        return direct
    # API versions >= 2025-03 nest the id under parent.subscription_details
    parent = _object_field(invoice, "parent", "invoice.parent")
    details = _object_field(parent, "subscription_details", "invoice.parent.subscription_details")
    return _optional_str(details.get("subscription"))


def _parse_checkout(event_id: str, session: dict) -> CheckoutCompleted:
    metadata = _object_field(session, "metadata", "checkout.metadata")
    raw_unit = _optional_str(metadata.get("unitId"))
    subscription_id = _optional_str(session.get("subscription"))
    if raw_unit is None or subscription_id is None:
        raise _invalid("Checkout session is missing metadata.unitId or subscription")
    try:
        unit_id = int(raw_unit)
    except ValueError:
        raise _invalid(f"metadata.unitId is not an integer: {raw_unit!r}") from None

    user_id = _optional_str(metadata.get("userId"))
    customer_id = _optional_str(session.get("customer"))
    if user_id is None and customer_id is None:
        raise _invalid("Checkout session has neither metadata.userId nor customer")

    return CheckoutCompleted(
        event_id=event_id,
        external_subscription_id=subscription_id,
        external_customer_id=customer_id,
        unit_id=unit_id,
        user_id=user_id,
    )


def parse_event(body: Any) -> PaymentEvent:
    """Parse a decoded webhook body.

    Raises:
        InvalidRequestError: If the envelope or a recognized event lacks
            required fields
    """
    if not isinstance(body, dict):
        raise _invalid("Webhook body must be a JSON object")

    event_type = body.get("type")
    obj = (body.get("data") or {}).get("object") if isinstance(body.get("data"), dict) else None
    if not isinstance(event_type, str) or not event_type or not isinstance(obj, dict):
        raise _invalid("Missing required fields: type, data.object")

    event_id = str(body.get("id") or "")

    if event_type == CHECKOUT_COMPLETED:
        return _parse_checkout(event_id, obj)

    if event_type == INVOICE_PAYMENT_SUCCEEDED:
        return InvoicePaymentSucceeded(event_id, _invoice_subscription_id(obj))

    if event_type == INVOICE_PAYMENT_FAILED:
        return InvoicePaymentFailed(event_id, _invoice_subscription_id(obj))

    if event_type == SUBSCRIPTION_DELETED:
        subscription_id = _optional_str(obj.get("id"))
        if subscription_id is None:
            raise _invalid("Subscription object has no id")
        return SubscriptionCanceled(event_id, subscription_id)

    return UnrecognizedEvent(event_id, event_type)
