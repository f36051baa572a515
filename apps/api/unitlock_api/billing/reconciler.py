"""Payment event reconciliation.

Consumes at-least-once, unordered payment webhooks and applies idempotent
transitions to the subscription store:

  NONE ──checkout──▶ ACTIVE ──renewal──▶ ACTIVE
                       │
                       └──cancel──▶ CANCELED (terminal for that external id)

Idempotency rests on the unique external subscription id: a duplicate
checkout either hits the fast-path lookup or loses the insert race, and both
are acknowledged as "duplicate". Invoicing runs after the commit and can
never fail the event.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from unitlock_api.billing.events import (
    CheckoutCompleted,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    PaymentEvent,
    SubscriptionCanceled,
    UnrecognizedEvent,
    parse_event,
)
from unitlock_api.billing.invoicing import InvoiceRequest, InvoicingClient, price_from_minor_units
from unitlock_api.billing.signature import verify_signature
from unitlock_api.billing.stripe_client import PaymentProcessor, ProcessorCustomer
from unitlock_api.config.env import DEFAULT_SIGNATURE_TOLERANCE_SECONDS
from unitlock_api.context import unit_id_var
from unitlock_api.db.models import SUBSCRIPTION_CANCELED, UNIT_OCCUPIED
from unitlock_api.db.repository import ProfileData, SubscriptionStore
from unitlock_api.errors import (
    DuplicateSubscriptionError,
    InvalidRequestError,
    TransientDependencyError,
)

logger = logging.getLogger(__name__)


class ReconcileStatus(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileOutcome:
    status: ReconcileStatus
    event_type: str
    event_id: str = ""


class EventReconciler:
    """Event reconciliation state machine with injected collaborators."""

    def __init__(
        self,
        store: SubscriptionStore,
        processor: PaymentProcessor,
        invoicing: InvoicingClient,
        *,
        webhook_secret: str,
        signature_tolerance: int = DEFAULT_SIGNATURE_TOLERANCE_SECONDS,
    ):
        self.store = store
        self.processor = processor
        self.invoicing = invoicing
        self.webhook_secret = webhook_secret
        self.signature_tolerance = signature_tolerance

    async def reconcile(self, raw_payload: bytes, signature_header: Optional[str]) -> ReconcileOutcome:
        """Verify, parse and apply one webhook delivery.

        Raises:
            UpstreamUnverifiableError: Signature missing or invalid (400)
            InvalidRequestError: Body is not JSON or lacks required fields (400)
            TransientDependencyError: Store or processor failed; redeliver (500)
        """
        verify_signature(
            raw_payload,
            signature_header,
            self.webhook_secret,
            tolerance=self.signature_tolerance,
        )

        try:
            body = json.loads(raw_payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidRequestError(
                "Request body is not valid JSON", error_code="WEBHOOK_INVALID_JSON"
            ) from None

        event = parse_event(body)
        return await self.apply(event)

    async def apply(self, event: PaymentEvent) -> ReconcileOutcome:
        """Dispatch a parsed event to its transition."""
        if isinstance(event, CheckoutCompleted):
            return await self._on_checkout_completed(event)
        elif isinstance(event, InvoicePaymentSucceeded):
            return await self._on_payment_succeeded(event)
        elif isinstance(event, InvoicePaymentFailed):
            logger.warning(
                "WEBHOOK_PAYMENT_FAILED",
                extra={"event_id": event.event_id, "subscription_id": event.external_subscription_id},
            )
            return ReconcileOutcome(ReconcileStatus.IGNORED, "invoice.payment_failed", event.event_id)
        elif isinstance(event, SubscriptionCanceled):
            return self._on_subscription_canceled(event)
        elif isinstance(event, UnrecognizedEvent):
            logger.info("WEBHOOK_EVENT_NOT_HANDLED", extra={"event_id": event.event_id, "event_type": event.type})
            return ReconcileOutcome(ReconcileStatus.IGNORED, event.type, event.event_id)
        else:
            raise TypeError(f"Unsupported event variant: {type(event).__name__}")

    # ── checkout.session.completed ──────────────────────────────────────────

    async def _on_checkout_completed(self, event: CheckoutCompleted) -> ReconcileOutcome:
        event_type = "checkout.session.completed"
        unit_id_var.set(str(event.unit_id))

        if self.store.get_subscription_by_external_id(event.external_subscription_id) is not None:
            logger.info(
                "WEBHOOK_DUPLICATE",
                extra={"event_id": event.event_id, "subscription_id": event.external_subscription_id},
            )
            return ReconcileOutcome(ReconcileStatus.DUPLICATE, event_type, event.event_id)

        processor_sub = await self.processor.get_subscription(event.external_subscription_id)

        customer: Optional[ProcessorCustomer] = None
        if event.user_id is None:
            customer = await self.processor.get_customer(event.external_customer_id)
            if customer.deleted:
                raise TransientDependencyError(
                    f"Customer {customer.id} is deleted; cannot create profile",
                    error_code="CUSTOMER_DELETED",
                )

        profile_id = event.user_id or customer.id
        profile_created = False

        try:
            with self.store.transaction():
                if not self.store.set_unit_status(event.unit_id, UNIT_OCCUPIED):
                    raise InvalidRequestError(
                        f"Unknown unit {event.unit_id}", error_code="WEBHOOK_UNKNOWN_UNIT"
                    )

                if customer is None:
                    if not self.store.attach_customer_to_profile(profile_id, event.external_customer_id):
                        profile_created = self.store.upsert_profile(
                            ProfileData(id=profile_id, email=None, stripe_customer_id=event.external_customer_id)
                        )
                else:
                    profile_created = self.store.upsert_profile(
                        ProfileData(
                            id=customer.id,
                            email=customer.email,
                            full_name=customer.name or "",
                            phone_number=customer.phone or "",
                            stripe_customer_id=customer.id,
                        )
                    )

                self.store.insert_subscription(
                    user_id=profile_id,
                    unit_id=event.unit_id,
                    external_id=event.external_subscription_id,
                    current_period_end=processor_sub.current_period_end,
                )
        except DuplicateSubscriptionError:
            if self.store.get_subscription_by_external_id(event.external_subscription_id) is not None:
                logger.info(
                    "WEBHOOK_DUPLICATE",
                    extra={
                        "event_id": event.event_id,
                        "subscription_id": event.external_subscription_id,
                        "race": True,
                    },
                )
                return ReconcileOutcome(ReconcileStatus.DUPLICATE, event_type, event.event_id)
            raise TransientDependencyError(
                "An active subscription already exists for this user and unit",
                error_code="ACTIVE_SUBSCRIPTION_CONFLICT",
            ) from None

        logger.info(
            "WEBHOOK_SUBSCRIPTION_ACTIVATED",
            extra={
                "event_id": event.event_id,
                "subscription_id": event.external_subscription_id,
                "profile_created": profile_created,
                "current_period_end": processor_sub.current_period_end.isoformat(),
            },
        )

        try:
            await self._issue_invoice(event, customer)
        except Exception as e:
            logger.warning(
                "WEBHOOK_INVOICE_FAILED",
                extra={
                    "event_id": event.event_id,
                    "error_type": type(e).__name__,
                    "error_msg": str(e)[:200],
                },
            )

        return ReconcileOutcome(ReconcileStatus.PROCESSED, event_type, event.event_id)

    async def _issue_invoice(self, event: CheckoutCompleted, customer: Optional[ProcessorCustomer]) -> None:
        unit = self.store.get_unit(event.unit_id)
        if unit is None:
            logger.warning("Invoice skipped: unit not found", extra={"event": "invoice.skipped"})
            return

        if customer is None and event.external_customer_id:
            customer = await self.processor.get_customer(event.external_customer_id)

        # Invoices are delivered by e-mail
        if customer is None or not customer.email:
            logger.warning("Invoice skipped: customer has no email", extra={"event": "invoice.skipped"})
            return
        client_name = customer.name or customer.email

        await self.invoicing.create_invoice(
            InvoiceRequest(
                client_name=client_name,
                client_email=customer.email,
                unit_name=unit.name,
                gross_price=price_from_minor_units(unit.price_monthly),
                tax_no=customer.tax_id,
            )
        )

    # ── invoice.payment_succeeded ───────────────────────────────────────────

    async def _on_payment_succeeded(self, event: InvoicePaymentSucceeded) -> ReconcileOutcome:
        event_type = "invoice.payment_succeeded"
        external_id = event.external_subscription_id
        if external_id is None:
            logger.info("WEBHOOK_INVOICE_WITHOUT_SUBSCRIPTION", extra={"event_id": event.event_id})
            return ReconcileOutcome(ReconcileStatus.IGNORED, event_type, event.event_id)

        existing = self.store.get_subscription_by_external_id(external_id)
        if existing is None or existing.status == SUBSCRIPTION_CANCELED:
            logger.info(
                "WEBHOOK_RENEWAL_SKIPPED",
                extra={
                    "event_id": event.event_id,
                    "subscription_id": external_id,
                    "reason": "untracked" if existing is None else "canceled",
                },
            )
            return ReconcileOutcome(ReconcileStatus.IGNORED, event_type, event.event_id)

        processor_sub = await self.processor.get_subscription(external_id)

        with self.store.transaction():
            renewed = self.store.renew_subscription(external_id, processor_sub.current_period_end)

        logger.info(
            "WEBHOOK_SUBSCRIPTION_RENEWED",
            extra={
                "event_id": event.event_id,
                "subscription_id": external_id,
                "current_period_end": renewed.current_period_end.isoformat() if renewed else None,
            },
        )
        return ReconcileOutcome(ReconcileStatus.PROCESSED, event_type, event.event_id)

    # ── customer.subscription.deleted ───────────────────────────────────────

    def _on_subscription_canceled(self, event: SubscriptionCanceled) -> ReconcileOutcome:
        event_type = "customer.subscription.deleted"
        external_id = event.external_subscription_id

        existing = self.store.get_subscription_by_external_id(external_id)
        if existing is None:
            logger.info("WEBHOOK_CANCEL_UNTRACKED", extra={"event_id": event.event_id, "subscription_id": external_id})
            return ReconcileOutcome(ReconcileStatus.IGNORED, event_type, event.event_id)
        if existing.status == SUBSCRIPTION_CANCELED:
            return ReconcileOutcome(ReconcileStatus.DUPLICATE, event_type, event.event_id)

        with self.store.transaction():
            self.store.cancel_subscription(external_id)

        logger.info("WEBHOOK_SUBSCRIPTION_CANCELED", extra={"event_id": event.event_id, "subscription_id": external_id})
        return ReconcileOutcome(ReconcileStatus.PROCESSED, event_type, event.event_id)
