"""Payment processor webhook endpoint.

POST /api/webhooks/stripe

Error taxonomy (retry storm prevention):
  (A) Signature header missing / malformed / mismatched / stale → 400
  (B) Invalid JSON or missing required event fields             → 400
  (C) Our misconfig (missing secret or API key)                 → 500 WEBHOOK_PROVIDER_MISCONFIG
  (D) Store or processor failure on the mandatory path          → 500 WEBHOOK_DEPENDENCY_FAILED
  (E) Anything unexpected after verification                    → 500 WEBHOOK_INTERNAL_ERROR
  500 is ONLY for (C)(D)(E); the processor redelivers those. Signature
  failures are never 500.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from unitlock_api.billing.invoicing import get_invoicing_client
from unitlock_api.billing.reconciler import EventReconciler
from unitlock_api.billing.stripe_client import get_stripe_client
from unitlock_api.config.env import get_signature_tolerance_seconds, get_stripe_webhook_secret
from unitlock_api.context import request_id_var
from unitlock_api.db.repository import SqlSubscriptionStore
from unitlock_api.db.session import get_db
from unitlock_api.errors import (
    ConfigurationError,
    InvalidRequestError,
    TransientDependencyError,
    UpstreamUnverifiableError,
)
from unitlock_api.schemas import WebhookAck
from unitlock_api.utils.sanitize import payload_hash_bytes, sanitize_str

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

PROVIDER = "stripe"


def get_event_reconciler(db: Session = Depends(get_db)) -> EventReconciler:
    """Build the reconciliation engine for one delivery.

    Raises:
        ConfigurationError: Webhook secret or processor key missing (500)
    """
    try:
        return EventReconciler(
            store=SqlSubscriptionStore(db),
            processor=get_stripe_client(),
            invoicing=get_invoicing_client(),
            webhook_secret=get_stripe_webhook_secret(),
            signature_tolerance=get_signature_tolerance_seconds(),
        )
    except ValueError as e:
        logger.error(
            "WEBHOOK_PROVIDER_MISCONFIG",
            extra={"provider": PROVIDER, "error_msg": sanitize_str(str(e))},
        )
        raise ConfigurationError(
            "Webhook processing is not configured", error_code="WEBHOOK_PROVIDER_MISCONFIG"
        ) from e


def _webhook_problem(
    request: Request,
    status: int,
    *,
    code: str,
    title: str,
    detail: str | None,
    payload_hash: str | None,
    extra: dict | None = None,
) -> JSONResponse:
    """Log once + return RFC 9457 Problem Details response with webhook extensions.

    4xx failures → warning log.
    5xx failures → error log + Retry-After: 60 response header.
    """
    request_id = request_id_var.get()
    instance = f"urn:unitlock:trace:{request_id}" if request_id else str(request.url.path)

    log_extra: dict = {
        "event": f"webhook.{code.lower()}",
        "provider": PROVIDER,
        "payload_hash": payload_hash,
        "error_code": code,
    }
    if extra:
        log_extra.update(extra)

    if status >= 500:
        logger.error(code, extra=log_extra)
    else:
        logger.warning(code, extra=log_extra)

    content: dict = {
        "type": f"urn:unitlock:webhook:{code.lower()}",
        "title": title,
        "status": status,
        "provider": PROVIDER,
        "error_code": code,
        "instance": instance,
    }
    if detail is not None:
        content["detail"] = detail
    if payload_hash is not None:
        content["payload_hash"] = payload_hash

    headers = {}
    if status >= 500:
        headers["Retry-After"] = "60"

    return JSONResponse(
        status_code=status,
        content=content,
        media_type="application/problem+json",
        headers=headers,
    )


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    reconciler: EventReconciler = Depends(get_event_reconciler),
):
    """Stripe webhook handler."""
    # ── Step 0: Raw body ingestion (signature covers the exact bytes) ───────
    raw_body: bytes = await request.body()
    payload_hash = payload_hash_bytes(raw_body)
    logger.info(
        "WEBHOOK_RECEIVED",
        extra={"provider": PROVIDER, "payload_hash": payload_hash, "payload_size": len(raw_body)},
    )

    # ── Step 1: Verify, parse, apply ────────────────────────────────────────
    try:
        outcome = await reconciler.reconcile(raw_body, stripe_signature)
    except UpstreamUnverifiableError as e:
        return _webhook_problem(
            request, 400,
            code=e.error_code,
            title=e.title,
            detail=e.detail,
            payload_hash=payload_hash,
        )
    except InvalidRequestError as e:
        return _webhook_problem(
            request, 400,
            code=e.error_code,
            title="Invalid webhook payload",
            detail=e.detail,
            payload_hash=payload_hash,
        )
    except ConfigurationError as e:
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_PROVIDER_MISCONFIG",
            title="Webhook provider misconfigured",
            detail=None,
            payload_hash=payload_hash,
            extra={"reason": e.error_code},
        )
    except TransientDependencyError as e:
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_DEPENDENCY_FAILED",
            title="Webhook dependency unavailable",
            detail="Event was not applied; it will be accepted on redelivery",
            payload_hash=payload_hash,
            extra={"reason": e.error_code, "error_msg": sanitize_str(e.detail)[:200]},
        )
    except Exception as e:
        return _webhook_problem(
            request, 500,
            code="WEBHOOK_INTERNAL_ERROR",
            title="Internal webhook processing error",
            detail=None,
            payload_hash=payload_hash,
            extra={"error_type": type(e).__name__, "error_msg": sanitize_str(str(e))[:200]},
        )

    logger.info(
        "WEBHOOK_ACKNOWLEDGED",
        extra={
            "provider": PROVIDER,
            "payload_hash": payload_hash,
            "event_type": outcome.event_type,
            "event_id": outcome.event_id,
            "outcome": outcome.status.value,
        },
    )
    return WebhookAck(status=outcome.status.value, event_type=outcome.event_type)
