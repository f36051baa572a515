"""Webhook signature verification.

Header format: Stripe-Signature: t=<unix>,v1=<hex>[,v1=<hex>...]
Expected:      hex(HMAC_SHA256(secret, b"<t>." + raw_body))

The raw body must be verified before it is parsed. Any failure raises
UpstreamUnverifiableError (400); authenticity failures are never reported
as 5xx, so the processor does not retry them.
"""

import hashlib
import hmac
import time
from typing import Callable, Optional

from unitlock_api.config.env import DEFAULT_SIGNATURE_TOLERANCE_SECONDS
from unitlock_api.errors import UpstreamUnverifiableError

SIGNATURE_SCHEME = "v1"


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def _parse_header(header: str) -> tuple[Optional[int], list[str]]:
    timestamp: Optional[int] = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)
    return timestamp, signatures


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    *,
    tolerance: int = DEFAULT_SIGNATURE_TOLERANCE_SECONDS,
    now: Callable[[], float] = time.time,
) -> int:
    """Verify a signed webhook payload.

    Returns:
        The signed timestamp

    Raises:
        UpstreamUnverifiableError: header missing/malformed, signature mismatch,
            or timestamp outside the tolerance window
    """
    if not header:
        raise UpstreamUnverifiableError(
            "Missing Stripe-Signature header", error_code="WEBHOOK_MISSING_SIGNATURE"
        )

    timestamp, signatures = _parse_header(header)
    if timestamp is None or not signatures:
        raise UpstreamUnverifiableError(
            "Malformed Stripe-Signature header", error_code="WEBHOOK_SIGNATURE_MALFORMED"
        )

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise UpstreamUnverifiableError("Signature mismatch")

    if tolerance > 0 and abs(int(now()) - timestamp) > tolerance:
        raise UpstreamUnverifiableError(
            "Signature timestamp outside tolerance window",
            error_code="WEBHOOK_SIGNATURE_EXPIRED",
        )

    return timestamp


def build_signature_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Produce a valid header for a payload. Used by tests and local replay tooling."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},{SIGNATURE_SCHEME}={compute_signature(payload, secret, ts)}"
