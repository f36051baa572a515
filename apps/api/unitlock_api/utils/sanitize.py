"""Redaction of credentials and customer data before anything is logged.

What gets scrubbed:
- gate controller and Supabase bearer tokens, basic-auth headers
- Fakturownia ``api_token=`` query/body fragments
- Stripe secret/restricted keys, webhook signing secrets, ``v1=`` signatures
- customer identity fields (email, phone, NIP, address) wherever they appear
  as keys in a structured ``extra``

Strings are handled by length. Anything over MAX_STR_LOG is replaced by its
length and a short digest. Between MAX_STR_FOR_REGEX and MAX_STR_LOG only a
leading auth header is detected. Shorter strings get every pattern applied.
"""

import hashlib
import re
import traceback
from typing import Any

MAX_STR_LOG: int = 2048
MAX_STR_FOR_REGEX: int = 512
MAX_DEPTH: int = 6

REDACTED = "[REDACTED]"

_CREDENTIAL_KEYS = frozenset({
    "authorization", "token", "access_token", "api_token", "api_key",
    "secret", "webhook_secret", "signature", "stripe-signature",
})
_CUSTOMER_KEYS = frozenset({
    "email", "client_email", "phone", "phone_number",
    "client_tax_no", "nip", "address",
})
_SENSITIVE_KEYS = _CREDENTIAL_KEYS | _CUSTOMER_KEYS

_AUTH_HEADER_PREFIXES = ("Bearer ", "Basic ")

_SECRET_PATTERNS = (
    re.compile(r"(?:Bearer|Basic) \S+"),
    re.compile(r"api_token=\S+"),
    re.compile(r"\b(?:sk|rk)_(?:live|test)_\S+"),
    re.compile(r"\bwhsec_\S+"),
    re.compile(r"v1=[0-9a-fA-F]{16,}"),
)


def payload_hash_bytes(raw: bytes) -> str:
    """sha256 hex digest used to correlate webhook bodies without logging them."""
    return hashlib.sha256(raw).hexdigest()


def _digest_placeholder(s: str) -> str:
    digest = hashlib.sha256(s.encode("utf-8", errors="replace")).hexdigest()[:16]
    return f"[TRUNCATED len={len(s)} sha256={digest}]"


def sanitize_str(s: str) -> str:
    if not isinstance(s, str):
        return s  # type: ignore[return-value]

    if len(s) > MAX_STR_LOG:
        return _digest_placeholder(s)

    if len(s) > MAX_STR_FOR_REGEX:
        return REDACTED if s.startswith(_AUTH_HEADER_PREFIXES) else s

    for pattern in _SECRET_PATTERNS:
        s = pattern.sub(REDACTED, s)
    return s


def _is_sensitive_key(key: Any) -> bool:
    return isinstance(key, str) and key.lower() in _SENSITIVE_KEYS


def sanitize_obj(obj: Any, depth: int = 0) -> Any:
    """Walk a log ``extra`` value, masking sensitive keys and scrubbing strings.

    Tuples come back as lists. Nesting deeper than MAX_DEPTH is cut off.
    """
    if depth >= MAX_DEPTH:
        return "[DEPTH_LIMIT]"

    if isinstance(obj, str):
        return sanitize_str(obj)

    if isinstance(obj, dict):
        return {
            key: REDACTED if _is_sensitive_key(key) else sanitize_obj(value, depth + 1)
            for key, value in obj.items()
        }

    if isinstance(obj, (list, tuple)):
        return [sanitize_obj(item, depth + 1) for item in obj]

    return obj


def sanitize_field(key: str, value: Any) -> Any:
    """Scrub one top-level ``extra`` attribute of a log record."""
    if _is_sensitive_key(key):
        return REDACTED
    return sanitize_obj(value)


def sanitize_exc(exc_info: tuple) -> str:
    """Render a traceback for the log line without frame locals."""
    _type, value, _tb = exc_info
    if value is None:
        return ""
    try:
        rendered = "".join(
            traceback.TracebackException.from_exception(value, capture_locals=False).format()
        )
    except Exception:
        return "[TRACEBACK_FORMAT_ERROR]"
    return sanitize_str(rendered)
