"""Tests for structured JSON logging and log sanitizing.

Covers:
- JSONFormatter standard fields and context variables
- Sensitive extras (email, tokens, signatures) redacted
- Webhook logs carry payload_hash, never the raw body
- http.request.completed emitted per request
"""

import json
import logging
from io import StringIO
from unittest.mock import MagicMock

import pytest

from unitlock_api.context import request_id_var, unit_id_var, user_id_var
from unitlock_api.utils.logging import JSONFormatter
from unitlock_api.utils.sanitize import (
    MAX_STR_LOG,
    payload_hash_bytes,
    sanitize_obj,
    sanitize_str,
)


class LogCapture:
    """Capture JSON-formatted log output for a test block."""

    def __init__(self) -> None:
        self._root = logging.getLogger()
        self._saved: list[logging.Handler] = []
        self._saved_level = logging.INFO
        self._stream = StringIO()
        self._handler = logging.StreamHandler(self._stream)
        self._handler.setFormatter(JSONFormatter())

    def __enter__(self) -> "LogCapture":
        self._saved = self._root.handlers[:]
        self._saved_level = self._root.level
        for h in self._saved:
            self._root.removeHandler(h)
        self._root.addHandler(self._handler)
        self._root.setLevel(logging.INFO)
        return self

    def __exit__(self, *_) -> None:
        self._root.removeHandler(self._handler)
        for h in self._saved:
            self._root.addHandler(h)
        self._root.setLevel(self._saved_level)

    def records(self) -> list[dict]:
        out = []
        for line in self._stream.getvalue().splitlines():
            if line.strip():
                out.append(json.loads(line))
        return out

    def find(self, message: str) -> list[dict]:
        return [r for r in self.records() if r.get("message") == message]


@pytest.fixture
def clean_context():
    tokens = [request_id_var.set(""), user_id_var.set(""), unit_id_var.set("")]
    yield
    request_id_var.reset(tokens[0])
    user_id_var.reset(tokens[1])
    unit_id_var.reset(tokens[2])


# ============================================================================
# Formatter
# ============================================================================


def test_formatter_standard_fields(clean_context):
    logger = logging.getLogger("unitlock_api.test")
    with LogCapture() as cap:
        logger.info("hello", extra={"event": "test.event", "attempt": 2})

    [record] = cap.find("hello")
    for field in ("timestamp", "level", "module", "func", "line"):
        assert field in record
    assert record["level"] == "INFO"
    assert record["event"] == "test.event"
    assert record["attempt"] == 2
    assert "request_id" not in record


def test_formatter_includes_context_vars(clean_context):
    request_id_var.set("req-123")
    user_id_var.set("user-42")
    unit_id_var.set("7")
    with LogCapture() as cap:
        logging.getLogger("unitlock_api.test").info("ctx")

    [record] = cap.find("ctx")
    assert record["request_id"] == "req-123"
    assert record["user_id"] == "user-42"
    assert record["unit_id"] == "7"


def test_sensitive_extras_redacted(clean_context):
    with LogCapture() as cap:
        logging.getLogger("unitlock_api.test").info(
            "pii",
            extra={
                "email": "jan@example.com",
                "payload": {"api_token": "secret-token", "client_name": "Jan"},
                "note": "Authorization Bearer eyJhbGciOi.secret",
            },
        )

    raw = json.dumps(cap.records())
    assert "jan@example.com" not in raw
    assert "secret-token" not in raw
    assert "eyJhbGciOi" not in raw
    [record] = cap.find("pii")
    assert record["email"] == "[REDACTED]"
    assert record["payload"]["client_name"] == "Jan"


def test_exception_traceback_is_logged(clean_context):
    with LogCapture() as cap:
        try:
            raise RuntimeError("kaboom")
        except RuntimeError:
            logging.getLogger("unitlock_api.test").error("failed", exc_info=True)

    [record] = cap.find("failed")
    assert "RuntimeError: kaboom" in record["exc_info"]


# ============================================================================
# Sanitizer
# ============================================================================


@pytest.mark.parametrize(
    "raw",
    [
        "key sk_live_abcdef123456",
        "secret whsec_abcdef",
        "sig t=1,v1=0123456789abcdef0123",
        "url?api_token=xyz",
    ],
)
def test_sanitize_str_redacts_secrets(raw):
    assert "[REDACTED]" in sanitize_str(raw)


def test_sanitize_str_truncates_long_values():
    out = sanitize_str("x" * (MAX_STR_LOG + 1))
    assert out.startswith("[TRUNCATED len=")


def test_sanitize_str_long_auth_header_redacted_whole():
    assert sanitize_str("Bearer " + "a" * 600) == "[REDACTED]"
    assert sanitize_str("plain " + "a" * 600).startswith("plain ")


def test_sanitize_obj_masks_credentials_and_customer_identity():
    invoice_call = {
        "api_token": "fk-123",
        "invoice": {
            "client_name": "Jan Kowalski",
            "client_email": "jan@example.com",
            "client_tax_no": "5260250274",
            "positions": ({"name": "Wynajem kontenera A-07", "tax": 23},),
        },
    }

    out = sanitize_obj(invoice_call)

    assert out["api_token"] == "[REDACTED]"
    assert out["invoice"]["client_email"] == "[REDACTED]"
    assert out["invoice"]["client_tax_no"] == "[REDACTED]"
    assert out["invoice"]["client_name"] == "Jan Kowalski"
    assert out["invoice"]["positions"] == [{"name": "Wynajem kontenera A-07", "tax": 23}]


def test_sanitize_obj_depth_limit():
    nested: dict = {}
    cursor = nested
    for _ in range(10):
        cursor["k"] = {}
        cursor = cursor["k"]
    assert "[DEPTH_LIMIT]" in json.dumps(sanitize_obj(nested))


# ============================================================================
# HTTP surface
# ============================================================================


def test_request_completion_logged(test_client):
    with LogCapture() as cap:
        response = test_client.get("/", headers={"X-Request-ID": "req-log-1"})

    assert response.status_code == 200
    completed = cap.find("http.request.completed")
    assert completed
    assert completed[-1]["path"] == "/"
    assert completed[-1]["status_code"] == 200
    assert "duration_ms" in completed[-1]


def test_webhook_logs_hash_not_body(test_client, app, events):
    from unitlock_api.billing.reconciler import EventReconciler
    from unitlock_api.routers.webhooks import get_event_reconciler

    app.dependency_overrides[get_event_reconciler] = lambda: EventReconciler(
        store=MagicMock(), processor=MagicMock(), invoicing=MagicMock(), webhook_secret="whsec_test_secret"
    )
    body = events.checkout(customer="cus_secret_marker")
    raw = json.dumps(body).encode()

    with LogCapture() as cap:
        response = test_client.post(
            "/api/webhooks/stripe", content=raw, headers={"Content-Type": "application/json"}
        )

    assert response.status_code == 400
    received = cap.find("WEBHOOK_RECEIVED")
    assert received
    assert received[0]["payload_hash"] == payload_hash_bytes(raw)
    assert "cus_secret_marker" not in json.dumps(cap.records())
