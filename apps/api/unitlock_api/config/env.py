"""Environment variable resolution utilities.

Canonical env names + fail-fast validation. Values are read at call time so
tests can monkeypatch the environment without reloading modules.
"""

import os
from typing import Optional

_PRODUCTION_ENVS = frozenset({"prod", "production"})

DEFAULT_GATE_TIMEOUT_SECONDS = 5.0
DEFAULT_STRIPE_TIMEOUT_SECONDS = 10.0
DEFAULT_INVOICING_TIMEOUT_SECONDS = 10.0
DEFAULT_SIGNATURE_TOLERANCE_SECONDS = 300
DEFAULT_LOCAL_DATABASE_URL = "sqlite:///./unitlock.db"


def get_unitlock_env() -> str:
    """Get deployment environment name (lower-cased, default "local")."""
    return os.getenv("UNITLOCK_ENV", "local").strip().lower() or "local"


def is_production_env() -> bool:
    """Return True when UNITLOCK_ENV is prod/production."""
    return get_unitlock_env() in _PRODUCTION_ENVS


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}.") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}.")
    return value


def get_database_url() -> str:
    """Get database URL.

    Production: DATABASE_URL is mandatory (fail-fast).
    Development/CI: falls back to a local SQLite file.

    Raises:
        RuntimeError: If DATABASE_URL is missing in production
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    if is_production_env():
        raise RuntimeError(
            "DATABASE_URL environment variable is required in production "
            "(UNITLOCK_ENV=prod/production). Check deployment configuration."
        )
    return DEFAULT_LOCAL_DATABASE_URL


def get_db_connect_timeout_seconds() -> int:
    """Connect timeout handed to the database driver (default 5s)."""
    return int(_get_float("DB_CONNECT_TIMEOUT_SECONDS", 5.0))


def get_stripe_webhook_secret() -> str:
    """Get the shared secret used to verify payment webhooks.

    Raises:
        ValueError: If STRIPE_WEBHOOK_SECRET is not set
    """
    secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise ValueError(
            "STRIPE_WEBHOOK_SECRET is required. "
            "Copy the signing secret (whsec_...) from the processor dashboard."
        )
    return secret


def get_stripe_secret_key() -> str:
    """Get the payment processor API key.

    Raises:
        ValueError: If STRIPE_SECRET_KEY is not set
    """
    key = os.getenv("STRIPE_SECRET_KEY")
    if not key:
        raise ValueError(
            "STRIPE_SECRET_KEY is required. Set it in environment configuration."
        )
    return key


def get_stripe_timeout_seconds() -> float:
    return _get_float("STRIPE_API_TIMEOUT_SECONDS", DEFAULT_STRIPE_TIMEOUT_SECONDS)


def get_signature_tolerance_seconds() -> int:
    """Maximum age of a signed webhook timestamp (default 300s)."""
    return int(_get_float("STRIPE_SIGNATURE_TOLERANCE_SECONDS", DEFAULT_SIGNATURE_TOLERANCE_SECONDS))


def get_gate_api_config() -> tuple[Optional[str], Optional[str]]:
    """Get gate controller (base URL, token).

    Both values are None when the controller is not configured.
    A half-configured controller is rejected.

    Raises:
        ValueError: If only one of GATE_API_URL / GATE_API_TOKEN is set
    """
    url = os.getenv("GATE_API_URL") or None
    token = os.getenv("GATE_API_TOKEN") or None
    if bool(url) != bool(token):
        raise ValueError(
            "GATE_API_URL and GATE_API_TOKEN must be set together. "
            "Unset both to run with the simulated gate outside production."
        )
    return (url.rstrip("/") if url else None), token


def get_gate_timeout_seconds() -> float:
    return _get_float("GATE_API_TIMEOUT_SECONDS", DEFAULT_GATE_TIMEOUT_SECONDS)


def get_fakturownia_config() -> tuple[str, str]:
    """Get invoicing provider (api token, account name).

    Raises:
        ValueError: If FAKTUROWNIA_API_KEY or FAKTUROWNIA_ACCOUNT_NAME is not set
    """
    api_key = os.getenv("FAKTUROWNIA_API_KEY")
    account = os.getenv("FAKTUROWNIA_ACCOUNT_NAME")
    if not api_key or not account:
        raise ValueError(
            "FAKTUROWNIA_API_KEY and FAKTUROWNIA_ACCOUNT_NAME are required for invoicing."
        )
    return api_key, account


def get_invoicing_timeout_seconds() -> float:
    return _get_float("FAKTUROWNIA_TIMEOUT_SECONDS", DEFAULT_INVOICING_TIMEOUT_SECONDS)


def get_cors_allowed_origins() -> list[str]:
    """Explicit CORS allowlist; localhost variants when unset."""
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return [
        "http://localhost:3000",
        "http://localhost:4321",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:4321",
    ]


def json_logs_enabled() -> bool:
    return os.getenv("UNITLOCK_JSON_LOGS", "true").lower() != "false"
