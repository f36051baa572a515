"""Domain error taxonomy.

Every error carries the HTTP status and machine-readable code it is rendered
with, so routers and the global exception handler never re-derive them.

    UnitlockError
    ├── UnauthenticatedError        401  identity could not be verified
    ├── InvalidRequestError         400  malformed input or missing event fields
    ├── UpstreamUnverifiableError   400  webhook signature missing or invalid
    ├── TransientDependencyError    500  store / processor unavailable; caller retries
    ├── ConfigurationError          500  required secret or endpoint not configured
    ├── HardwareUnavailableError    ---  gate controller unreachable (caught by the authorizer)
    ├── InvoicingError              ---  invoicing provider failed (logged and swallowed)
    └── DuplicateSubscriptionError  ---  unique insert lost a race (converted to an ack)
"""

from typing import Optional


class UnitlockError(Exception):
    """Base class for domain errors rendered as RFC 9457 problems."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    title: str = "Internal Server Error"

    def __init__(self, detail: str, *, error_code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        if error_code is not None:
            self.error_code = error_code

    @property
    def error_type(self) -> str:
        """Problem type URI for this error."""
        return f"https://unitlock.app/problems/{self.error_code.lower().replace('_', '-')}"


class UnauthenticatedError(UnitlockError):
    status_code = 401
    error_code = "UNAUTHENTICATED"
    title = "Unauthorized"


class InvalidRequestError(UnitlockError):
    status_code = 400
    error_code = "INVALID_REQUEST"
    title = "Bad Request"


class UpstreamUnverifiableError(UnitlockError):
    """Webhook authenticity could not be established. Never retried as a 5xx."""

    status_code = 400
    error_code = "WEBHOOK_SIGNATURE_INVALID"
    title = "Webhook signature verification failed"


class TransientDependencyError(UnitlockError):
    """A mandatory dependency failed; the request may succeed if repeated."""

    status_code = 500
    error_code = "DEPENDENCY_UNAVAILABLE"
    title = "Dependency Unavailable"


class ConfigurationError(UnitlockError):
    status_code = 500
    error_code = "MISCONFIGURED"
    title = "Service Misconfigured"


class HardwareUnavailableError(UnitlockError):
    """Gate controller did not confirm the open command."""

    status_code = 502
    error_code = "GATE_UNAVAILABLE"
    title = "Gate Controller Unavailable"


class InvoicingError(UnitlockError):
    status_code = 502
    error_code = "INVOICING_FAILED"
    title = "Invoicing Provider Failed"


class DuplicateSubscriptionError(UnitlockError):
    """Insert violated a uniqueness rule on the subscriptions table."""

    status_code = 409
    error_code = "DUPLICATE_SUBSCRIPTION"
    title = "Conflict"
