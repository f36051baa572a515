"""Request context management for observability.

Context variables for request tracking across async boundaries.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# User ID - verified principal of the current gate request
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Unit ID - storage unit addressed by the current request or event
unit_id_var: ContextVar[str] = ContextVar("unit_id", default="")
