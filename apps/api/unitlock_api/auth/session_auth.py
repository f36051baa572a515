"""Session authentication for gate requests.

FLOW:
1. Storefront signs the user in with Supabase and holds an access token
2. Client calls POST /api/gate/open with Authorization: Bearer <jwt>
3. This dependency verifies the token with Supabase and yields a
   VerifiedPrincipal(user_id, email)

Failures are rejected with 401 before the authorization engine runs, so no
access log entry is written for unauthenticated calls.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from unitlock_api.context import user_id_var
from unitlock_api.errors import ConfigurationError, UnauthenticatedError
from unitlock_api.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

session_security = HTTPBearer(auto_error=False, description="Supabase JWT Session Token")


@dataclass(frozen=True)
class VerifiedPrincipal:
    user_id: str
    email: Optional[str] = None


async def get_verified_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
) -> VerifiedPrincipal:
    """Verify the bearer token with Supabase.

    Raises:
        UnauthenticatedError: Missing, invalid or expired token (401)
        ConfigurationError: Supabase is not configured (500)
    """
    if not credentials or not credentials.credentials:
        raise UnauthenticatedError("Missing Authorization header. Please log in first.")

    try:
        supabase = get_supabase_client()
    except RuntimeError as e:
        logger.error("Supabase not configured", extra={"event": "session.misconfigured"})
        raise ConfigurationError("Identity provider is not configured") from e

    try:
        user_response = supabase.auth.get_user(credentials.credentials)
    except Exception as e:
        logger.warning(
            "JWT validation failed",
            extra={"event": "session.jwt.rejected", "error_type": type(e).__name__},
        )
        raise UnauthenticatedError("Session validation failed. Please log in again.") from e

    if not user_response or not user_response.user:
        raise UnauthenticatedError("Invalid or expired session token. Please log in again.")

    user = user_response.user
    user_id_var.set(str(user.id))
    logger.info("Session JWT validated", extra={"event": "session.jwt.validated"})
    return VerifiedPrincipal(user_id=str(user.id), email=user.email)
