"""Supabase client configuration for identity verification.

The API only verifies access tokens issued to the storefront; it never signs
users in. The publishable (anon) key is sufficient for auth.get_user().

KEY NAMING:
- SB_PUBLISHABLE_KEY (Supabase UI 2024+)
- SUPABASE_ANON_KEY (legacy fallback)
"""

import logging
import os
from functools import lru_cache

from supabase import Client, create_client

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase_url() -> str:
    """Get Supabase project URL from environment.

    Raises:
        RuntimeError: If SUPABASE_URL not set
    """
    url = os.getenv("SUPABASE_URL")
    if not url:
        raise RuntimeError(
            "SUPABASE_URL environment variable not set. "
            "Required to verify gate access tokens."
        )
    return url


@lru_cache(maxsize=1)
def get_supabase_api_key() -> str:
    """Get Supabase publishable key, falling back to the legacy anon key name.

    Raises:
        RuntimeError: If neither key is set
    """
    key = os.getenv("SB_PUBLISHABLE_KEY")
    if key:
        return key

    key = os.getenv("SUPABASE_ANON_KEY")
    if key:
        logger.info("Using legacy SUPABASE_ANON_KEY (consider migrating to SB_PUBLISHABLE_KEY)")
        return key

    raise RuntimeError(
        "Neither SB_PUBLISHABLE_KEY nor SUPABASE_ANON_KEY environment variable is set."
    )


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Get the process-wide Supabase client.

    Raises:
        RuntimeError: If configuration is missing
    """
    return create_client(get_supabase_url(), get_supabase_api_key())
