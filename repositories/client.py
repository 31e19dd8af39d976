"""
Supabase client construction.

This module contains *only* the database connection setup. It does not hold a
process-wide client: the application builds one at startup and passes it to
the store (see `api.dependencies.build_container`).
"""

from __future__ import annotations

from typing import Optional

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]


def create_supabase_client(url: Optional[str], key: Optional[str]) -> Client:
    """
    Create the Supabase client used by `repositories.store.SupabaseStore`.

    Args:
        url: Supabase project URL (SUPABASE_URL)
        key: Supabase API key (SUPABASE_KEY); use a server-side key only

    Raises:
        RuntimeError: If either value is missing
    """

    if not url:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_URL. "
            "Set SUPABASE_URL to your Supabase project URL."
        )

    if not key:
        raise RuntimeError(
            "Missing environment variable: SUPABASE_KEY. "
            "Set SUPABASE_KEY to your Supabase API key."
        )

    return create_client(url, key)


__all__ = ["create_supabase_client"]
