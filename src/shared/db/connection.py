"""Shared Supabase connection utilities.

Creates the Supabase client used by the job engine stores and provides a
small helper to run blocking PostgREST calls off the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)


@dataclass
class SupabaseConfig:
    """Configuration for Supabase connection.

    Attributes:
        url: Supabase project URL
        key: Supabase API key (service role for the batch jobs)
        schema: Database schema to use (default: public)
    """
    url: str
    key: str
    schema: str = "public"

    @classmethod
    def from_env(
        cls,
        url_var: str = "SUPABASE_URL",
        key_var: str = "SUPABASE_KEY",
        schema_var: str = "SUPABASE_SCHEMA",
    ) -> SupabaseConfig:
        """Create configuration from environment variables.

        ``SUPABASE_SERVICE_ROLE_KEY`` is accepted when ``key_var`` is unset.

        Raises:
            ValueError: If required environment variables are not set
        """
        url = os.getenv(url_var)
        key = os.getenv(key_var) or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        schema = os.getenv(schema_var, "public")

        if not url or not key:
            raise ValueError(
                f"Missing required environment variables: {url_var} and/or {key_var}. "
                f"Please set them in your .env file or environment."
            )

        return cls(url=url, key=key, schema=schema)


def get_supabase_client(config: Optional[SupabaseConfig] = None) -> Client:
    """Create Supabase client.

    Args:
        config: Optional SupabaseConfig. If None, loads from environment.

    Example:
        >>> client = get_supabase_client()
        >>> response = client.table("email_history").select("id").limit(1).execute()
    """
    if config is None:
        config = SupabaseConfig.from_env()

    logger.debug(f"Creating Supabase client for {config.url}")
    client = create_client(config.url, config.key)

    if config.schema and config.schema != "public":
        postgrest = getattr(client, "postgrest", None)
        schema_fn = getattr(postgrest, "schema", None)
        if callable(schema_fn):
            schema_fn(config.schema)
            logger.debug(f"Using schema: {config.schema}")
        else:
            logger.warning(
                "Supabase client does not support schema override; continuing with default schema"
            )

    return client


async def execute_async(query: Any) -> Any:
    """Execute a PostgREST query builder in a worker thread.

    The Supabase SDK is synchronous; running ``execute`` through
    ``asyncio.to_thread`` keeps every storage call a suspension point.
    """
    return await asyncio.to_thread(query.execute)
