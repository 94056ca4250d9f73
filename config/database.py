"""
Supabase client for the session store and the catalog gateway.

Imports write across several catalog tables, so the service role key is
used when it is configured; the anon key otherwise.
"""

from functools import lru_cache

import structlog
from supabase import Client, create_client

from config.settings import settings

logger = structlog.get_logger(__name__)

# Tables the health check counts
HEALTH_TABLES = ("import_sessions", "categories", "items")


class DatabaseConnectionError(Exception):
    """Supabase could not be reached with the configured credentials."""
    pass


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get the shared Supabase client.

    Cached; call reset_connection() to build a new one.

    Raises:
        DatabaseConnectionError: If the client cannot query import_sessions
    """
    key = settings.supabase_service_key or settings.supabase_key
    logger.info(
        "connecting_to_supabase",
        url=settings.supabase_url[:30] + "...",
        role="service" if settings.supabase_service_key else "anon",
    )

    try:
        client = create_client(settings.supabase_url, key)
        client.table("import_sessions").select("id").limit(1).execute()
    except Exception as e:
        logger.error("supabase_connection_failed", error=str(e), error_type=type(e).__name__)
        raise DatabaseConnectionError(f"Failed to connect to Supabase: {e}") from e

    logger.info("supabase_connected")
    return client


def check_connection() -> dict:
    """
    Count rows of the import tables.

    Returns:
        {"status": "healthy", "<table>_count": n, ...} or
        {"status": "unhealthy", "error": "..."}
    """
    try:
        client = get_supabase_client()
        counts = {
            f"{table}_count": client.table(table).select("id", count="exact").execute().count
            for table in HEALTH_TABLES
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}

    return {"status": "healthy", **counts}


def reset_connection():
    """Drop the cached client, e.g. after rotating keys."""
    get_supabase_client.cache_clear()
    logger.info("database_connection_reset")
