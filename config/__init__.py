"""
Configuration module.

Exports:
    settings / get_settings: Application settings (cached)
    get_supabase_client: Shared Supabase client
    check_connection: Row counts for the health endpoint
"""

from config.settings import settings, get_settings, Settings
from config.database import (
    get_supabase_client,
    check_connection,
    reset_connection,
    DatabaseConnectionError,
)

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "get_supabase_client",
    "check_connection",
    "reset_connection",
    "DatabaseConnectionError",
]
