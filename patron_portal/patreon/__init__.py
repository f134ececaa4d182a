"""Patreon integration: API client and the member -> user sync."""

from .client import PatreonClient, PatreonError, PatronPage, parse_members
from .sync import SyncResult, run_sync, sync_patrons

__all__ = [
    "PatreonClient",
    "PatreonError",
    "PatronPage",
    "parse_members",
    "SyncResult",
    "run_sync",
    "sync_patrons",
]
