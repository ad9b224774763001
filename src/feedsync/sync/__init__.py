"""
Sync — keeps the local cache consistent with the remote feed service.

Full reconciliation replaces feeds and unread/starred membership.
Incremental reconciliation upserts changed entries and still replaces
membership, because the remote only ever reports complete id sets.
"""

from .engine import DEFAULT_CACHE_LIMIT, SyncService, apply_taggings

__all__ = ["DEFAULT_CACHE_LIMIT", "SyncService", "apply_taggings"]
