"""
Feedsync — local-first cache for a Feedbin-style feed aggregator.

Read instantly from a durable SQLite cache. Reconcile with the
remote service when you ask for it.
"""

import os

__version__ = "0.1.0"
__author__ = "feedsync contributors"

FEEDSYNC_HOME = os.environ.get("FEEDSYNC_HOME", "~/.feedsync")
