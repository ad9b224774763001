"""
UI preferences stored as app_state flags.

Each flag lives under its own ``ui_pref_*`` key as ``true``/``false``.
Missing keys fall back to the model defaults.
"""

from __future__ import annotations

import logging
from typing import Optional

from .cache.store import CacheStore
from .context import CallContext
from .errors import CacheReadError
from .models import UIPreferences

logger = logging.getLogger("feedsync.preferences")

PREFERENCE_KEYS = {
    "compact": "ui_pref_compact",
    "mark_read_on_open": "ui_pref_mark_read_on_open",
    "confirm_open_read": "ui_pref_confirm_open_read",
    "relative_time": "ui_pref_relative_time",
    "show_numbers": "ui_pref_show_numbers",
}

_TRUE = {"1", "t", "true"}
_FALSE = {"0", "f", "false"}


def parse_bool(value: str) -> bool:
    """Parse a stored flag.

    Raises:
        ValueError: For anything but 1/0, t/f, true/false (any case).
    """
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def load_preferences(
    store: CacheStore, *, ctx: Optional[CallContext] = None
) -> UIPreferences:
    """Read every preference flag, using defaults for unset ones.

    Raises:
        CacheReadError: If a stored flag is not a boolean.
    """
    values = {}
    for field, key in PREFERENCE_KEYS.items():
        raw = store.get_app_state(key, ctx=ctx)
        if raw is None:
            continue
        try:
            values[field] = parse_bool(raw)
        except ValueError as exc:
            raise CacheReadError(f"parse preference {key!r} value {raw!r}", str(exc)) from exc
    return UIPreferences(**values)


def save_preferences(
    store: CacheStore, prefs: UIPreferences, *, ctx: Optional[CallContext] = None
) -> None:
    for field, key in PREFERENCE_KEYS.items():
        store.set_app_state(key, "true" if getattr(prefs, field) else "false", ctx=ctx)
    logger.debug("Saved UI preferences: %s", prefs.model_dump())
