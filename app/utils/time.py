"""Time Utilities for UTC management"""

from datetime import datetime, timezone
from typing import Optional


def get_utc_now() -> datetime:
    """
    Returns a naive UTC datetime.
    Matches the DB schema (TIMESTAMP WITHOUT TIME ZONE).
    Avoids 'datetime.utcnow()' deprecation warnings.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix(timestamp: Optional[int], fallback: Optional[datetime] = None) -> Optional[datetime]:
    """
    Convert a gateway unix timestamp (seconds) to a naive UTC datetime.

    Returns `fallback` when the timestamp is missing or zero.
    """
    if not timestamp:
        return fallback
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)
