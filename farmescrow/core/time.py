"""
farmescrow/core/time.py

Ledger time helpers.

Ledger time is integer seconds since the Unix epoch (UTC). Every module that
needs "now" takes a clock callable defaulting to unix_now(), so tests can pin
or advance time without patching.
"""

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], int]


def unix_now() -> int:
    """Current UTC time in whole seconds."""
    return int(time.time())


def to_rfc3339(timestamp: int) -> str:
    """Format epoch seconds as YYYY-MM-DDTHH:MM:SSZ (Horizon's abs_before format)."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def from_rfc3339(value: str) -> int:
    """Parse a Horizon timestamp back to epoch seconds."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())
