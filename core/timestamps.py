"""Timezone-aware UTC timestamp utilities.

Session records, audit events and registry rows all carry timestamps with
an explicit +00:00 offset so expiry comparisons never mix naive and aware
datetimes.
"""

import math
from datetime import datetime, timezone


def now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def isonow() -> str:
    """Return the current UTC time as an ISO 8601 string with +00:00 offset."""
    return now().isoformat()


def parse_timestamp(iso_str: str) -> datetime:
    """Parse an ISO timestamp, assuming UTC if no timezone info.

    SQLite's CURRENT_TIMESTAMP default is naive.
    """
    dt = datetime.fromisoformat(iso_str)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def seconds_until(deadline: datetime, reference: datetime) -> int:
    """Whole seconds from reference to deadline, rounded up; 0 once passed."""
    remaining = (deadline - reference).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining)
