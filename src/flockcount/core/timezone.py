"""UTC timezone enforcement and clock helpers.

Importing this module sets the TZ environment variable to UTC so that
calendar-day arithmetic (unique days, consecutive days) behaves the same
everywhere. The helpers below are the only places timestamps are minted.
"""

import os
from datetime import UTC, datetime

# Set UTC timezone for the entire application
os.environ["TZ"] = "UTC"


def utcnow_aware() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(UTC)


def as_aware_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are read as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
