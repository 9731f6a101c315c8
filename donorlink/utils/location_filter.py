"""
Recency filter for live donor locations.

A location is "live" while its effective timestamp is within the freshness
window. Stale entries are only hidden from reads; they are not deleted here.
"""
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..models import Location
from .time import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_HOURS = 1
EXPIRING_SOON_MINUTES = 10

_TIME_FIELDS = ("timestamp", "response_time", "created_at")


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def _parse(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def effective_time(entry: Any) -> Optional[datetime]:
    """First usable timestamp among submission, response and creation time."""
    for name in _TIME_FIELDS:
        value = _parse(_field(entry, name))
        if value is not None:
            return value
    return None


def filter_live(
    locations: Iterable[Any],
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    now: Optional[datetime] = None,
) -> List[Any]:
    """
    Keep only locations added within the last `max_age_hours`.

    Args:
        locations: Location rows or dicts
        max_age_hours: Freshness window in hours
        now: Reference time (defaults to current UTC time)

    Returns:
        Entries whose effective timestamp is at or after `now - window`,
        in their original order. Entries with no timestamp are dropped.
    """
    cutoff = (as_utc(now) or utcnow()) - timedelta(hours=max_age_hours)
    live = []
    for location in locations:
        added_at = effective_time(location)
        if added_at is not None and added_at >= cutoff:
            live.append(location)
        else:
            logger.debug(f"⏰ Location expired: {_field(location, 'user_name') or 'Unknown'} (added {added_at})")
    return live


def recent_location_clause(max_age_hours: float = DEFAULT_MAX_AGE_HOURS, now: Optional[datetime] = None):
    """SQL predicate equivalent of `filter_live` on the submission timestamp."""
    cutoff = (as_utc(now) or utcnow()) - timedelta(hours=max_age_hours)
    return Location.timestamp >= cutoff


def time_remaining(
    added_at: datetime,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Minutes and seconds until a location drops out of the live window."""
    expires_at = as_utc(added_at) + timedelta(hours=max_age_hours)
    remaining = expires_at - (as_utc(now) or utcnow())
    remaining_ms = int(remaining.total_seconds() * 1000)

    if remaining_ms <= 0:
        return {"expired": True, "minutes": 0, "seconds": 0, "total_ms": 0}

    return {
        "expired": False,
        "minutes": remaining_ms // 60000,
        "seconds": (remaining_ms % 60000) // 1000,
        "total_ms": remaining_ms,
    }


def add_expiry_info(
    entry: Dict[str, Any],
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    now: Optional[datetime] = None,
    expiring_soon_minutes: int = EXPIRING_SOON_MINUTES,
) -> Dict[str, Any]:
    """Return a copy of `entry` with an `expiry_info` block for display."""
    added_at = effective_time(entry) or as_utc(now) or utcnow()
    remaining = time_remaining(added_at, max_age_hours, now)
    return {
        **entry,
        "expiry_info": {
            "added_at": added_at,
            "expires_at": added_at + timedelta(hours=max_age_hours),
            "time_remaining": remaining,
            "is_expiring_soon": not remaining["expired"] and remaining["minutes"] < expiring_soon_minutes,
        },
    }
