# birthday_worker/scheduler/civil_time.py
"""Tenant-local wall clock.

Every "what day is it for this tenant" question goes through here, so
birthday matching only ever sees civil dates, never raw instants.
"""
from dataclasses import dataclass
from datetime import date, datetime, timezone as dt_timezone, tzinfo
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class CivilTime:
    year: int
    month: int
    day: int
    hour: int
    minute: int

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)

    @property
    def date_key(self) -> str:
        return self.date.isoformat()

@lru_cache(maxsize=512)
def resolve_zone(timezone: Optional[str]) -> tzinfo:
    """IANA zone for a tenant; unknown or empty identifiers fall back to UTC"""
    if not timezone:
        return dt_timezone.utc
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # OSError covers directory names such as "America" and overlong names
        logger.warning(f"Unknown timezone {timezone!r}, falling back to UTC")
        return dt_timezone.utc

def _as_aware(instant: datetime) -> datetime:
    # Naive instants are UTC by convention
    if instant.tzinfo is None:
        return instant.replace(tzinfo=dt_timezone.utc)
    return instant

def local_now(timezone: Optional[str], instant: Optional[datetime] = None) -> CivilTime:
    """Wall-clock date and time in the tenant's zone at `instant` (default: now)"""
    moment = _as_aware(instant or datetime.now(dt_timezone.utc))
    local = moment.astimezone(resolve_zone(timezone))
    return CivilTime(local.year, local.month, local.day, local.hour, local.minute)

def local_date(instant: datetime, timezone: Optional[str]) -> date:
    return _as_aware(instant).astimezone(resolve_zone(timezone)).date()

def local_date_key(instant: datetime, timezone: Optional[str]) -> str:
    """Stable ISO date string used as the run ledger's date component"""
    return local_date(instant, timezone).isoformat()

def local_instant(day: date, hour: int, minute: int, timezone: Optional[str]) -> datetime:
    """UTC instant of a tenant-local wall-clock time"""
    local = datetime(day.year, day.month, day.day, hour, minute, tzinfo=resolve_zone(timezone))
    return local.astimezone(dt_timezone.utc)
