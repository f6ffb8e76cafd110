"""Shared validation utilities"""

import re
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

OTP_LENGTH = 6


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the store's convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def validate_timezone(name: Optional[str]) -> str:
    """
    Validate an IANA timezone name.

    Raises:
        ValueError: If the zone is unknown
    """
    if not name:
        raise ValueError("Timezone is required")
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e
    return name


def parse_hhmm(value: str) -> time:
    """
    Parse an HH:MM (or HH:MM:SS) wall-clock time.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    match = re.fullmatch(r"(\d{1,2}):(\d{2})(?::(\d{2}))?", (value or "").strip())
    if not match:
        raise ValueError(f"Invalid time format: {value!r} (expected HH:MM)")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(hour, minute)


def local_to_utc(day: date, wall_clock: time, tz_name: str) -> datetime:
    """Convert a local date + wall clock in the given zone to a naive UTC datetime"""
    local = datetime.combine(day, wall_clock).replace(tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> bool:
    """
    Check a coordinate pair is complete and in range.

    Returns:
        True when both are present and valid, False when both are absent

    Raises:
        ValueError: If only one is given or either is out of range
    """
    if latitude is None and longitude is None:
        return False
    if latitude is None or longitude is None:
        raise ValueError("Latitude and longitude must be provided together")
    if not -90 <= latitude <= 90:
        raise ValueError(f"Latitude out of range: {latitude}")
    if not -180 <= longitude <= 180:
        raise ValueError(f"Longitude out of range: {longitude}")
    return True


def normalize_otp(code: Optional[str]) -> str:
    """Strip everything but digits from a submitted meeting code"""
    return re.sub(r"\D", "", code or "")
