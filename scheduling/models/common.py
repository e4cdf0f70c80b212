"""Shared field types for the scheduling models."""

from datetime import UTC, datetime
from typing import Annotated

import pytz
from pydantic import AfterValidator, BeforeValidator, EmailStr


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("timestamp must be timezone-aware")
    return value.astimezone(UTC)


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _ensure_timezone(value: str) -> str:
    try:
        pytz.timezone(value)
    except pytz.UnknownTimeZoneError:
        raise ValueError(f"unknown timezone: {value}") from None
    return value


# Absolute timestamps are always stored UTC-normalized.
UTCDateTime = Annotated[datetime, AfterValidator(_ensure_utc)]
Email = Annotated[EmailStr, BeforeValidator(_strip), AfterValidator(str.lower)]
TimezoneName = Annotated[str, AfterValidator(_ensure_timezone)]
