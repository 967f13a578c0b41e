"""Datetime helpers shared by models and repositories."""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional


def utc_now() -> datetime:
    """Current time as a naive UTC datetime, the form stored in SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise an aware datetime to naive UTC; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_header_date(value: str) -> Optional[datetime]:
    """Parse an RFC 5322 Date header, returning None when it is unusable."""
    if not value:
        return None
    try:
        return to_naive_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError):
        return None


def parse_internal_date(value: str) -> Optional[datetime]:
    """Parse an IMAP INTERNALDATE such as ``17-Jul-1996 02:44:25 -0700``."""
    if not value:
        return None
    try:
        return to_naive_utc(datetime.strptime(value.strip(), "%d-%b-%Y %H:%M:%S %z"))
    except ValueError:
        return None
