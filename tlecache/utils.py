import datetime
import sys

from dateutil.parser import isoparse


def utcnow() -> datetime.datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.UTC)


def parse_utc(text: str) -> datetime.datetime:
    """Parse an ISO 8601 timestamp; one without an offset is taken as UTC.

    Raises:
        ValueError: If text is not an ISO 8601 timestamp
    """
    dt = isoparse(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.UTC)
    return dt


def say(msg):
    """Log a message to stderr with a UTC timestamp."""
    d = utcnow().replace(microsecond=0, tzinfo=None)
    sys.stderr.write(f'{d}Z: {str(msg)}\n')
    sys.stderr.flush()
