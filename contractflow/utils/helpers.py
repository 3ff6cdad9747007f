"""Shared date helpers.

parse_datetime:       ISO date / datetime parsing, None on bad input
parse_datetime_input: same, raising ValueError for request bodies
"""
from datetime import date, datetime, time, timezone


def parse_datetime(value):
    """Parse an ISO date or datetime string into an aware UTC datetime.

    Returns None for empty/invalid input. Naive values are assumed UTC;
    bare dates map to midnight.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_datetime_input(value):
    """Same as parse_datetime() but raises ValueError on non-empty bad input."""
    if value in (None, ""):
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid date format: {value!r}. Use ISO 8601.")
    return parsed
