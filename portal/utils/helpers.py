"""Shared parsing helpers for query-string and JSON input.

parse_bool:        "true"/"1"/"yes" → True, everything else False
parse_positive_int: strict integer parsing with a field name for errors
utcnow / as_utc:   timezone-aware timestamps (SQLite hands back naive ones)
"""
from datetime import datetime, timezone

from portal.core.exceptions import ValidationError

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def parse_bool(value, default=False):
    """Parse a query-string style boolean.

    Accepts real booleans unchanged; None falls back to ``default``.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def parse_positive_int(value, field, default=None, maximum=None):
    """Parse ``value`` as an int >= 1, raising ValidationError otherwise.

    Empty input returns ``default``. Values above ``maximum`` are capped.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}", errors=[
            {"field": field, "message": "Must be a positive integer"}
        ])
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}", errors=[
            {"field": field, "message": "Must be a positive integer"}
        ]) from None
    if number < 1:
        raise ValidationError(f"Invalid {field}", errors=[
            {"field": field, "message": "Must be a positive integer"}
        ])
    if maximum is not None and number > maximum:
        return maximum
    return number


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Attach UTC to naive datetimes loaded back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
