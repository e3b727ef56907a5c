"""
Parsers for the textual values Dune sends back.

Dune transmits timestamps in two shapes:
  - response fields (e.g. `submitted_at`): 2022-12-23T10:34:06.129331594Z
  - data columns of type timestamp:        2022-05-04 00:00:00.000 UTC
Fractions may carry up to nanosecond precision and are truncated to microseconds.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from duners.models import DeserializationError

RESPONSE_DATE_PATTERN = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})T(?P<time>\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d{1,9}))?Z$"
)
DATA_DATE_PATTERN = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[ T](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d{1,9}))?(?: UTC)?$"
)


def _from_match(match: re.Match[str] | None, date_str: str, kind: str) -> datetime:
    if match is None:
        raise DeserializationError(f"'{date_str}' is not a valid Dune {kind} timestamp")
    fraction = (match["fraction"] or "0")[:6].ljust(6, "0")
    try:
        parsed = datetime.strptime(
            f"{match['date']} {match['time']}.{fraction}", "%Y-%m-%d %H:%M:%S.%f"
        )
    except ValueError as err:
        raise DeserializationError(f"'{date_str}' is not a valid Dune {kind} timestamp") from err
    return parsed.replace(tzinfo=UTC)


def date_parse(date_str: str) -> datetime:
    """The date format returned by DuneAPI response Date fields (e.g. `submitted_at`)"""
    return _from_match(RESPONSE_DATE_PATTERN.match(date_str), date_str, "response")


def dune_date(date_str: str) -> datetime:
    """The Date format returned from data fields of type timestamp."""
    return _from_match(DATA_DATE_PATTERN.match(date_str), date_str, "data")


def datetime_from_str(value: Any) -> datetime:
    """
    Parses either of the Dune timestamp formats into an aware UTC datetime.
    datetime instances are passed through (normalized to UTC when naive).
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str):
        raise DeserializationError(f"expected a timestamp string, got {type(value).__name__}")
    try:
        # First try to parse response type date strings
        return date_parse(value)
    except DeserializationError:
        return dune_date(value)


def optional_datetime_from_str(value: Any) -> datetime | None:
    """Like datetime_from_str, but lets null values through"""
    if value is None:
        return None
    return datetime_from_str(value)


def float_from_str(value: Any) -> float:
    """
    Dune serializes large or decimal numbers as strings, e.g. "3.141592653589793".
    """
    if isinstance(value, bool):
        raise DeserializationError(f"expected a number, got boolean {value}")
    if isinstance(value, int | float):
        return float(value)
    if not isinstance(value, str):
        raise DeserializationError(f"expected a numeric string, got {type(value).__name__}")
    try:
        return float(value)
    except ValueError as err:
        raise DeserializationError(f"'{value}' is not a number") from err
