import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")

_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def parse_duration(value: Union[str, int, float, None]) -> timedelta:
    """
    Parses a duration such as ``"30s"``, ``"1m30s"`` or ``"2h"``.

    Bare numbers are read as seconds. An empty value is a zero duration.
    """
    if value is None:
        return timedelta(0)
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value}")
        return timedelta(seconds=value)

    text = value.strip().lower()
    if not text:
        return timedelta(0)
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))

    total = timedelta(0)
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        amount, unit = match.groups()
        total += float(amount) * _UNITS[unit]
        position = match.end()

    if position != len(text) or position == 0:
        raise ValueError(f"Invalid duration: '{value}'")
    return total


def optional_duration(value: Union[str, int, float, None]) -> Optional[timedelta]:
    """Like parse_duration, but maps a missing value to None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_duration(value)


def utc_now() -> str:
    """Current time in the RFC 3339 form Kubernetes uses for timestamps."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
