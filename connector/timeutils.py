"""
Time normalization helpers.
Converts the time representations accepted by the public API to
epoch-milliseconds and back.
"""

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Optional

from dateutil import parser as date_parser
from dateutil import tz as date_tz

from .errors import ParseError, ValidationError


# Smallest 13-digit value; anything below is taken to be seconds.
MILLISECOND_THRESHOLD = 10 ** 12

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def get_timezone(name: Optional[str]) -> tzinfo:
    """
    Resolve a named timezone.

    Args:
        name: IANA timezone name (e.g. 'Asia/Kolkata'); None means UTC

    Returns:
        tzinfo instance

    Raises:
        ValidationError: If the name is unknown
    """
    if name is None or name.upper() == "UTC":
        return timezone.utc

    zone = date_tz.gettz(name)
    if zone is None:
        raise ValidationError(f"Unknown timezone: {name}")
    return zone


def _to_millis(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(milliseconds=1)


def _check_milliseconds(value: float) -> int:
    if abs(value) < MILLISECOND_THRESHOLD:
        raise ValidationError(
            f"Invalid timestamp {value}: timestamp not in milliseconds"
        )
    return int(value)


def time_to_unix(time: Any = None, tz: Optional[str] = "UTC") -> int:
    """
    Convert a time value to a Unix timestamp in milliseconds.

    Args:
        time: ISO-8601 string, epoch-milliseconds number, datetime/date,
            or None for the current instant
        tz: Timezone used for values carrying no offset of their own

    Returns:
        Epoch-milliseconds

    Raises:
        ValidationError: If the value is in seconds, malformed, or carries
            an offset that disagrees with tz
    """
    zone = get_timezone(tz)

    if time is None:
        return _to_millis(datetime.now(timezone.utc))

    if isinstance(time, bool):
        raise ValidationError(f"Invalid timestamp: {time!r}")

    if isinstance(time, (int, float)):
        return _check_milliseconds(time)

    if isinstance(time, datetime):
        if time.tzinfo is None:
            time = time.replace(tzinfo=zone)
        return _to_millis(time)

    if isinstance(time, date):
        midnight = datetime(time.year, time.month, time.day, tzinfo=zone)
        return _to_millis(midnight)

    if isinstance(time, str):
        text = time.strip()
        if text.lstrip("-").isdigit():
            return _check_milliseconds(int(text))

        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError) as e:
            raise ValidationError(f"malformed timestamp {time!r}: {e}")

        if parsed.tzinfo is None:
            return _to_millis(parsed.replace(tzinfo=zone))

        # An explicit offset must agree with the zone at that wall time
        expected = parsed.replace(tzinfo=zone).utcoffset()
        if parsed.utcoffset() != expected:
            raise ValidationError(
                f"mismatched offset in {time!r}: expected {expected} for timezone {tz}"
            )
        return _to_millis(parsed)

    raise ValidationError(f"Unsupported time value of type {type(time).__name__}")


def unix_to_iso(millis: int, tz: Optional[str] = "UTC") -> str:
    """Render epoch-milliseconds as ISO-8601 with millisecond precision."""
    zone = get_timezone(tz)
    moment = (EPOCH + timedelta(milliseconds=int(millis))).astimezone(zone)
    text = moment.isoformat(timespec='milliseconds')
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def parse_wire_time(value: Any) -> int:
    """
    Convert a timestamp received from the backend to epoch-milliseconds.

    Offsets in the payload are trusted as-is and naive strings are read as
    UTC, so the caller's timezone never applies here.

    Raises:
        ParseError: If the value cannot be interpreted
    """
    if value is None:
        raise ParseError("Missing timestamp in response row")

    if isinstance(value, str) and not value.strip().lstrip("-").isdigit():
        try:
            parsed = date_parser.isoparse(value.strip())
        except (ValueError, OverflowError) as e:
            raise ParseError(f"Unparseable timestamp in response: {value!r}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return _to_millis(parsed)

    try:
        return time_to_unix(value, "UTC")
    except ValidationError as e:
        raise ParseError(f"Invalid timestamp in response: {e.message}") from e
