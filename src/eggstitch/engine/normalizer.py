"""Value normalization.

Numeric validation, the invalid-value sentinel, temperature unit conversion,
rounding and timestamp handling shared by the assembler and both encoders.
"""

import math
from typing import Any, Optional

import pandas as pd

__all__ = [
    'INVALID_VALUE',
    'is_numeric',
    'value_or_invalid',
    'to_fahrenheit',
    'to_celsius',
    'normalize_temperature_units',
    'convert_temperature',
    'round_half_up',
    'parse_timestamp',
    'format_csv_timestamp',
    'format_influx_timestamp',
]

INVALID_VALUE = "---"

_CELSIUS_NAMES = {"c", "degc", "celsius", "°c", "deg c", "centigrade"}
_FAHRENHEIT_NAMES = {"f", "degf", "fahrenheit", "°f", "deg f"}


def is_numeric(value: Any) -> bool:
    """True for finite numbers and strings that parse to one. Booleans are not numeric."""
    if value is None or isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        try:
            return math.isfinite(float(value))
        except ValueError:
            return False
    return False


def value_or_invalid(value: Any, sentinel: str = INVALID_VALUE):
    """Return the value as a number, or the sentinel when it is not numeric."""
    if not is_numeric(value):
        return sentinel
    if isinstance(value, str):
        return float(value)
    return value


def to_fahrenheit(deg_c: float) -> float:
    return deg_c * 9.0 / 5.0 + 32.0


def to_celsius(deg_f: float) -> float:
    return (deg_f - 32.0) * 5.0 / 9.0


def normalize_temperature_units(units: Optional[str]) -> Optional[str]:
    """Map the many spellings of a temperature unit onto ``degC`` / ``degF``.

    Returns None for anything that is not a recognizable temperature unit.
    """
    if not isinstance(units, str):
        return None
    key = units.strip().lower()
    if key in _CELSIUS_NAMES:
        return "degC"
    if key in _FAHRENHEIT_NAMES:
        return "degF"
    return None


def convert_temperature(value, from_units: Optional[str], to_units: Optional[str]):
    """Linear C/F conversion. Identity when units match or are unrecognized."""
    if not is_numeric(value):
        return value
    source = normalize_temperature_units(from_units)
    target = normalize_temperature_units(to_units)
    if source is None or target is None or source == target:
        return value
    value = float(value)
    if target == "degF":
        return to_fahrenheit(value)
    return to_celsius(value)


def round_half_up(value: float, digits: int = 0):
    """Round like JavaScript ``Math.round`` (halves go towards +inf).

    With ``digits == 0`` an int is returned.
    """
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5) / factor
    if digits == 0:
        return int(rounded)
    return rounded


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """Parse an ISO-8601 string or epoch milliseconds into a UTC Timestamp.

    Returns None when the value cannot be interpreted as an instant.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            ts = pd.Timestamp(value, unit="ms")
        else:
            ts = pd.Timestamp(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if ts is pd.NaT or pd.isna(ts):
        return None
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def _offset_minutes(utc_offset: float) -> int:
    # Offsets inside (-16, 16) are hours, anything else is already minutes.
    if -16 < utc_offset < 16:
        return int(round(utc_offset * 60))
    return int(utc_offset)


def format_csv_timestamp(ts: pd.Timestamp, utc_offset: float = 0,
                         fmt: str = "%m/%d/%Y %H:%M:%S") -> str:
    """Render a timestamp at a fixed UTC offset for CSV output."""
    local = ts.tz_convert("UTC") + pd.Timedelta(minutes=_offset_minutes(utc_offset))
    return local.strftime(fmt)


def format_influx_timestamp(ts: pd.Timestamp) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. ``2018-03-27T14:00:05.250Z``."""
    utc = ts.tz_convert("UTC")
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
