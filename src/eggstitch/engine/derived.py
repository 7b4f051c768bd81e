"""Derived record columns: heat index, AQI and NowCast.

Heat index follows the NWS lookup table (2°F by 5 %RH steps) with the
linear approximation below 80°F / 40 %RH.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from eggstitch.engine.normalizer import (
    convert_temperature,
    normalize_temperature_units,
    round_half_up,
)

__all__ = [
    'HeatIndex',
    'HEAT_INDEX_CATEGORIES',
    'heat_index_degf',
    'heat_index',
    'aqi_max',
    'nowcast_max',
]

HEAT_INDEX_CATEGORIES = ('safe', 'caution', 'extreme caution', 'danger', 'extreme danger')

# Rows: humidity 40..100 %RH in 5 % steps. Columns: temperature 80..110 °F in 2 °F steps.
_HEAT_INDEX_TABLE = (
    (80, 81, 83, 85, 88, 91, 94, 97, 101, 105, 109, 114, 119, 124, 130, 136),
    (80, 82, 84, 87, 89, 93, 96, 100, 104, 109, 114, 119, 124, 130, 137),
    (81, 83, 85, 88, 91, 95, 99, 103, 108, 113, 118, 124, 131, 137),
    (81, 84, 86, 89, 93, 97, 101, 106, 112, 117, 124, 130, 137),
    (82, 84, 88, 91, 95, 100, 105, 110, 116, 123, 129, 137),
    (82, 85, 89, 93, 98, 103, 108, 114, 121, 128, 136),
    (83, 86, 90, 95, 100, 105, 112, 119, 126, 134),
    (84, 88, 92, 97, 103, 109, 116, 124, 132),
    (84, 89, 94, 100, 106, 113, 121, 129),
    (85, 90, 96, 102, 110, 117, 126, 135),
    (86, 91, 98, 105, 113, 122, 131),
    (86, 93, 100, 108, 117, 127),
    (87, 95, 103, 112, 121, 132),
)

_CATEGORY_TABLE = (
    (1, 1, 1, 1, 1, 2, 2, 2, 2, 3, 3, 3, 3, 3, 4, 4),
    (1, 1, 1, 1, 1, 2, 2, 2, 3, 3, 3, 3, 3, 4, 4),
    (1, 1, 1, 1, 2, 2, 2, 2, 3, 3, 3, 3, 4, 4),
    (1, 1, 1, 1, 2, 2, 2, 3, 3, 3, 3, 4, 4),
    (1, 1, 1, 2, 2, 2, 3, 3, 3, 3, 4, 4),
    (1, 1, 1, 2, 2, 2, 3, 3, 3, 4, 4),
    (1, 1, 1, 2, 2, 3, 3, 3, 4, 4),
    (1, 1, 2, 2, 2, 3, 3, 3, 4),
    (1, 1, 2, 2, 3, 3, 3, 4),
    (1, 1, 2, 2, 3, 3, 4, 4),
    (1, 2, 2, 3, 3, 3, 4),
    (1, 2, 2, 3, 3, 4),
    (1, 2, 2, 3, 3, 4),
)


@dataclass(frozen=True)
class HeatIndex:
    """Heat index value with its NWS risk category."""
    value: float
    index: int = 0
    category: str = 'safe'
    greater_than: bool = False


def heat_index_degf(temperature: float, humidity: float,
                    temperature_units: str = "degC") -> Optional[HeatIndex]:
    """Heat index in °F from a temperature and a relative humidity.

    Returns None when humidity lies beyond the table (above 100 %RH).
    """
    temp_f = float(convert_temperature(temperature, temperature_units, "degF"))
    humidity = float(humidity)

    tmp = round_half_up(temp_f / 2) * 2
    hum = round_half_up(humidity / 5) * 5

    linear = HeatIndex(value=round_half_up(1.1 * temp_f - 10.3 + 0.047 * humidity))
    if tmp < 80 or hum < 40:
        return linear

    hum_idx = round_half_up((hum - 40) / 5)
    tmp_idx = round_half_up((tmp - 80) / 2)
    if hum_idx >= len(_HEAT_INDEX_TABLE):
        return None

    row = _HEAT_INDEX_TABLE[hum_idx]
    if tmp_idx >= len(row):
        # hotter than the table covers at this humidity
        return HeatIndex(value=row[-1], index=4, category=HEAT_INDEX_CATEGORIES[4],
                         greater_than=True)

    index = _CATEGORY_TABLE[hum_idx][tmp_idx]
    return HeatIndex(value=row[tmp_idx], index=index, category=HEAT_INDEX_CATEGORIES[index])


def heat_index(temperature: float, humidity: float, temperature_units: str = "degC",
               display_units: str = "degC") -> Optional[HeatIndex]:
    """Heat index expressed in the display unit (Celsius values rounded to whole degrees)."""
    result = heat_index_degf(temperature, humidity, temperature_units)
    if result is None:
        return None
    if normalize_temperature_units(display_units) == "degC":
        value = round_half_up(convert_temperature(result.value, "degF", "degC"))
        return HeatIndex(value=value, index=result.index, category=result.category,
                         greater_than=result.greater_than)
    return result


def aqi_max(epa_values: Iterable[float], other_values: Iterable[float] = ()) -> Optional[float]:
    """Maximum EPA sub-index, falling back to the non-EPA sub-indices."""
    epa = list(epa_values)
    if epa:
        return max(epa)
    other = list(other_values)
    if other:
        return max(other)
    return None


def nowcast_max(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    return max(values) if values else None
