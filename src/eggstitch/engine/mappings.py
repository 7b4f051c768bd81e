"""Topic -> field mapping table used to synthesize dynamic layouts.

Each topic kind maps to an ordered tuple of ``TopicField`` entries. The
declaration order inside one kind is the tie-breaker when the dynamic
layout sorts columns, so new sub-fields are appended, never inserted.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

__all__ = [
    'TopicField',
    'TOPIC_FIELD_MAPPINGS',
    'mapping_for',
]


@dataclass(frozen=True)
class TopicField:
    """One output column contributed by a topic kind.

    Attributes
    ----------
    heading : str
        CSV column label without the unit suffix.
    value_field : str
        Payload key holding the value.
    units_field : str or None
        Payload key holding the unit the device reported, if any.
    influx_field : str
        Canonical field name in Influx-style output.
    influx_units_tag : str or None
        Tag key for the unit; None derives ``<influx_field>_units``, ``""`` emits no tag.
    default_units : str
        Unit used when the payload does not report one.
    is_non_numeric : bool
        Value is copied verbatim instead of being validated as a number.
    is_temperature : bool
        Value is a temperature and is converted to the display unit.
    """
    heading: str
    value_field: str
    units_field: Optional[str]
    influx_field: str
    influx_units_tag: Optional[str] = None
    default_units: str = ''
    is_non_numeric: bool = False
    is_temperature: bool = False


def _pm(size: str, suffix: str, units_tag: str, default_units: str) -> TopicField:
    label = size.replace('p', '.')
    field = f"pm{size}_{suffix}"
    return TopicField(f"pm{label}_{suffix}", field, 'units', field, units_tag, default_units)


_FULL_PARTICULATE = (
    TopicField('pm1.0', 'pm1p0', 'pm1p0_units', 'pm1p0', 'pm1p0_units', 'ug/m^3'),
    TopicField('pm2.5', 'pm2p5', 'pm2p5_units', 'pm2p5', 'pm2p5_units', 'ug/m^3'),
    TopicField('pm10.0', 'pm10p0', 'pm10p0_units', 'pm10p0', 'pm10p0_units', 'ug/m^3'),
) + tuple(
    _pm(size, f"{family}_{channel}", f"pm_{family}_units", units)
    for channel in ('a', 'b')
    for family, sizes, units in (
        ('cf1', ('1p0', '2p5', '10p0'), 'ug/m^3'),
        ('atm', ('1p0', '2p5', '10p0'), 'ug/m^3'),
        ('cpl', ('0p3', '0p5', '1p0', '2p5', '5p0', '10p0'), 'counts/L'),
    )
    for size in sizes
)


TOPIC_FIELD_MAPPINGS: Dict[str, Tuple[TopicField, ...]] = {
    # base environment
    'temperature': (
        TopicField('temperature', 'converted-value', 'converted-units', 'temperature',
                   'temperature_units', 'degC', is_temperature=True),
    ),
    'humidity': (
        TopicField('humidity', 'converted-value', 'converted-units', 'humidity',
                   'humidity_units', '%'),
    ),
    'pressure': (
        TopicField('pressure', 'pressure', 'pressure-units', 'pressure', 'pressure_units', 'Pa'),
    ),
    'battery': (
        TopicField('battery', 'converted-value', 'converted-units', 'battery', 'battery_units', 'V'),
    ),
    'power': (
        TopicField('ac', 'ac', None, 'ac', '', '0/1'),
    ),

    # gases
    'no2': (
        TopicField('no2', 'compensated-value', 'converted-units', 'no2', 'no2_units', 'ppb'),
    ),
    'co': (
        TopicField('co', 'compensated-value', 'converted-units', 'co', 'co_units', 'ppm'),
    ),
    'so2': (
        TopicField('so2', 'compensated-value', 'converted-units', 'so2', 'so2_units', 'ppb'),
    ),
    'o3': (
        TopicField('o3', 'compensated-value', 'converted-units', 'o3', 'o3_units', 'ppb'),
    ),
    'co2': (
        TopicField('co2', 'compensated-value', 'converted-units', 'co2', 'co2_units', 'ppm'),
    ),
    'voc': (
        TopicField('eco2', 'compensated-co2', None, 'eco2', 'eco2_units', 'ppm'),
        TopicField('tvoc', 'compensated-tvoc', None, 'voc', 'voc_units', 'ppb'),
        TopicField('resistance', 'compensated-resistance', None, 'voc_raw', 'voc_raw_units', 'ohm'),
    ),

    # particulate family
    'particulate': (
        TopicField('pm1.0', 'pm1p0', 'pm1p0_units', 'pm1p0', 'pm1p0_units', 'ug/m^3'),
        TopicField('pm2.5', 'pm2p5', 'pm2p5_units', 'pm2p5', 'pm2p5_units', 'ug/m^3'),
        TopicField('pm10.0', 'pm10p0', 'pm10p0_units', 'pm10p0', 'pm10p0_units', 'ug/m^3'),
    ),
    'full_particulate': _FULL_PARTICULATE,

    # water quality
    'water/temperature': (
        TopicField('temperature', 'value', 'units', 'temperature', 'temperature_units', 'degC',
                   is_temperature=True),
    ),
    'water/conductivity': (
        TopicField('conductivity', 'value', 'units', 'conductivity', None, 'mS/cm'),
        TopicField('conductivity_raw', 'raw-value', None, 'conductivity_raw', None, 'V'),
    ),
    'water/ph': (
        TopicField('ph', 'value', None, 'ph', None, 'n/a'),
        TopicField('ph_raw', 'raw-value', None, 'ph_raw', None, 'V'),
    ),
    'water/turbidity': (
        TopicField('turbidity', 'value', 'units', 'turbidity', None, 'NTU'),
        TopicField('turbidity_raw', 'raw-value', None, 'turbidity_raw', None, 'V'),
    ),

    # forecast variables
    'air_temperature': (
        TopicField('airtemp min', 'min', 'units', 'air_temp_min', 'air_temp_units', 'degC',
                   is_temperature=True),
        TopicField('airtemp max', 'max', 'units', 'air_temp_max', 'air_temp_units', 'degC',
                   is_temperature=True),
    ),
    'wind_chill': (
        TopicField('wind chill', 'value', 'units', 'wind_chill', 'wind_chill_units', 'degC',
                   is_temperature=True),
    ),
    'precipitation': (
        TopicField('precipitation', 'value', 'units', 'precipitation', 'precipitation_units', 'in'),
    ),
    'wind_speed': (
        TopicField('wind speed max', 'max', 'speed_units', 'wind_speed_max', 'wind_speed_units', 'mph'),
        TopicField('wind speed avg', 'avg', 'speed_units', 'wind_speed_avg', 'wind_speed_units', 'mph'),
        TopicField('wind direction', 'angle', 'angle_units', 'wind_direction',
                   'wind_direction_units', 'deg'),
        TopicField('compass', 'compass', None, 'wind_direction_compass', '', 'n/a',
                   is_non_numeric=True),
    ),
    'soil_temperature': (
        TopicField('soiltemp 4in', '_4in', 'units', 'soil_temperature_4in',
                   'soil_temperature_units', 'degC', is_temperature=True),
        TopicField('soiltemp 8in', '_8in', 'units', 'soil_temperature_8in',
                   'soil_temperature_units', 'degC', is_temperature=True),
    ),
    'insolation': (
        TopicField('insolation', 'value', 'units', 'insolation', 'insolation_units', 'Ly'),
    ),
    'exposure': (
        TopicField('exposure', 'value', None, 'exposure', '', '#'),
    ),
}


def mapping_for(kind: str) -> Tuple[TopicField, ...]:
    """Mapping entries for a kind; unknown kinds contribute no columns."""
    return TOPIC_FIELD_MAPPINGS.get(kind, ())
