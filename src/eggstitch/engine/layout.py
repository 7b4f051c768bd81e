"""Field Layout Resolver.

A ``FieldLayout`` is the single source of truth for where a value lands in
an output record and how each encoder names it. Static layouts come from
``MODEL_COLUMNS``, one ordered tuple of column descriptors per known model;
an unresolved model gets a layout synthesized from the topic mapping table.

Static layout shape::

    timestamp, <model columns>, [pressure[Pa]], [battery[V]], [ac[0/1]],
    latitude[deg], longitude[deg], altitude[m], [aqi, nowcast, heatindex[<unit>]]

Dynamic layout shape::

    timestamp, <sorted mapping columns>, latitude[deg], longitude[deg], altitude[m]
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from eggstitch.engine.classifier import CapabilitySet
from eggstitch.engine.mappings import TopicField, mapping_for
from eggstitch.engine.normalizer import normalize_temperature_units
from eggstitch.engine.topics import PARTICULATE_KINDS, topic_kind

__all__ = [
    'ROLE_TIMESTAMP',
    'ROLE_MEASUREMENT',
    'ROLE_TEMPERATURE',
    'ROLE_HUMIDITY',
    'ROLE_LATITUDE',
    'ROLE_LONGITUDE',
    'ROLE_ALTITUDE',
    'ROLE_AQI',
    'ROLE_NOWCAST',
    'ROLE_HEATINDEX',
    'FieldSource',
    'ColumnDescriptor',
    'FieldLayout',
    'MODEL_COLUMNS',
    'MODEL_EXCLUSIONS',
    'DERIVED_MODELS',
    'resolve_layout',
    'build_static_layout',
    'build_dynamic_layout',
]

logger = logging.getLogger(__name__)

ROLE_TIMESTAMP = 'timestamp'
ROLE_MEASUREMENT = 'measurement'
ROLE_TEMPERATURE = 'temperature'
ROLE_HUMIDITY = 'humidity'
ROLE_LATITUDE = 'latitude'
ROLE_LONGITUDE = 'longitude'
ROLE_ALTITUDE = 'altitude'
ROLE_AQI = 'aqi'
ROLE_NOWCAST = 'nowcast'
ROLE_HEATINDEX = 'heatindex'

FlagPair = Tuple[bool, bool]
_FLAG_PAIRS: Tuple[FlagPair, ...] = ((False, False), (True, False), (False, True), (True, True))


# ---------------------------------------------------------------------------
# Payload field selection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldSource:
    """Payload keys to read, keyed by the ``(compensated, instantaneous)`` pair.

    Each entry is a tuple of candidate keys; the first truthy value wins and
    the last candidate's value is returned otherwise.
    """
    by_flags: Tuple[Tuple[FlagPair, Tuple[str, ...]], ...]

    def fields_for(self, compensated: bool, instantaneous: bool) -> Tuple[str, ...]:
        return dict(self.by_flags)[(bool(compensated), bool(instantaneous))]

    def select(self, message: Mapping[str, Any], compensated: bool, instantaneous: bool):
        value = None
        for key in self.fields_for(compensated, instantaneous):
            value = message.get(key)
            if value:
                break
        return value


def _source(table: Mapping[FlagPair, Tuple[str, ...]]) -> FieldSource:
    return FieldSource(tuple((pair, tuple(table[pair])) for pair in _FLAG_PAIRS))


def _fixed(*keys: str) -> FieldSource:
    return _source({pair: keys for pair in _FLAG_PAIRS})


def _by_compensation(uncompensated: str, compensated: str) -> FieldSource:
    return _source({pair: ((compensated,) if pair[0] else (uncompensated,)) for pair in _FLAG_PAIRS})


def _raw_channel(suffix: str = '') -> FieldSource:
    raw = 'raw-value' + suffix
    instant = 'raw-instant-value' + suffix
    return _source({pair: ((instant, raw) if pair[1] else (raw,)) for pair in _FLAG_PAIRS})


def _environment() -> FieldSource:
    return _source({
        (False, False): ('raw-value',),
        (True, False): ('converted-value',),
        (False, True): ('raw-instant-value', 'raw-value'),
        (True, True): ('converted-value',),
    })


def _voc(name: str) -> FieldSource:
    return _source({
        (False, False): (f'converted-{name}',),
        (True, False): (f'compensated-{name}',),
        (False, True): (f'raw-instant-{name}',),
        (True, True): (f'compensated-instant-{name}',),
    })


# ---------------------------------------------------------------------------
# Column descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnDescriptor:
    """One output column.

    ``key`` is unique within a layout. ``source_topic`` is the topic kind
    that fills the column (None for timestamp, GPS and derived columns).
    """
    key: str
    name: str
    unit: Optional[str] = None
    source_topic: Optional[str] = None
    source: Optional[FieldSource] = None
    units_field: Optional[str] = None
    is_non_numeric: bool = False
    is_temperature: bool = False
    influx_fields: Tuple[str, ...] = ()
    influx_units_tag: Optional[str] = None
    role: str = ROLE_MEASUREMENT

    @property
    def heading(self) -> str:
        if not self.unit:
            return self.name
        return f"{self.name}[{self.unit}]"

    def units_tag(self, influx_field: str) -> Optional[str]:
        """Tag key carrying this column's unit for one of its influx field names."""
        if self.influx_units_tag == '':
            return None
        if self.influx_units_tag:
            return self.influx_units_tag
        return f"{influx_field}_units"


def _column(key: str, name: str, unit: Optional[str], topic: Optional[str],
            source: Optional[FieldSource], influx: Optional[str] = None,
            role: str = ROLE_MEASUREMENT, is_temperature: bool = False) -> ColumnDescriptor:
    influx_name = key if influx is None else influx
    return ColumnDescriptor(
        key=key,
        name=name,
        unit=unit,
        source_topic=topic,
        source=source,
        is_temperature=is_temperature,
        influx_fields=tuple(part for part in influx_name.split('|') if part),
        role=role,
    )


_TIMESTAMP = ColumnDescriptor(key='timestamp', name='timestamp', role=ROLE_TIMESTAMP)

# unit filled with the display unit when the layout is resolved
_TEMPERATURE = _column('temperature', 'temperature', None, 'temperature', _environment(),
                       role=ROLE_TEMPERATURE, is_temperature=True)
_HUMIDITY = _column('humidity', 'humidity', '%', 'humidity', _environment(), role=ROLE_HUMIDITY)
_WATER_TEMPERATURE = _column('temperature', 'temperature', None, 'water/temperature', _fixed('value'),
                             role=ROLE_TEMPERATURE, is_temperature=True)


def _gas(kind: str, unit: str) -> Tuple[ColumnDescriptor, ColumnDescriptor]:
    """Single-channel electrochemical gas sensor: value plus raw voltage."""
    return (
        _column(kind, kind, unit, kind, _fixed('compensated-value')),
        _column(f'{kind}_raw', kind, 'V', kind, _raw_channel()),
    )


def _dual_value(kind: str, unit: str) -> ColumnDescriptor:
    return _column(kind, kind, unit, kind, _by_compensation('converted-value', 'compensated-value'))


def _dual_gas(kind: str, unit: str, first_key: str) -> Tuple[ColumnDescriptor, ...]:
    """Gas sensor with working and auxiliary electrode channels."""
    return (
        _dual_value(kind, unit),
        _column(first_key, f'{kind}_we', 'V', kind, _raw_channel()),
        _column(f'{kind}_raw2', f'{kind}_aux', 'V', kind, _raw_channel('2')),
    )


_NO2, _NO2_RAW = _gas('no2', 'ppb')
_CO, _CO_RAW = _gas('co', 'ppm')
_SO2, _SO2_RAW = _gas('so2', 'ppb')
_O3, _O3_RAW = _gas('o3', 'ppb')

_NO2_DUAL = _dual_gas('no2', 'ppb', 'no2_raw1')
_SO2_DUAL = _dual_gas('so2', 'ppb', 'so2_raw')

_CO2 = _column('co2', 'co2', 'ppm', 'co2', _by_compensation('raw-instant-value', 'compensated-value'))

_PM = (
    _column('pm1p0', 'pm1.0', 'ug/m^3', 'particulate', _fixed('pm1p0')),
    _column('pm2p5', 'pm2.5', 'ug/m^3', 'particulate', _fixed('pm2p5')),
    _column('pm10p0', 'pm10.0', 'ug/m^3', 'particulate', _fixed('pm10p0')),
)

_VOC = (
    _column('eco2', 'eco2', 'ppm', 'voc', _voc('co2'), influx='eco2|co2'),
    _column('voc', 'tvoc', 'ppb', 'voc', _voc('tvoc')),
    _column('voc_raw', 'resistance', 'ohm', 'voc', _voc('resistance')),
)

_ENV = (_TEMPERATURE, _HUMIDITY)

MODEL_COLUMNS: Dict[str, Tuple[ColumnDescriptor, ...]] = {
    'model A': _ENV + (_NO2, _CO, _NO2_RAW, _CO_RAW),
    'model AF': _ENV + (_NO2, _NO2_RAW),
    'model B': _ENV + (_SO2, _O3, _SO2_RAW, _O3_RAW),
    'model C': _ENV + (
        _column('particulate', 'pm', 'ug/m^3', 'particulate', _fixed('compensated-value')),
        _column('particulate_raw', 'pm', 'V', 'particulate', _raw_channel()),
    ),
    'model D': _ENV + (_CO2,),
    'model E': _ENV + _VOC,
    'model G': _ENV + (_CO2,) + _PM,
    'model H': _ENV,
    'model J': _ENV + (_NO2_DUAL[0], _dual_value('o3', 'ppb')) + _NO2_DUAL[1:] + (_O3_RAW,),
    'model K': _ENV + (_NO2, _NO2_RAW) + _PM,
    'model L': _ENV + (_CO, _CO_RAW) + _PM,
    'model M': _ENV + (_CO2,) + _PM + (_NO2, _NO2_RAW),
    'model N': _ENV + _PM,
    'model P': _ENV + (_CO2,) + _PM + _VOC,
    'model Q': _ENV + _PM + (_CO, _CO_RAW, _NO2, _NO2_RAW),
    'model R': _ENV + _PM + (_O3, _O3_RAW, _NO2, _NO2_RAW),
    'model S': _ENV + _PM + (_SO2, _SO2_RAW, _NO2, _NO2_RAW),
    'model T': _ENV + _PM + (_O3, _O3_RAW, _CO, _CO_RAW),
    'model U': _ENV + (_SO2, _SO2_RAW) + _PM,
    'model V': _ENV + (_CO2,) + _VOC,
    'model W': (
        _WATER_TEMPERATURE,
        _column('conductivity', 'conductivity', 'mS/cm', 'water/conductivity', _fixed('value')),
        _column('conductivity_raw', 'conductivity_raw', 'V', 'water/conductivity', _fixed('raw-value')),
        _column('turbidity', 'turbidity', 'NTU', 'water/turbidity', _fixed('value')),
        _column('turbidity_raw', 'turbidity_raw', 'V', 'water/turbidity', _fixed('raw-value')),
        _column('ph', 'ph', 'n/a', 'water/ph', _fixed('value')),
        _column('ph_raw', 'ph_raw', 'V', 'water/ph', _fixed('raw-value')),
    ),
    'model Y': _ENV + _SO2_DUAL + _PM,
}

# Columns assembled but never emitted.
MODEL_EXCLUSIONS: Dict[str, FrozenSet[str]] = {
    'model AF': frozenset({'humidity'}),
}

# Models that carry the aqi, nowcast, heatindex trio: every particulate-bearing static model.
DERIVED_MODELS = frozenset(
    model for model, columns in MODEL_COLUMNS.items()
    if any(column.source_topic in PARTICULATE_KINDS for column in columns)
)

_PRESSURE = _column('pressure', 'pressure', 'Pa', 'pressure', _fixed('pressure'))
_BATTERY = _column('battery', 'battery', 'V', 'battery', _fixed('converted-value'))
_AC_POWER = _column('ac', 'ac', '0/1', 'power', _fixed('ac'))

_GPS = (
    _column('latitude', 'latitude', 'deg', None, None, role=ROLE_LATITUDE),
    _column('longitude', 'longitude', 'deg', None, None, role=ROLE_LONGITUDE),
    _column('altitude', 'altitude', 'm', None, None, role=ROLE_ALTITUDE),
)


def _derived_columns(display_units: str) -> Tuple[ColumnDescriptor, ...]:
    return (
        _column('aqi', 'aqi', None, None, None, role=ROLE_AQI),
        _column('nowcast', 'nowcast', None, None, None, role=ROLE_NOWCAST),
        _column('heatindex', 'heatindex', display_units, None, None, role=ROLE_HEATINDEX),
    )


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldLayout:
    """Ordered columns for one device run.

    Parameters
    ----------
    model : str
        Model code the layout was resolved for (``unknown`` for dynamic layouts).
    columns : tuple of ColumnDescriptor
        All assembly slots, timestamp first.
    excluded : frozenset of str
        Column keys assembled but dropped by both encoders.
    dynamic : bool
        True when synthesized from the mapping table.
    """
    model: str
    columns: Tuple[ColumnDescriptor, ...]
    excluded: FrozenSet[str] = frozenset()
    dynamic: bool = False
    _index: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)
    _by_topic: Dict[str, Tuple[Tuple[int, ColumnDescriptor], ...]] = field(
        default_factory=dict, init=False, repr=False, compare=False)
    _by_role: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        by_topic: Dict[str, List[Tuple[int, ColumnDescriptor]]] = {}
        for position, column in enumerate(self.columns):
            if column.key in self._index:
                raise ValueError(f"Duplicate column key '{column.key}' in layout for {self.model}")
            self._index[column.key] = position
            if column.source_topic:
                by_topic.setdefault(column.source_topic, []).append((position, column))
            if column.role != ROLE_MEASUREMENT:
                self._by_role.setdefault(column.role, position)
        self._by_topic.update({topic: tuple(entries) for topic, entries in by_topic.items()})

    @property
    def width(self) -> int:
        return len(self.columns)

    @property
    def output_columns(self) -> Tuple[ColumnDescriptor, ...]:
        return tuple(column for column in self.columns if column.key not in self.excluded)

    @property
    def output_indices(self) -> Tuple[int, ...]:
        return tuple(i for i, column in enumerate(self.columns) if column.key not in self.excluded)

    @property
    def output_width(self) -> int:
        return len(self.output_columns)

    @property
    def headings(self) -> List[str]:
        return [column.heading for column in self.output_columns]

    @property
    def topics(self) -> FrozenSet[str]:
        return frozenset(self._by_topic)

    def index_of(self, key: str) -> int:
        """Slot index of a column key. Raises KeyError when the layout has no such column."""
        return self._index[key]

    def has_column(self, key: str) -> bool:
        return key in self._index

    def role_index(self, role: str) -> Optional[int]:
        return self._by_role.get(role)

    def columns_for_topic(self, kind: str) -> Tuple[Tuple[int, ColumnDescriptor], ...]:
        """``(slot, descriptor)`` pairs a message of this topic kind fills."""
        return self._by_topic.get(kind, ())

    @property
    def gps_indices(self) -> Tuple[int, int, int]:
        return (self._by_role[ROLE_LATITUDE], self._by_role[ROLE_LONGITUDE], self._by_role[ROLE_ALTITUDE])

    @property
    def has_derived(self) -> bool:
        return ROLE_AQI in self._by_role

    def new_record(self) -> list:
        return [None] * self.width


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _display_units(display_units: Optional[str]) -> str:
    return normalize_temperature_units(display_units) or 'degC'


def build_static_layout(model: str, capabilities: CapabilitySet,
                        display_units: str = 'degC') -> FieldLayout:
    """Static layout for a known model; cross-cutting columns follow the capability flags."""
    units = _display_units(display_units)
    columns = [_TIMESTAMP]
    for column in MODEL_COLUMNS[model]:
        if column.is_temperature:
            column = replace(column, unit=units)
        columns.append(column)
    if capabilities.has_pressure:
        columns.append(_PRESSURE)
    if capabilities.has_battery:
        columns.append(_BATTERY)
    if capabilities.has_ac_power:
        columns.append(_AC_POWER)
    columns.extend(_GPS)
    if model in DERIVED_MODELS:
        columns.extend(_derived_columns(units))
    return FieldLayout(model=model, columns=tuple(columns),
                       excluded=MODEL_EXCLUSIONS.get(model, frozenset()))


def _sort_group(kind: str) -> int:
    if kind in ('temperature', 'water/temperature'):
        return 0
    if kind == 'humidity':
        return 1
    if kind == 'exposure':
        return 4
    if kind in PARTICULATE_KINDS or kind == 'pressure':
        return 3
    return 2


def _reported_units(mapping: TopicField, kind: str, messages: Sequence[Mapping[str, Any]],
                    serial: Optional[str]) -> Optional[str]:
    if not mapping.units_field:
        return None
    for message in messages:
        if not isinstance(message, Mapping):
            continue
        if topic_kind(message.get('topic', ''), serial) != kind:
            continue
        units = message.get(mapping.units_field)
        if isinstance(units, str) and units:
            return units
    return None


def build_dynamic_layout(kinds: Iterable[str], display_units: str = 'degC',
                         first_messages: Sequence[Mapping[str, Any]] = (),
                         serial: Optional[str] = None, model: str = 'unknown') -> FieldLayout:
    """Synthesize a layout from the mapping table for the observed kinds.

    Descriptors of every observed kind are flattened in kind order, then
    stable-sorted by (group, topic name, declaration index): temperature,
    humidity, other sensors, particulate family and pressure, exposure.
    Units come from the first message in ``first_messages`` carrying the
    descriptor's units field, else the descriptor default. Temperature
    descriptors always use the display unit.
    """
    units = _display_units(display_units)
    flat = []
    for kind in sorted(set(kinds)):
        for declared, mapping in enumerate(mapping_for(kind)):
            flat.append((kind, declared, mapping))
    flat.sort(key=lambda entry: (_sort_group(entry[0]), entry[0], entry[1]))

    columns = [_TIMESTAMP]
    seen = set()
    for kind, _declared, mapping in flat:
        key = mapping.influx_field
        influx_field = mapping.influx_field
        units_tag = mapping.influx_units_tag
        if key in seen:
            # a later kind reusing a field name gets its own CSV key and influx field
            key = f"{kind}:{mapping.influx_field}"
            influx_field = f"{kind.replace('/', '_')}_{mapping.influx_field}"
            if units_tag != '':
                units_tag = f"{influx_field}_units"
        seen.add(key)
        if mapping.is_temperature:
            unit = units
        else:
            unit = _reported_units(mapping, kind, first_messages, serial) or mapping.default_units
        role = ROLE_MEASUREMENT
        if kind in ('temperature', 'water/temperature'):
            role = ROLE_TEMPERATURE
        elif kind == 'humidity':
            role = ROLE_HUMIDITY
        columns.append(ColumnDescriptor(
            key=key,
            name=mapping.heading,
            unit=unit,
            source_topic=kind,
            source=_fixed(mapping.value_field),
            units_field=mapping.units_field,
            is_non_numeric=mapping.is_non_numeric,
            is_temperature=mapping.is_temperature,
            influx_fields=(influx_field,),
            influx_units_tag=units_tag,
            role=role,
        ))
    columns.extend(_GPS)
    logger.debug("Synthesized dynamic layout with %d columns for kinds %s", len(columns), sorted(set(kinds)))
    return FieldLayout(model=model, columns=tuple(columns), dynamic=True)


def resolve_layout(model: str, capabilities: CapabilitySet, display_units: str = 'degC',
                   first_messages: Sequence[Mapping[str, Any]] = (),
                   serial: Optional[str] = None) -> FieldLayout:
    """Static layout for a known model, dynamic layout otherwise."""
    if model in MODEL_COLUMNS:
        return build_static_layout(model, capabilities, display_units)
    return build_dynamic_layout(capabilities.kinds, display_units, first_messages, serial, model=model)
