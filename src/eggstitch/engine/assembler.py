"""Record Assembler.

Streams one device's messages into output records, one per sampling window.
The assembler owns exactly one in-progress record at a time; when a message
falls outside the current window the record is flushed to a sink and a new
one is anchored on that message's timestamp.

Placement is driven entirely by the ``FieldLayout``; nothing here knows
about individual models.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

import pandas as pd

from eggstitch.engine.derived import aqi_max, heat_index, nowcast_max
from eggstitch.engine.layout import (
    ROLE_AQI,
    ROLE_HEATINDEX,
    ROLE_HUMIDITY,
    ROLE_NOWCAST,
    ROLE_TEMPERATURE,
    ColumnDescriptor,
    FieldLayout,
)
from eggstitch.engine.normalizer import (
    INVALID_VALUE,
    convert_temperature,
    is_numeric,
    normalize_temperature_units,
    parse_timestamp,
    round_half_up,
    value_or_invalid,
)
from eggstitch.engine.topics import EPA_KINDS, IGNORED_KINDS, natural_topic, topic_kind

__all__ = [
    'WINDOW_FIXED',
    'WINDOW_TIMEBASE',
    'OutputRecord',
    'RecordAssembler',
    'merge_window_ms',
    'message_location',
]

logger = logging.getLogger(__name__)

WINDOW_FIXED = 'fixed'
WINDOW_TIMEBASE = 'timebase'

RecordSink = Callable[['OutputRecord'], bool]


def merge_window_ms(policy: str, tolerance_ms: float, timebase_ms: Optional[float]) -> float:
    """Width of the merge window.

    ``fixed`` uses the tolerance. ``timebase`` uses half the estimated
    timebase, falling back to the tolerance when there is no estimate.
    """
    if policy == WINDOW_TIMEBASE and timebase_ms:
        return timebase_ms / 2.0
    return float(tolerance_ms)


def message_location(message: Mapping[str, Any]) -> Tuple[Any, Any, Any]:
    """``(latitude, longitude, altitude)`` from the legacy keys or ``__location``."""
    location = message.get('__location')
    if isinstance(location, Mapping):
        return location.get('lat'), location.get('lon'), location.get('alt')
    return message.get('latitude'), message.get('longitude'), message.get('altitude')


@dataclass
class OutputRecord:
    """One sampling window.

    ``values`` has one slot per layout column; None means unset. The AQI and
    NowCast maps hold every sub-index seen in the window, keyed by
    ``(topic kind, payload key)``.
    """
    values: list
    timestamp: Optional[pd.Timestamp] = None
    anchor_ms: Optional[float] = None
    aqi_epa: Dict[Tuple[str, str], float] = field(default_factory=dict)
    aqi_other: Dict[Tuple[str, str], float] = field(default_factory=dict)
    nowcast: Dict[Tuple[str, str], float] = field(default_factory=dict)

    @classmethod
    def anchored(cls, layout: FieldLayout, timestamp: pd.Timestamp) -> 'OutputRecord':
        values = layout.new_record()
        values[0] = timestamp
        return cls(values=values, timestamp=timestamp, anchor_ms=timestamp.value / 1e6)

    @classmethod
    def empty(cls, layout: FieldLayout) -> 'OutputRecord':
        return cls(values=layout.new_record())

    def __len__(self):
        return len(self.values)


class RecordAssembler:
    """Stateful window assembler for one device.

    Parameters
    ----------
    layout : FieldLayout
        Resolved layout; fixes the record width for the whole run.
    sink : callable
        Receives each flushed ``OutputRecord`` and returns True when the
        record produced output.
    compensated, instantaneous : bool
        Payload field selection flags from the unit of work.
    display_units : str
        Temperature unit written to temperature columns.
    window_ms : float
        Merge window; a message whose distance from the anchor is below it
        joins the current record.
    serial : str, optional
        Device serial, for ``kind/<serial>`` topics.
    source_temperature_units : str
        Unit assumed for temperature payloads that do not report one.
    temperature_decimals : int
        Rounding applied to converted temperatures.
    yield_every : int
        Cooperative yield period in messages (0 disables).
    """

    def __init__(self, layout: FieldLayout, sink: RecordSink, compensated: bool = False,
                 instantaneous: bool = False, display_units: str = 'degC', window_ms: float = 6000.0,
                 serial: Optional[str] = None, source_temperature_units: str = 'degC',
                 temperature_decimals: int = 2, yield_every: int = 100):
        self.layout = layout
        self._sink = sink
        self.compensated = bool(compensated)
        self.instantaneous = bool(instantaneous)
        self.display_units = normalize_temperature_units(display_units) or 'degC'
        self.window_ms = float(window_ms)
        self.serial = serial
        self.source_temperature_units = source_temperature_units
        self.temperature_decimals = temperature_decimals
        self.yield_every = yield_every

        self._current: Optional[OutputRecord] = None
        self._finished = False
        self._warned_topics = set()

        self._gps = layout.gps_indices
        self._temperature_idx = layout.role_index(ROLE_TEMPERATURE)
        self._humidity_idx = layout.role_index(ROLE_HUMIDITY)
        self._aqi_idx = layout.role_index(ROLE_AQI)
        self._nowcast_idx = layout.role_index(ROLE_NOWCAST)
        self._heatindex_idx = layout.role_index(ROLE_HEATINDEX)

        self.messages_seen = 0
        self.messages_placed = 0
        self.rows_written = 0
        self.rows_emitted = 0

    @property
    def current(self) -> Optional[OutputRecord]:
        return self._current

    @property
    def finished(self) -> bool:
        return self._finished

    def feed_all(self, messages: Iterable[Mapping[str, Any]]) -> None:
        for message in messages:
            self.feed(message)

    def feed(self, message: Mapping[str, Any]) -> None:
        """Route one message into the current record or start a new one."""
        if self._finished:
            raise RuntimeError("RecordAssembler.feed() called after finish()")

        self.messages_seen += 1
        if self.yield_every and self.messages_seen % self.yield_every == 0:
            time.sleep(0)

        if not isinstance(message, Mapping):
            logger.debug("Skipping non-object message: %r", message)
            return

        kind = self._kind_of(message)
        if kind is None:
            return

        timestamp = parse_timestamp(message.get('timestamp'))
        if timestamp is None:
            logger.debug("Skipping %s message with unparseable timestamp %r", kind, message.get('timestamp'))
            return

        ts_ms = timestamp.value / 1e6
        if self._current is None:
            self._current = OutputRecord.anchored(self.layout, timestamp)
        elif ts_ms - self._current.anchor_ms >= self.window_ms:
            self._flush()
            self._current = OutputRecord.anchored(self.layout, timestamp)

        self._place(kind, message, self._current)
        self.messages_placed += 1

    def finish(self) -> None:
        """Flush the in-progress record. Runs once; later calls are no-ops."""
        if self._finished:
            return
        if self._current is None:
            self._current = OutputRecord.empty(self.layout)
        self._flush()
        self._finished = True

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _kind_of(self, message: Mapping[str, Any]) -> Optional[str]:
        topic = message.get('topic') or ''
        kind = topic_kind(topic, self.serial)
        if kind is not None:
            return kind
        natural = natural_topic(topic, self.serial)
        if natural not in IGNORED_KINDS and natural not in self._warned_topics:
            self._warned_topics.add(natural)
            logger.warning("Ignoring unknown topic '%s' for %s", natural, self.serial or 'device')
        return None

    def _flush(self) -> None:
        record = self._current
        self._current = None
        self.rows_written += 1
        if self._sink(record):
            self.rows_emitted += 1

    def _place(self, kind: str, message: Mapping[str, Any], record: OutputRecord) -> None:
        values = record.values
        for slot, column in self.layout.columns_for_topic(kind):
            raw = column.source.select(message, self.compensated, self.instantaneous)
            if column.is_non_numeric:
                if raw is not None and raw != '':
                    values[slot] = raw
                continue
            value = value_or_invalid(raw)
            if value == INVALID_VALUE:
                continue
            if column.is_temperature:
                value = self._to_display_units(value, self._message_units(message, column))
            values[slot] = value

        self._place_location(message, values)
        if self.layout.has_derived:
            self._collect_sub_indices(kind, message, record)
            self._update_derived(record)

    def _message_units(self, message: Mapping[str, Any], column: ColumnDescriptor) -> str:
        if column.units_field and message.get(column.units_field):
            return message[column.units_field]
        return message.get('converted-units') or message.get('units') or self.source_temperature_units

    def _to_display_units(self, value, from_units: str):
        source = normalize_temperature_units(from_units)
        if source is None or source == self.display_units:
            return value
        return round_half_up(convert_temperature(value, source, self.display_units), self.temperature_decimals)

    def _place_location(self, message: Mapping[str, Any], values: list) -> None:
        for slot, coordinate in zip(self._gps, message_location(message)):
            if is_numeric(coordinate):
                values[slot] = value_or_invalid(coordinate)

    def _collect_sub_indices(self, kind: str, message: Mapping[str, Any], record: OutputRecord) -> None:
        for key, value in message.items():
            if not isinstance(key, str) or not is_numeric(value):
                continue
            if key == 'aqi' or key.endswith('_aqi'):
                target = record.aqi_epa if kind in EPA_KINDS else record.aqi_other
                target[(kind, key)] = float(value)
            elif key == 'nowcast' or key.endswith('_nowcast'):
                record.nowcast[(kind, key)] = float(value)

    def _update_derived(self, record: OutputRecord) -> None:
        values = record.values
        if self._heatindex_idx is not None and self._temperature_idx is not None \
                and self._humidity_idx is not None:
            temperature = values[self._temperature_idx]
            humidity = values[self._humidity_idx]
            if is_numeric(temperature) and is_numeric(humidity):
                result = heat_index(temperature, humidity, self.display_units, self.display_units)
                values[self._heatindex_idx] = None if result is None else result.value

        if self._aqi_idx is not None:
            aqi = aqi_max(record.aqi_epa.values(), record.aqi_other.values())
            if aqi is not None:
                values[self._aqi_idx] = aqi

        if self._nowcast_idx is not None:
            nowcast = nowcast_max(record.nowcast.values())
            if nowcast is not None:
                values[self._nowcast_idx] = nowcast
