"""Output encoders.

Both encoders take their column set, headings and field names from the
``FieldLayout`` used during assembly, so the two formats cannot disagree
about what a slot means.
"""

import json
from typing import Dict, List, Optional

from eggstitch.engine.assembler import OutputRecord
from eggstitch.engine.layout import ROLE_TIMESTAMP, FieldLayout
from eggstitch.engine.normalizer import (
    INVALID_VALUE,
    format_csv_timestamp,
    format_influx_timestamp,
    is_numeric,
)

__all__ = [
    'CRLF',
    'CsvEncoder',
    'InfluxEncoder',
]

CRLF = "\r\n"


def _format_value(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class CsvEncoder:
    """Flat CSV rows with a CRLF terminator.

    A row is emitted only when more than one column (the timestamp counts)
    holds a non-sentinel value.
    """

    def __init__(self, layout: FieldLayout, utc_offset: float = 0,
                 sentinel: str = INVALID_VALUE, timestamp_format: str = "%m/%d/%Y %H:%M:%S"):
        self.layout = layout
        self.utc_offset = utc_offset
        self.sentinel = sentinel
        self.timestamp_format = timestamp_format

    def header(self) -> str:
        return ",".join(self.layout.headings) + CRLF

    def cells(self, record: OutputRecord) -> List[str]:
        """Output cells for a record, excluded columns dropped and unset slots filled."""
        cells = []
        for index in self.layout.output_indices:
            column = self.layout.columns[index]
            value = record.values[index]
            if column.role == ROLE_TIMESTAMP:
                if record.timestamp is None:
                    cells.append(self.sentinel)
                else:
                    cells.append(format_csv_timestamp(record.timestamp, self.utc_offset,
                                                      self.timestamp_format))
            elif value is None:
                cells.append(self.sentinel)
            else:
                cells.append(_format_value(value))
        return cells

    def encode(self, record: OutputRecord) -> str:
        cells = self.cells(record)
        populated = sum(1 for cell in cells if cell != self.sentinel)
        if populated > 1:
            return ",".join(cells) + CRLF
        return ""


class InfluxEncoder:
    """Influx-style point JSON, one object per record inside a single array.

    Parameters
    ----------
    layout : FieldLayout
        Layout used during assembly.
    serial : str
        Written as the ``serial_number`` tag.
    measurement : str
        Measurement name for every point.
    """

    def __init__(self, layout: FieldLayout, serial: str = "", measurement: str = "egg_data"):
        self.layout = layout
        self.serial = serial
        self.measurement = measurement

    @staticmethod
    def open_array() -> str:
        return "["

    @staticmethod
    def close_array() -> str:
        return "]"

    def point(self, record: OutputRecord) -> Optional[Dict]:
        """The point object for a record, or None when it has no populated field."""
        if record.timestamp is None:
            return None
        fields: Dict[str, object] = {}
        tags: Dict[str, str] = {}
        for index in self.layout.output_indices:
            column = self.layout.columns[index]
            value = record.values[index]
            if column.role == ROLE_TIMESTAMP or value is None:
                continue
            if not column.is_non_numeric:
                if not is_numeric(value):
                    continue
                value = float(value)
            for name in column.influx_fields:
                # alias union: the first column to provide a field wins
                if name not in fields:
                    fields[name] = value
                tag = column.units_tag(name)
                if tag and column.unit:
                    tags[tag] = column.unit
        if not fields:
            return None
        if self.serial:
            tags['serial_number'] = self.serial
        return {
            'measurement': self.measurement,
            'tags': tags,
            'fields': fields,
            'timestamp': format_influx_timestamp(record.timestamp),
        }

    def encode(self, record: OutputRecord, rows_written: int = 0) -> str:
        """Serialize one record; every point after the first is comma-prefixed."""
        point = self.point(record)
        if point is None:
            return ""
        text = json.dumps(point)
        if rows_written > 0:
            return "," + text
        return text
