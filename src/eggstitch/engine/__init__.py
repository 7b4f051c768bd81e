"""Telemetry stitching engine.

- topics: topic kinds and capability bit order
- normalizer: numeric validation, sentinels, unit conversion, timestamps
- derived: heat index, AQI and NowCast
- classifier: capability bitmask -> model, refinement pass
- mappings / layout: static and dynamic field layouts
- timebase: sampling period estimate
- assembler: streaming record windows
- encoders: CSV and Influx-style output
"""

from eggstitch.engine.assembler import OutputRecord, RecordAssembler, merge_window_ms
from eggstitch.engine.classifier import (
    UNRESOLVED_MODEL,
    CapabilitySet,
    build_capability_set,
    classify,
    refine_model,
)
from eggstitch.engine.encoders import CsvEncoder, InfluxEncoder
from eggstitch.engine.layout import FieldLayout, resolve_layout
from eggstitch.engine.timebase import estimate_timebase

__all__ = [
    "UNRESOLVED_MODEL",
    "CapabilitySet",
    "build_capability_set",
    "classify",
    "refine_model",
    "FieldLayout",
    "resolve_layout",
    "estimate_timebase",
    "OutputRecord",
    "RecordAssembler",
    "merge_window_ms",
    "CsvEncoder",
    "InfluxEncoder",
]
