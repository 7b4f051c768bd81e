"""Per-device processing context.

Everything the stitcher learns about one device lives here instead of in
module or closure state, so devices processed by different workers never
share mutable data.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from eggstitch.engine.classifier import UNRESOLVED_MODEL, CapabilitySet
from eggstitch.engine.layout import FieldLayout
from eggstitch.engine.topics import serial_from_dirname

__all__ = ['DeviceContext']


@dataclass
class DeviceContext:
    """State of one device between the first pass and the final flush.

    Attributes
    ----------
    device_dir : str
        Device directory name under the request's save path.
    serial : str
        Serial number (last ``_`` part of ``device_dir``).
    display_name : str
        Output file stem; the device alias when aliasing applies.
    display_units : str
        Temperature unit written to temperature columns.
    files : list of Path
        Message files in processing order.
    topics : set of str
        Distinct raw topics seen in the first pass.
    reference_timestamps : dict
        Epoch-millisecond timestamps per reference topic kind, in message order.
    source_temperature_units : str, optional
        First temperature unit reported by the device.
    """
    device_dir: str
    output_path: Path
    display_name: str = ''
    display_units: str = 'degC'
    files: List[Path] = field(default_factory=list)
    topics: Set[str] = field(default_factory=set)
    reference_timestamps: Dict[str, List[float]] = field(default_factory=dict)
    source_temperature_units: Optional[str] = None
    total_messages: int = 0

    capabilities: Optional[CapabilitySet] = None
    model: str = UNRESOLVED_MODEL
    timebase_ms: Optional[float] = None
    layout: Optional[FieldLayout] = None

    messages_processed: int = 0
    rows_emitted: int = 0

    @property
    def serial(self) -> str:
        return serial_from_dirname(self.device_dir)

    def add_reference_timestamp(self, kind: str, ts_ms: float) -> None:
        self.reference_timestamps.setdefault(kind, []).append(ts_ms)
