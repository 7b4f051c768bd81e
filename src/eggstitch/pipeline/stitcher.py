"""Per-device stitching.

Runs the two-pass pipeline for the head device of a unit of work:

1. First pass: read every message file once to collect topics, reference
   timestamps and the first reported temperature unit.
2. Classify the device and estimate its timebase.
3. Second pass: refine the model on the first file, resolve the layout,
   write the header, then stream every file through the record assembler.

Only the current file and the current record are held in memory during the
second pass.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional, TYPE_CHECKING

from eggstitch.contracts import assert_layout_consistent, assert_record_width
from eggstitch.engine.assembler import OutputRecord, RecordAssembler, merge_window_ms
from eggstitch.engine.classifier import build_capability_set, classify, refine_model
from eggstitch.engine.encoders import CsvEncoder, InfluxEncoder
from eggstitch.engine.layout import FieldLayout, resolve_layout
from eggstitch.engine.normalizer import normalize_temperature_units, parse_timestamp
from eggstitch.engine.timebase import estimate_timebase, select_reference_topic
from eggstitch.engine.topics import topic_kind
from eggstitch.metadata.store import MetadataStore, resolve_device_profile
from eggstitch.pipeline.context import DeviceContext
from eggstitch.setup_directories import get_output_path, list_message_files

if TYPE_CHECKING:
    from eggstitch.pipeline.tracker import StitchTracker
    from eggstitch.schemas import InternalConfig, UnitOfWork

__all__ = [
    'STATUS_COMPLETED',
    'STATUS_NO_DATA',
    'StitchError',
    'InputDataError',
    'StitchResult',
    'DeviceStitcher',
    'load_message_file',
]

logger = logging.getLogger(__name__)

STATUS_COMPLETED = 'completed'
STATUS_NO_DATA = 'no_data'

UNKNOWN_SERIAL_MESSAGE = "No data found for {serial}. Please check that the Serial Number is accurate"
EMPTY_PERIOD_MESSAGE = "No data found for {serial}. Please check the time period you requested is accurate"


class StitchError(RuntimeError):
    """A device could not be stitched."""


class InputDataError(StitchError):
    """Missing, unreadable or empty device input.

    ``diagnostic`` is the sentence written to the CSV output in place of data.
    """

    def __init__(self, message: str, diagnostic: str):
        super().__init__(message)
        self.diagnostic = diagnostic


@dataclass
class StitchResult:
    serial: str
    model: str
    timebase_ms: Optional[float]
    rows: int
    path: Path
    status: str
    messages: int = 0


def load_message_file(path: Path) -> list:
    """Parse one message file (a JSON array of message objects).

    Raises
    ------
    ValueError
        If the file cannot be read or does not hold a JSON array.
    """
    try:
        with open(path, 'r', encoding='utf-8') as handle:
            items = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Cannot read message file {path}: {exc}") from exc
    if not isinstance(items, list):
        raise ValueError(f"Message file {path} does not hold a JSON array")
    return items


class _RecordWriter:
    """Assembler sink: checks the record width, encodes and appends."""

    def __init__(self, handle: IO[str], layout: FieldLayout, encoder, influx: bool):
        self._handle = handle
        self._layout = layout
        self._encoder = encoder
        self._influx = influx
        self.emitted = 0

    def __call__(self, record: OutputRecord) -> bool:
        assert_record_width(record, self._layout)
        if self._influx:
            text = self._encoder.encode(record, self.emitted)
        else:
            text = self._encoder.encode(record)
        if not text:
            return False
        self._handle.write(text)
        self.emitted += 1
        return True


class DeviceStitcher:
    """Stitches one device directory into a single output file.

    Parameters
    ----------
    config : InternalConfig
        Fully validated runtime configuration.
    metadata_store : MetadataStore, optional
        Read-only source of user preferences and device aliases. Without it
        the directory name and the configured default unit are used.
    tracker : StitchTracker, optional
        Receives progress and final status for each device.

    Examples
    --------
    >>> stitcher = DeviceStitcher(config)
    >>> result = stitcher.stitch(unit)
    >>> result.status, result.model
    ('completed', 'model AF')
    """

    def __init__(self, config: "InternalConfig", metadata_store: Optional[MetadataStore] = None,
                 tracker: Optional["StitchTracker"] = None):
        self.config = config
        self.metadata_store = metadata_store
        self.tracker = tracker

    def stitch(self, unit: "UnitOfWork") -> StitchResult:
        """Stitch the head device of ``unit``.

        Input problems are handled here: the diagnostic is written and a
        ``no_data`` result returned. Anything else raises.

        Raises
        ------
        StitchError
            If the unit has no device left or the second pass fails.
        ContractViolation
            If the layout or a record breaks an engine invariant.
        """
        device_dir = unit.current_serial
        if device_dir is None:
            raise StitchError("Unit of work has no device left to stitch")

        profile = resolve_device_profile(
            self.metadata_store, unit.email, device_dir,
            self.config.output.default_temperature_units,
        )
        context = DeviceContext(
            device_dir=device_dir,
            output_path=get_output_path(unit.save_path, profile.display_name, unit.extension),
            display_name=profile.display_name,
            display_units=profile.temperature_units,
        )
        influx = unit.stitch_format == 'influx'

        if self.tracker:
            self.tracker.mark_started(device_dir, unit.save_path, context.output_path)

        logger.info("Stitching %s -> %s", device_dir, context.output_path.name)

        # newline='' keeps the CRLF row terminators intact on every platform
        with open(context.output_path, 'w', encoding='utf-8', newline='') as handle:
            try:
                self._first_pass(context, Path(unit.save_path) / device_dir)
            except InputDataError as exc:
                logger.warning("%s", exc)
                handle.write("[]" if influx else exc.diagnostic)
                return self._finish(unit, context, STATUS_NO_DATA)

            self._classify(context)
            self._update_tracker(unit, context, messages_total=context.total_messages)
            self._second_pass(context, unit, handle, influx)

        return self._finish(unit, context, STATUS_COMPLETED)

    # ------------------------------------------------------------------
    # first pass
    # ------------------------------------------------------------------

    def _first_pass(self, context: DeviceContext, device_path: Path) -> None:
        context.files = list_message_files(device_path)
        if not context.files:
            raise InputDataError(
                f"No message files for {context.device_dir}",
                UNKNOWN_SERIAL_MESSAGE.format(serial=context.serial),
            )

        reference_topics = set(self.config.timebase.reference_topics)
        for position, path in enumerate(context.files):
            try:
                items = load_message_file(path)
            except ValueError as exc:
                raise InputDataError(str(exc), UNKNOWN_SERIAL_MESSAGE.format(serial=context.serial)) from exc

            if position == 0 and not items:
                raise InputDataError(
                    f"First message file of {context.device_dir} is empty",
                    EMPTY_PERIOD_MESSAGE.format(serial=context.serial),
                )

            context.total_messages += len(items)
            for item in items:
                if isinstance(item, dict):
                    self._scan_message(context, item, reference_topics)

        logger.debug("First pass for %s: %d files, %d messages, topics %s",
                     context.device_dir, len(context.files), context.total_messages,
                     sorted(context.topics))

    def _scan_message(self, context: DeviceContext, item: dict, reference_topics: set) -> None:
        topic = item.get('topic')
        if not isinstance(topic, str):
            return
        context.topics.add(topic)

        kind = topic_kind(topic, context.serial)
        if kind in reference_topics:
            timestamp = parse_timestamp(item.get('timestamp'))
            if timestamp is not None:
                context.add_reference_timestamp(kind, timestamp.value / 1e6)

        if context.source_temperature_units is None and 'temperature' in topic:
            units = item.get('converted-units') or item.get('units')
            context.source_temperature_units = normalize_temperature_units(units) or 'degC'

    def _classify(self, context: DeviceContext) -> None:
        context.capabilities = build_capability_set(context.topics, context.serial)
        context.model = classify(context.capabilities)
        logger.info("Egg %s is %s type", context.device_dir, context.model)

        timebase_cfg = self.config.timebase
        reference = select_reference_topic(context.reference_timestamps, timebase_cfg.reference_topics)
        if reference is None:
            logger.info("Egg %s reports no reference topic, no timebase", context.device_dir)
            return
        context.timebase_ms = estimate_timebase(
            context.reference_timestamps[reference],
            max_timebase_ms=timebase_cfg.max_timebase_ms,
            default_timebase_ms=timebase_cfg.default_timebase_ms,
        )
        logger.info("Egg %s has timebase of %s ms (reference topic %s)",
                    context.device_dir, context.timebase_ms, reference)

    # ------------------------------------------------------------------
    # second pass
    # ------------------------------------------------------------------

    def _load_for_assembly(self, path: Path) -> list:
        try:
            return load_message_file(path)
        except ValueError as exc:
            raise StitchError(f"Message file changed during stitching: {exc}") from exc

    def _second_pass(self, context: DeviceContext, unit: "UnitOfWork", handle: IO[str],
                     influx: bool) -> None:
        output_cfg = self.config.output
        first_items = self._load_for_assembly(context.files[0])

        refined = refine_model(context.model, first_items, context.serial)
        if refined != context.model:
            logger.info("Egg %s is %s type (refined)", context.device_dir, refined)
        context.model = refined

        layout = resolve_layout(context.model, context.capabilities, context.display_units,
                                first_messages=first_items, serial=context.serial)
        context.layout = layout

        if influx:
            encoder = InfluxEncoder(layout, serial=context.serial,
                                    measurement=output_cfg.influx_measurement)
            assert_layout_consistent(layout)
            handle.write(encoder.open_array())
        else:
            encoder = CsvEncoder(layout, utc_offset=unit.utc_offset, sentinel=output_cfg.sentinel,
                                 timestamp_format=output_cfg.csv_timestamp_format)
            header = encoder.header()
            assert_layout_consistent(layout, header)
            handle.write(header)

        self._update_tracker(unit, context, model=context.model, timebase_ms=context.timebase_ms)

        writer = _RecordWriter(handle, layout, encoder, influx)
        assembler_cfg = self.config.assembler
        assembler = RecordAssembler(
            layout,
            writer,
            compensated=unit.compensated,
            instantaneous=unit.instantaneous,
            display_units=context.display_units,
            window_ms=merge_window_ms(assembler_cfg.window_policy, assembler_cfg.merge_tolerance_ms,
                                      context.timebase_ms),
            serial=context.serial,
            source_temperature_units=context.source_temperature_units or output_cfg.default_temperature_units,
            temperature_decimals=output_cfg.temperature_decimals,
            yield_every=assembler_cfg.yield_every,
        )

        for position, path in enumerate(context.files):
            if position == 0:
                items, first_items = first_items, None
            else:
                items = self._load_for_assembly(path)
            assembler.feed_all(items)
            context.messages_processed += len(items)
            self._update_tracker(unit, context, messages_processed=context.messages_processed)
        assembler.finish()
        if influx and context.total_messages > 0:
            handle.write(encoder.close_array())

        context.rows_emitted = writer.emitted
        logger.info("Egg %s: %d messages, %d records flushed, %d rows written",
                    context.device_dir, assembler.messages_seen, assembler.rows_written,
                    writer.emitted)

    # ------------------------------------------------------------------
    # bookkeeping
    # ------------------------------------------------------------------

    def _update_tracker(self, unit: "UnitOfWork", context: DeviceContext, **progress) -> None:
        if self.tracker:
            self.tracker.update_progress(context.device_dir, unit.save_path, **progress)

    def _finish(self, unit: "UnitOfWork", context: DeviceContext, status: str) -> StitchResult:
        if self.tracker:
            self.tracker.mark_complete(context.device_dir, unit.save_path, status=status,
                                       rows_written=context.rows_emitted,
                                       messages_processed=context.messages_processed)
        return StitchResult(
            serial=context.serial,
            model=context.model,
            timebase_ms=context.timebase_ms,
            rows=context.rows_emitted,
            path=context.output_path,
            status=status,
            messages=context.messages_processed,
        )
