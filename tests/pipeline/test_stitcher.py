import json

import pytest

from eggstitch.contracts import ContractViolation
from eggstitch.metadata import InMemoryMetadataStore
from eggstitch.pipeline import stitcher as stitcher_module
from eggstitch.pipeline.stitcher import (
    EMPTY_PERIOD_MESSAGE,
    STATUS_COMPLETED,
    STATUS_NO_DATA,
    UNKNOWN_SERIAL_MESSAGE,
    DeviceStitcher,
    StitchError,
    load_message_file,
)

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]

AF_HEADER = "timestamp,temperature[degC],no2[ppb],no2[V],latitude[deg],longitude[deg],altitude[m]"


def _read(path):
    # keep CRLF terminators as written
    return path.read_bytes().decode("utf-8")


class TestLoadMessageFile:
    """Message file parsing."""

    def test_array(self, temp_dir):
        path = temp_dir / "1.json"
        path.write_text('[{"topic": "temperature"}]')
        assert load_message_file(path) == [{"topic": "temperature"}]

    def test_invalid_json(self, temp_dir):
        path = temp_dir / "1.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="Cannot read"):
            load_message_file(path)

    def test_not_an_array(self, temp_dir):
        path = temp_dir / "1.json"
        path.write_text('{"topic": "temperature"}')
        with pytest.raises(ValueError, match="JSON array"):
            load_message_file(path)

    def test_missing(self, temp_dir):
        with pytest.raises(ValueError):
            load_message_file(temp_dir / "missing.json")


class TestStitchCsv:
    """End-to-end CSV stitching of one device."""

    def test_model_af(self, internal_config, request_dir, make_unit):
        unit = make_unit(request_dir, compensated=True)
        result = DeviceStitcher(internal_config).stitch(unit)

        assert result.status == STATUS_COMPLETED
        assert result.serial == "AB123"
        assert result.model == "model AF"
        assert result.timebase_ms == pytest.approx(10000.0)
        assert result.rows == 2
        assert result.messages == 4
        assert result.path == request_dir / "egg_AB123.csv"
        assert _read(result.path) == (
            AF_HEADER + "\r\n"
            "01/01/2024 00:00:00,20.25,12.5,0.41,40.1,-74.2,12\r\n"
            "01/01/2024 00:00:10,20.75,13,0.42,---,---,---\r\n"
        )

    def test_header_written_once(self, internal_config, request_dir, make_unit):
        result = DeviceStitcher(internal_config).stitch(make_unit(request_dir))
        assert _read(result.path).count("timestamp,") == 1

    def test_uncompensated_values(self, internal_config, request_dir, make_unit):
        result = DeviceStitcher(internal_config).stitch(make_unit(request_dir))
        first_row = _read(result.path).split("\r\n")[1].split(",")
        assert first_row[1] == "20.5"

    def test_utc_offset(self, internal_config, request_dir, make_unit):
        result = DeviceStitcher(internal_config).stitch(make_unit(request_dir, utc_offset=-5))
        assert "12/31/2023 19:00:00" in _read(result.path)

    def test_refined_model(self, internal_config, temp_dir, write_message_files, make_message, make_unit):
        save_path = temp_dir / "req2"
        write_message_files(save_path / "egg_PM1", [[
            make_message("temperature", "2024-01-01T00:00:00Z", **{"raw-value": 20}),
            make_message("humidity", "2024-01-01T00:00:01Z", **{"raw-value": 40}),
            make_message("particulate", "2024-01-01T00:00:02Z", pm1p0=3.1, pm2p5=5.2, pm10p0=7.3),
        ]])
        result = DeviceStitcher(internal_config).stitch(make_unit(save_path))

        assert result.model == "model N"
        header = _read(result.path).split("\r\n")[0]
        assert header.startswith("timestamp,temperature[degC],humidity[%],pm1.0[ug/m^3]")
        assert header.endswith("aqi,nowcast,heatindex[degC]")

    def test_unknown_model_uses_dynamic_layout(self, internal_config, temp_dir, write_message_files,
                                               make_message, make_unit):
        save_path = temp_dir / "req3"
        write_message_files(save_path / "egg_X9", [[
            make_message("temperature", "2024-01-01T00:00:00Z", **{"raw-value": 20}),
            make_message("exposure", "2024-01-01T00:00:01Z", value=4),
        ]])
        result = DeviceStitcher(internal_config).stitch(make_unit(save_path))

        assert result.model == "unknown"
        lines = _read(result.path).split("\r\n")
        assert lines[0] == "timestamp,temperature[degC],exposure[#],latitude[deg],longitude[deg],altitude[m]"
        assert lines[1] == "01/01/2024 00:00:00,---,4,---,---,---"

    def test_alias_and_unit_preference(self, internal_config, request_dir, make_unit):
        store = InMemoryMetadataStore(
            users=[{"email": "ops@example.com", "aliases": True, "unitPreference": "imperial"}],
            devices=[{"serialNumber": "AB123", "alias": "Roof Egg"}],
        )
        unit = make_unit(request_dir, compensated=True, email="ops@example.com")
        result = DeviceStitcher(internal_config, metadata_store=store).stitch(unit)

        assert result.path == request_dir / "Roof_Egg.csv"
        lines = _read(result.path).split("\r\n")
        assert lines[0].startswith("timestamp,temperature[degF],")
        assert float(lines[1].split(",")[1]) == pytest.approx(68.45)

    def test_tracker_records_progress(self, internal_config, request_dir, make_unit, tracker):
        unit = make_unit(request_dir)
        DeviceStitcher(internal_config, tracker=tracker).stitch(unit)

        status = tracker.get_device_status("egg_AB123", unit.save_path)
        assert status["status"] == "completed"
        assert status["model"] == "model AF"
        assert status["messages_total"] == 4
        assert status["messages_processed"] == 4
        assert status["rows_written"] == 2
        assert status["timebase_ms"] == pytest.approx(10000.0)


class TestStitchInflux:
    """End-to-end Influx-style JSON stitching."""

    def test_points(self, internal_config, request_dir, make_unit):
        unit = make_unit(request_dir, compensated=True, stitch_format="influx")
        result = DeviceStitcher(internal_config).stitch(unit)

        assert result.path == request_dir / "egg_AB123.json"
        points = json.loads(_read(result.path))
        assert len(points) == 2
        assert points[0]["tags"]["serial_number"] == "AB123"
        assert points[0]["fields"]["no2"] == 12.5
        assert points[1]["timestamp"] == "2024-01-01T00:00:10.000Z"

    def test_no_data_writes_empty_array(self, internal_config, temp_dir, make_unit):
        save_path = temp_dir / "req4"
        (save_path / "egg_EMPTY1").mkdir(parents=True)
        result = DeviceStitcher(internal_config).stitch(make_unit(save_path, stitch_format="influx"))

        assert result.status == STATUS_NO_DATA
        assert _read(result.path) == "[]"


class TestDiagnostics:
    """Missing, unreadable and empty input."""

    def test_no_files(self, internal_config, temp_dir, make_unit, tracker):
        save_path = temp_dir / "req5"
        (save_path / "egg_ZZ999").mkdir(parents=True)
        unit = make_unit(save_path)
        result = DeviceStitcher(internal_config, tracker=tracker).stitch(unit)

        assert result.status == STATUS_NO_DATA
        assert result.rows == 0
        assert _read(result.path) == UNKNOWN_SERIAL_MESSAGE.format(serial="ZZ999")
        assert tracker.get_device_status("egg_ZZ999", unit.save_path)["status"] == "no_data"

    def test_unparseable_file(self, internal_config, temp_dir, write_message_files, af_messages, make_unit):
        save_path = temp_dir / "req6"
        write_message_files(save_path / "egg_AB123", [af_messages, "{broken"])
        result = DeviceStitcher(internal_config).stitch(make_unit(save_path))

        assert result.status == STATUS_NO_DATA
        assert "Serial Number" in _read(result.path)

    def test_empty_first_file(self, internal_config, temp_dir, write_message_files, af_messages, make_unit):
        save_path = temp_dir / "req7"
        write_message_files(save_path / "egg_AB123", [[], af_messages])
        result = DeviceStitcher(internal_config).stitch(make_unit(save_path))

        assert result.status == STATUS_NO_DATA
        assert _read(result.path) == EMPTY_PERIOD_MESSAGE.format(serial="AB123")

    def test_empty_later_file_is_fine(self, internal_config, temp_dir, write_message_files, af_messages,
                                      make_unit):
        save_path = temp_dir / "req8"
        write_message_files(save_path / "egg_AB123", [af_messages, []])
        result = DeviceStitcher(internal_config).stitch(make_unit(save_path))
        assert result.status == STATUS_COMPLETED
        assert result.rows == 2


class TestFailures:
    """Errors that abort a device."""

    def test_no_device_left(self, internal_config, request_dir, make_unit):
        unit = make_unit(request_dir).model_copy(update={"serials": []})
        with pytest.raises(StitchError):
            DeviceStitcher(internal_config).stitch(unit)

    def test_file_changes_between_passes(self, internal_config, request_dir, make_unit, monkeypatch):
        real_load = stitcher_module.load_message_file
        calls = []

        def flaky_load(path):
            calls.append(path)
            # two files: both passes read file 1, the second pass then fails on file 2
            if len(calls) == 4:
                raise ValueError("gone")
            return real_load(path)

        monkeypatch.setattr(stitcher_module, "load_message_file", flaky_load)
        with pytest.raises(StitchError, match="changed during stitching"):
            DeviceStitcher(internal_config).stitch(make_unit(request_dir))

    def test_record_contract_violation(self, internal_config, request_dir, make_unit, monkeypatch):
        def broken_width(record, layout):
            raise ContractViolation("Record contract violated: test")

        monkeypatch.setattr(stitcher_module, "assert_record_width", broken_width)
        with pytest.raises(ContractViolation):
            DeviceStitcher(internal_config).stitch(make_unit(request_dir))
