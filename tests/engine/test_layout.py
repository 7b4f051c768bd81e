import pytest

from eggstitch.engine.classifier import CapabilitySet
from eggstitch.engine.layout import (
    DERIVED_MODELS,
    MODEL_COLUMNS,
    FieldLayout,
    build_dynamic_layout,
    resolve_layout,
)

pytestmark = [pytest.mark.unit, pytest.mark.engine]


def _caps(*kinds):
    return CapabilitySet(kinds=frozenset(kinds))


class TestStaticLayouts:
    """Layouts for known models."""

    def test_model_af_header(self):
        layout = resolve_layout("model AF", _caps("temperature", "humidity", "no2"))
        assert layout.width == 8
        assert layout.output_width == 7
        assert ",".join(layout.headings) == (
            "timestamp,temperature[degC],no2[ppb],no2[V],latitude[deg],longitude[deg],altitude[m]"
        )

    def test_model_af_still_assembles_humidity(self):
        layout = resolve_layout("model AF", _caps("temperature", "humidity", "no2"))
        assert layout.has_column("humidity")
        assert "humidity" in layout.excluded

    @pytest.mark.parametrize("model", sorted(MODEL_COLUMNS))
    def test_header_count_matches_output_width(self, model):
        layout = resolve_layout(model, _caps("temperature", "humidity", "pressure", "battery"))
        assert len(layout.headings) == layout.output_width
        assert layout.columns[0].key == "timestamp"

    def test_cross_cutting_columns_follow_flags(self):
        layout = resolve_layout("model D", _caps("temperature", "humidity", "co2", "pressure", "power"))
        keys = [column.key for column in layout.columns]
        assert keys == ["timestamp", "temperature", "humidity", "co2", "pressure", "ac",
                        "latitude", "longitude", "altitude"]

    def test_derived_trio_for_particulate_models(self):
        layout = resolve_layout("model K", _caps("temperature", "humidity", "no2", "particulate"), "degF")
        assert layout.headings[-3:] == ["aqi", "nowcast", "heatindex[degF]"]
        assert layout.has_derived

    def test_no_derived_trio_without_particulate(self):
        assert "model AF" not in DERIVED_MODELS
        assert "model W" not in DERIVED_MODELS
        layout = resolve_layout("model A", _caps("temperature", "humidity", "no2", "co"))
        assert not layout.has_derived

    def test_temperature_unit_follows_display(self):
        layout = resolve_layout("model H", _caps("temperature", "humidity"), "F")
        assert layout.headings[1] == "temperature[degF]"

    def test_dual_channel_headings(self):
        layout = resolve_layout("model J", _caps("temperature", "humidity", "no2", "o3"))
        assert layout.headings[:8] == [
            "timestamp", "temperature[degC]", "humidity[%]", "no2[ppb]", "o3[ppb]",
            "no2_we[V]", "no2_aux[V]", "o3[V]",
        ]

    def test_water_model_has_no_humidity(self):
        layout = resolve_layout("model W", _caps("water/temperature", "water/ph"))
        assert not layout.has_column("humidity")
        assert layout.columns_for_topic("water/temperature")

    def test_topic_lookup(self):
        layout = resolve_layout("model AF", _caps("temperature", "no2"))
        slots = [slot for slot, _ in layout.columns_for_topic("no2")]
        assert slots == [layout.index_of("no2"), layout.index_of("no2_raw")]
        assert layout.columns_for_topic("co") == ()

    def test_gps_indices(self):
        layout = resolve_layout("model AF", _caps("temperature", "no2"))
        assert layout.gps_indices == (5, 6, 7)

    def test_duplicate_keys_rejected(self):
        columns = MODEL_COLUMNS["model H"]
        with pytest.raises(ValueError, match="Duplicate"):
            FieldLayout(model="model H", columns=columns + columns[:1])


class TestDynamicLayout:
    """Layouts synthesized for unresolved models."""

    def test_sort_groups(self):
        layout = build_dynamic_layout(["exposure", "pressure", "wind_speed", "humidity", "temperature"])
        assert layout.dynamic
        assert layout.headings == [
            "timestamp",
            "temperature[degC]",
            "humidity[%]",
            "wind speed max[mph]",
            "wind speed avg[mph]",
            "wind direction[deg]",
            "compass[n/a]",
            "pressure[Pa]",
            "exposure[#]",
            "latitude[deg]",
            "longitude[deg]",
            "altitude[m]",
        ]

    def test_units_from_first_messages(self):
        first = [{"topic": "wind_speed", "speed_units": "kph", "max": 3}]
        layout = build_dynamic_layout(["wind_speed"], first_messages=first)
        assert layout.headings[1] == "wind speed max[kph]"
        assert layout.headings[3] == "wind direction[deg]"

    def test_temperature_columns_use_display_units(self):
        first = [{"topic": "soil_temperature", "units": "degC", "_4in": 10}]
        layout = build_dynamic_layout(["soil_temperature"], "degF", first_messages=first)
        assert layout.headings[1:3] == ["soiltemp 4in[degF]", "soiltemp 8in[degF]"]

    def test_duplicate_field_names_are_prefixed(self):
        layout = build_dynamic_layout(["temperature", "water/temperature"])
        assert layout.has_column("temperature")
        assert layout.has_column("water/temperature:temperature")

    def test_prefixed_columns_get_their_own_influx_field(self):
        layout = build_dynamic_layout(["particulate", "full_particulate"])
        plain = layout.columns[layout.index_of("pm1p0")]
        prefixed = layout.columns[layout.index_of("particulate:pm1p0")]
        assert plain.influx_fields == ("pm1p0",)
        assert plain.units_tag("pm1p0") == "pm1p0_units"
        assert prefixed.influx_fields == ("particulate_pm1p0",)
        assert prefixed.units_tag("particulate_pm1p0") == "particulate_pm1p0_units"

    def test_non_numeric_column(self):
        layout = build_dynamic_layout(["wind_speed"])
        compass = layout.columns[layout.index_of("wind_direction_compass")]
        assert compass.is_non_numeric

    def test_resolve_falls_back_to_dynamic(self):
        layout = resolve_layout("unknown", _caps("temperature", "exposure"))
        assert layout.dynamic
        assert layout.model == "unknown"
        assert not layout.has_derived
