import pytest
from pydantic import ValidationError

from eggstitch.schemas.user import UserConfig


def test_uppercase_keys_are_handled():
    raw = {
        "BASE_DIR": "/tmp/eggstitch_out",
        "LOG_LEVEL": "debug",
        "MERGE_TOLERANCE_MS": 5000,
        "WINDOW_POLICY": " TIMEBASE ",
        "WORKERS": 4,
    }

    user = UserConfig.model_validate(raw)

    assert user.base_dir == "/tmp/eggstitch_out"
    assert user.log_level == "DEBUG"
    assert isinstance(user.merge_tolerance_ms, float) and user.merge_tolerance_ms == 5000.0
    assert user.window_policy == "timebase"
    assert user.workers == 4


def test_lowercase_field_names_are_handled():
    user = UserConfig(merge_tolerance_ms=4500, workers=2)
    assert user.merge_tolerance_ms == 4500.0
    assert user.workers == 2


def test_unknown_keys_are_ignored():
    raw = {"WORKERS": 2, "UNKNOWN_LEGACY": 12345}
    user = UserConfig.model_validate(raw)

    assert user.workers == 2
    # Unknown key should not become an attribute nor raise
    assert not hasattr(user, "UNKNOWN_LEGACY")


@pytest.mark.parametrize("spelling,expected", [
    ("C", "degC"),
    ("celsius", "degC"),
    ("F", "degF"),
    ("degF", "degF"),
])
def test_temperature_units_spellings(spelling, expected):
    assert UserConfig(TEMPERATURE_UNITS=spelling).temperature_units == expected


def test_unrecognized_temperature_units():
    with pytest.raises(ValidationError):
        UserConfig(TEMPERATURE_UNITS="kelvin")


def test_overrides_only_include_given_values():
    overrides = UserConfig(WORKERS=3).to_internal_overrides()
    assert overrides == {"workers": {"pool_size": 3}}


def test_flat_queue_size_maps_to_workers():
    overrides = UserConfig.model_validate({"WORKERS": 1, "MAX_QUEUE_SIZE": 1}).to_internal_overrides()
    assert overrides == {"workers": {"pool_size": 1, "max_queue_size": 1}}


def test_nested_worker_pool_wins_over_flat_alias():
    user = UserConfig.model_validate({"MAX_QUEUE_SIZE": 5, "worker_pool": {"max_queue_size": 7}})
    assert user.to_internal_overrides()["workers"]["max_queue_size"] == 7
