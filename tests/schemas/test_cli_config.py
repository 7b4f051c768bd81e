"""Tests for CLIConfig schema and conversion to internal overrides."""

import pytest
from pydantic import ValidationError

from eggstitch.schemas.cli import CLIConfig


def test_cli_empty_has_no_overrides():
    assert CLIConfig().to_internal_overrides() == {}


def test_cli_to_internal_overrides_with_workers():
    """Test CLI config conversion with worker count."""
    overrides = CLIConfig(workers=4).to_internal_overrides()
    assert overrides["workers"] == {"pool_size": 4}


def test_cli_to_internal_overrides_with_window_policy():
    overrides = CLIConfig(window_policy="timebase").to_internal_overrides()
    assert overrides["assembler"]["window_policy"] == "timebase"


def test_cli_to_internal_overrides_with_log_level():
    """Test CLI config conversion with log_level override."""
    overrides = CLIConfig(log_level="DEBUG").to_internal_overrides()
    assert overrides["logging"]["level"] == "DEBUG"


def test_cli_to_internal_overrides_with_base_dir(tmp_path):
    overrides = CLIConfig(base_dir=str(tmp_path)).to_internal_overrides()
    assert overrides["base_dir"] == str(tmp_path)


def test_cli_no_tracker():
    assert CLIConfig(no_tracker=True).to_internal_overrides()["tracker"] == {"enabled": False}
    assert "tracker" not in CLIConfig(no_tracker=False).to_internal_overrides()


@pytest.mark.parametrize("payload", [
    {"workers": 0},
    {"workers": 16},
    {"window_policy": "sliding"},
    {"merge_tolerance": 5000},
])
def test_cli_rejects_invalid_values(payload):
    with pytest.raises(ValidationError):
        CLIConfig.model_validate(payload)
