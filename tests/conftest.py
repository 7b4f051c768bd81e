"""Root-level pytest fixtures for the eggstitch test suite.

Provides shared configuration fixtures following the Pydantic-based
architecture, plus builders for request directories full of message files.
All tests must use these fixtures instead of creating raw dict configs.
"""

import json
import os
import shutil
import tempfile
from pathlib import Path

import pytest

from eggstitch.schemas import ParamConfig, UserConfig, resolve_config


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults."""
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """Fully validated runtime configuration (no overrides).

    Examples
    --------
    >>> def test_stitcher_init(internal_config):
    ...     stitcher = DeviceStitcher(internal_config)
    ...     assert stitcher.config.assembler.merge_tolerance_ms == 6000.0
    """
    return resolve_config(param_config, None, None)


@pytest.fixture
def make_config(param_config):
    """Factory fixture for creating custom test configs.

    Returns a callable that accepts UserConfig-compatible kwargs.

    Examples
    --------
    >>> def test_custom_tolerance(make_config):
    ...     config = make_config(MERGE_TOLERANCE_MS=4000)
    ...     assert config.assembler.merge_tolerance_ms == 4000.0
    """
    def _make(**user_overrides):
        if user_overrides:
            user = UserConfig(**user_overrides)
            return resolve_config(param_config, user, None)
        return resolve_config(param_config, None, None)

    return _make


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def write_message_files():
    """Factory writing numbered message files into a device directory.

    Files are written as ``1.json``, ``2.json``, ... with strictly
    increasing modification times so their processing order is fixed.

    Examples
    --------
    >>> def test_device(temp_dir, write_message_files):
    ...     device = write_message_files(temp_dir / "egg_AB123", [[msg1, msg2], [msg3]])
    """
    def _write(device_dir, batches, base_mtime=1_700_000_000):
        device_dir = Path(device_dir)
        device_dir.mkdir(parents=True, exist_ok=True)
        for index, batch in enumerate(batches, start=1):
            path = device_dir / f"{index}.json"
            if isinstance(batch, str):
                path.write_text(batch)
            else:
                path.write_text(json.dumps(batch))
            mtime = base_mtime + index
            os.utime(path, (mtime, mtime))
        return device_dir

    return _write


def egg_message(topic, timestamp, **payload):
    """Build one Egg message the way the devices publish them."""
    message = {"topic": topic, "timestamp": timestamp}
    message.update(payload)
    return message


@pytest.fixture
def make_message():
    """The ``egg_message`` builder as a fixture."""
    return egg_message


@pytest.fixture
def af_messages():
    """Temperature + no2 Egg (model AF), 10 s sampling, two records."""
    return [
        egg_message("temperature", "2024-01-01T00:00:00Z", **{
            "raw-value": 20.5, "converted-value": 20.25, "converted-units": "degC",
            "__location": {"lat": 40.1, "lon": -74.2, "alt": 12},
        }),
        egg_message("no2", "2024-01-01T00:00:01Z", **{
            "raw-value": 0.41, "compensated-value": 12.5, "converted-value": 11.0,
        }),
        egg_message("temperature", "2024-01-01T00:00:10Z", **{
            "raw-value": 21.0, "converted-value": 20.75, "converted-units": "degC",
        }),
        egg_message("no2", "2024-01-01T00:00:11Z", **{
            "raw-value": 0.42, "compensated-value": 13.0, "converted-value": 11.5,
        }),
    ]
