import queue

import pytest

from eggstitch.pipeline.tracker import StitchTracker
from eggstitch.schemas import InternalConfig, ParamConfig, UnitOfWork
from eggstitch.schemas.resolve import resolve_config
from eggstitch.setup_directories import setup_output_directories


@pytest.fixture
def tracker(temp_dir):
    db_path = temp_dir / "tracker.db"
    t = StitchTracker(db_path)
    yield t
    t.close()


@pytest.fixture
def pipeline_config(temp_dir) -> InternalConfig:
    """InternalConfig for pipeline tests: logs and tracker under temp_dir, two workers."""
    return resolve_config(ParamConfig(), {"BASE_DIR": str(temp_dir / "run"), "WORKERS": 2}, None)


@pytest.fixture
def pipeline_output_dirs(temp_dir):
    """Output directories for pipeline tests."""
    return setup_output_directories(temp_dir / "run")


# made for worker tests
@pytest.fixture
def stitch_queues():
    return queue.Queue(), queue.Queue()


@pytest.fixture
def request_dir(temp_dir, write_message_files, af_messages):
    """Request directory with one model AF device split across two files."""
    save_path = temp_dir / "req1"
    write_message_files(save_path / "egg_AB123", [af_messages[:2], af_messages[2:]])
    return save_path


@pytest.fixture
def make_unit():
    """Build a UnitOfWork for a request directory."""
    def _make(save_path, **options):
        return UnitOfWork.from_directory(save_path, **options)

    return _make
