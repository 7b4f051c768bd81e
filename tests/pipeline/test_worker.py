import threading

import pytest

from eggstitch.contracts import ContractViolation, FailurePolicy
from eggstitch.pipeline.stitcher import StitchError
from eggstitch.pipeline.worker import StitchWorker
from eggstitch.schemas import PackageUnit, UnitOfWork

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


@pytest.fixture
def two_device_request(temp_dir, write_message_files, af_messages):
    save_path = temp_dir / "req1"
    write_message_files(save_path / "egg_A1", [af_messages])
    write_message_files(save_path / "egg_B2", [af_messages])
    return save_path


def _worker(stitch_queues, config, **kwargs):
    work_queue, package_queue = stitch_queues
    return StitchWorker(work_queue, package_queue, config, **kwargs)


def test_worker_initialization(internal_config, stitch_queues):
    worker = _worker(stitch_queues, internal_config)
    assert worker.daemon is True
    assert worker.failure_policy == FailurePolicy.FAIL_DEVICE
    assert not worker.stopped()


def test_stop_sets_event(internal_config, stitch_queues):
    worker = _worker(stitch_queues, internal_config)
    worker.stop()
    assert worker.stopped()


def test_chaining_to_package(internal_config, stitch_queues, two_device_request):
    work_queue, package_queue = stitch_queues
    worker = _worker(stitch_queues, internal_config)
    unit = UnitOfWork.from_directory(two_device_request, zip_file_name="bundle.zip")

    result = worker.process_unit(unit)
    assert result.serial == "A1"
    assert package_queue.empty()
    follow_up = work_queue.get_nowait()
    assert follow_up.serials == ["egg_B2"]
    assert follow_up.original_serials == ["egg_A1", "egg_B2"]

    worker.process_unit(follow_up)
    assert work_queue.empty()
    package = package_queue.get_nowait()
    assert isinstance(package, PackageUnit)
    assert package.save_path == str(two_device_request)
    assert package.zip_file_name == "bundle.zip"
    assert package.original_serials == ["egg_A1", "egg_B2"]

    assert (two_device_request / "egg_A1.csv").exists()
    assert (two_device_request / "egg_B2.csv").exists()
    assert worker.units_processed == 2


def test_no_data_device_is_not_a_failure(internal_config, stitch_queues, temp_dir, tracker):
    save_path = temp_dir / "req2"
    (save_path / "egg_C3").mkdir(parents=True)
    worker = _worker(stitch_queues, internal_config, tracker=tracker)

    result = worker.process_unit(UnitOfWork.from_directory(save_path))
    assert result.status == "no_data"
    assert worker.devices_failed == 0
    assert tracker.get_device_status("egg_C3", str(save_path))["status"] == "no_data"


def test_bypassed_unit_skips_stitching(internal_config, stitch_queues, two_device_request, tracker,
                                       monkeypatch):
    work_queue, _ = stitch_queues
    worker = _worker(stitch_queues, internal_config, tracker=tracker)

    def must_not_run(unit):
        raise AssertionError("stitch() called for a bypassed unit")

    monkeypatch.setattr(worker.stitcher, "stitch", must_not_run)
    unit = UnitOfWork.from_directory(two_device_request, bypassjobs=["stitch"])

    assert worker.process_unit(unit) is None
    assert work_queue.get_nowait().serials == ["egg_B2"]
    assert tracker.get_device_status("egg_A1", unit.save_path)["status"] == "skipped"
    assert not (two_device_request / "egg_A1.csv").exists()


@pytest.mark.parametrize("error", [
    StitchError("disk gone"),
    ContractViolation("Record contract violated"),
    KeyError("unexpected"),
])
def test_failed_device_continues_chain(internal_config, stitch_queues, two_device_request, tracker,
                                       monkeypatch, error):
    work_queue, package_queue = stitch_queues
    worker = _worker(stitch_queues, internal_config, tracker=tracker)

    def fail(unit):
        raise error

    monkeypatch.setattr(worker.stitcher, "stitch", fail)
    unit = UnitOfWork.from_directory(two_device_request)

    assert worker.process_unit(unit) is None
    assert worker.devices_failed == 1
    assert work_queue.get_nowait().serials == ["egg_B2"]
    assert package_queue.empty()
    assert tracker.get_device_status("egg_A1", unit.save_path)["status"] == "failed"


def test_fail_fast_drops_remaining_devices(internal_config, stitch_queues, two_device_request,
                                           monkeypatch):
    work_queue, package_queue = stitch_queues
    worker = _worker(stitch_queues, internal_config, failure_policy=FailurePolicy.FAIL_FAST)

    def fail(unit):
        raise StitchError("boom")

    monkeypatch.setattr(worker.stitcher, "stitch", fail)
    worker.process_unit(UnitOfWork.from_directory(two_device_request))

    assert work_queue.empty()
    package = package_queue.get_nowait()
    assert package.original_serials == ["egg_A1", "egg_B2"]


def test_fail_fast_accepts_policy_string(internal_config, stitch_queues):
    worker = _worker(stitch_queues, internal_config, failure_policy="fail_fast")
    assert worker.failure_policy == FailurePolicy.FAIL_FAST


def test_worker_thread_processes_request(internal_config, stitch_queues, two_device_request):
    work_queue, package_queue = stitch_queues
    worker = _worker(stitch_queues, internal_config, name="StitchWorker-test")
    worker.start()
    try:
        work_queue.put(UnitOfWork.from_directory(two_device_request))
        package = package_queue.get(timeout=10)
    finally:
        worker.stop()
        worker.join(timeout=5)

    assert package.save_path == str(two_device_request)
    assert not worker.is_alive()
    assert worker.units_processed == 2


def test_request_slot_released_only_on_package(internal_config, stitch_queues, two_device_request):
    work_queue, package_queue = stitch_queues
    slots = threading.BoundedSemaphore(1)
    slots.acquire()
    worker = _worker(stitch_queues, internal_config, request_slots=slots)

    worker.process_unit(UnitOfWork.from_directory(two_device_request))
    assert not slots.acquire(blocking=False)

    worker.process_unit(work_queue.get_nowait())
    assert isinstance(package_queue.get_nowait(), PackageUnit)
    assert slots.acquire(blocking=False)
