import threading

import pytest

from eggstitch.pipeline.tracker import TRACKER_STATUSES, StitchTracker

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]

SAVE_PATH = "/data/req1"


def test_register_and_fetch_device(tracker):
    created = tracker.register_device("egg_AB123", SAVE_PATH)
    assert created is True

    status = tracker.get_device_status("egg_AB123", SAVE_PATH)
    assert status["serial"] == "egg_AB123"
    assert status["save_path"] == SAVE_PATH
    assert status["status"] == "pending"


def test_register_duplicate_is_noop(tracker):
    tracker.register_device("egg_AB123", SAVE_PATH)
    assert tracker.register_device("egg_AB123", SAVE_PATH) is False


def test_same_serial_in_two_requests(tracker):
    assert tracker.register_device("egg_AB123", "/data/req1")
    assert tracker.register_device("egg_AB123", "/data/req2")
    assert tracker.get_statistics()["total"] == 2


def test_unknown_device_status(tracker):
    assert tracker.get_device_status("egg_nope", SAVE_PATH) is None


def test_started_and_progress(tracker, tmp_path):
    output = tmp_path / "egg_AB123.csv"
    tracker.mark_started("egg_AB123", SAVE_PATH, output)
    tracker.update_progress("egg_AB123", SAVE_PATH, messages_total=40, model="model AF",
                            timebase_ms=10000.0)
    tracker.update_progress("egg_AB123", SAVE_PATH, messages_processed=20)

    status = tracker.get_device_status("egg_AB123", SAVE_PATH)
    assert status["status"] == "processing"
    assert status["output_path"] == str(output)
    assert status["model"] == "model AF"
    assert status["timebase_ms"] == 10000.0
    assert status["messages_total"] == 40
    assert status["messages_processed"] == 20
    assert status["started_at"] is not None


def test_progress_without_values_is_noop(tracker):
    tracker.register_device("egg_AB123", SAVE_PATH)
    before = tracker.get_device_status("egg_AB123", SAVE_PATH)
    tracker.update_progress("egg_AB123", SAVE_PATH)
    assert tracker.get_device_status("egg_AB123", SAVE_PATH) == before


def test_mark_complete(tracker):
    tracker.mark_started("egg_AB123", SAVE_PATH)
    tracker.mark_complete("egg_AB123", SAVE_PATH, rows_written=42, messages_processed=80)

    status = tracker.get_device_status("egg_AB123", SAVE_PATH)
    assert status["status"] == "completed"
    assert status["rows_written"] == 42
    assert status["finished_at"] is not None


@pytest.mark.parametrize("status", ["no_data", "skipped"])
def test_mark_complete_other_final_statuses(tracker, status):
    tracker.mark_complete("egg_AB123", SAVE_PATH, status=status)
    assert tracker.get_device_status("egg_AB123", SAVE_PATH)["status"] == status


def test_mark_complete_rejects_invalid_status(tracker):
    with pytest.raises(ValueError, match="Invalid status"):
        tracker.mark_complete("egg_AB123", SAVE_PATH, status="failed")


def test_failure_sets_failed(tracker):
    tracker.mark_started("egg_AB123", SAVE_PATH)
    tracker.mark_failed("egg_AB123", SAVE_PATH, "boom")

    status = tracker.get_device_status("egg_AB123", SAVE_PATH)
    assert status["status"] == "failed"
    assert "boom" in status["error_message"]


def test_restart_clears_error(tracker):
    tracker.mark_failed("egg_AB123", SAVE_PATH, "boom")
    tracker.mark_started("egg_AB123", SAVE_PATH)
    assert tracker.get_device_status("egg_AB123", SAVE_PATH)["error_message"] is None


def test_statistics(tracker):
    tracker.register_device("egg_1", SAVE_PATH)
    tracker.mark_complete("egg_2", SAVE_PATH, rows_written=5)
    tracker.mark_complete("egg_3", SAVE_PATH, status="no_data")
    tracker.mark_failed("egg_4", SAVE_PATH, "boom")
    tracker.mark_complete("egg_5", "/data/other", rows_written=7)

    stats = tracker.get_statistics(SAVE_PATH)
    assert stats["total"] == 4
    assert stats["pending"] == 1
    assert stats["completed"] == 1
    assert stats["no_data"] == 1
    assert stats["failed"] == 1
    assert stats["rows_written"] == 5

    assert tracker.get_statistics()["rows_written"] == 12


def test_statistics_empty(tracker):
    stats = tracker.get_statistics()
    assert stats["total"] == 0
    assert stats["rows_written"] == 0
    assert set(TRACKER_STATUSES) <= set(stats)


def test_reset_failed(tracker):
    tracker.mark_failed("egg_1", SAVE_PATH, "boom")
    tracker.mark_failed("egg_2", "/data/other", "boom")

    assert tracker.reset_failed(SAVE_PATH) == 1
    assert tracker.get_device_status("egg_1", SAVE_PATH)["status"] == "pending"
    assert tracker.get_device_status("egg_2", "/data/other")["status"] == "failed"
    assert tracker.reset_failed() == 1


def test_context_manager_and_persistence(tmp_path):
    db_path = tmp_path / "nested" / "tracker.db"
    with StitchTracker(db_path) as t:
        t.mark_complete("egg_AB123", SAVE_PATH, rows_written=3)

    with StitchTracker(db_path) as t:
        assert t.get_device_status("egg_AB123", SAVE_PATH)["rows_written"] == 3


def test_close_is_idempotent(tracker):
    tracker.close()
    tracker.close()


def test_concurrent_updates(tracker):
    def work(index):
        serial = f"egg_{index}"
        tracker.mark_started(serial, SAVE_PATH)
        tracker.update_progress(serial, SAVE_PATH, messages_processed=index)
        tracker.mark_complete(serial, SAVE_PATH, rows_written=1)

    threads = [threading.Thread(target=work, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = tracker.get_statistics(SAVE_PATH)
    assert stats["completed"] == 8
    assert stats["rows_written"] == 8
