"""Stitch worker thread.

Takes one unit of work at a time from the work queue, stitches its head
device, and always enqueues exactly one follow-up item so the request keeps
moving even when a device fails.
"""

import logging
import queue
import threading
from typing import Optional, TYPE_CHECKING

from eggstitch.contracts import ContractViolation, FailurePolicy
from eggstitch.pipeline.stitcher import DeviceStitcher, StitchError, StitchResult
from eggstitch.schemas.work import PackageUnit, UnitOfWork

if TYPE_CHECKING:
    from eggstitch.metadata.store import MetadataStore
    from eggstitch.pipeline.tracker import StitchTracker
    from eggstitch.schemas import InternalConfig

__all__ = ['StitchWorker']

logger = logging.getLogger(__name__)


class StitchWorker(threading.Thread):
    """Background worker for the stitch queue.

    **Work chaining:**

    For each ``UnitOfWork`` taken from ``work_queue`` the worker stitches
    ``unit.current_serial`` and then puts ``unit.advance()`` back on
    ``work_queue``, or the resulting ``PackageUnit`` on ``package_queue``
    when no device remains. Units that bypass the stitch stage skip the
    stitcher but still advance.

    ``work_queue`` must be unbounded so the follow-up put never blocks.
    Backpressure belongs to the submitter (see ``request_slots``).

    **Failures:**

    ``StitchError`` and ``ContractViolation`` are logged with their
    traceback and recorded in the tracker. Under ``FailurePolicy.FAIL_DEVICE``
    the chain continues with the next device; under ``FAIL_FAST`` the
    remaining devices are dropped and the packaging unit is produced at once.

    Example usage (typically created by the orchestrator)::

        worker = StitchWorker(work_queue, package_queue, config)
        worker.start()
        work_queue.put(unit)
        ...
        worker.stop()
        worker.join()
    """

    def __init__(self, work_queue: queue.Queue, package_queue: queue.Queue,
                 config: "InternalConfig",
                 metadata_store: Optional["MetadataStore"] = None,
                 tracker: Optional["StitchTracker"] = None,
                 failure_policy: FailurePolicy = FailurePolicy.FAIL_DEVICE,
                 request_slots: Optional[threading.Semaphore] = None,
                 name: str = "StitchWorker"):
        """Initialize worker.

        Parameters
        ----------
        work_queue : queue.Queue
            Source of ``UnitOfWork`` items; follow-up units are put back here.
        package_queue : queue.Queue
            Receives a ``PackageUnit`` when a request has no device left.
        config : InternalConfig
            Fully validated runtime configuration.
        metadata_store : MetadataStore, optional
            Shared read-only metadata lookups.
        tracker : StitchTracker, optional
            Shared thread-safe stitch tracker.
        failure_policy : FailurePolicy
            What a device failure does to the rest of the request.
        request_slots : threading.Semaphore, optional
            Released once per ``PackageUnit`` produced, freeing a slot for
            the next submitted request.
        name : str, optional
            Thread name for logging.
        """
        super().__init__(daemon=True, name=name)

        self.work_queue = work_queue
        self.package_queue = package_queue
        self.config = config
        self.tracker = tracker
        self.failure_policy = FailurePolicy(failure_policy)
        self.request_slots = request_slots
        self.stitcher = DeviceStitcher(config, metadata_store=metadata_store, tracker=tracker)
        self._stop_event = threading.Event()

        self.units_processed = 0
        self.devices_failed = 0

    def stop(self):
        """Signal the worker to exit after the current unit."""
        self._stop_event.set()

    def stopped(self):
        return self._stop_event.is_set()

    def process_unit(self, unit: UnitOfWork) -> Optional[StitchResult]:
        """Stitch one unit and enqueue its follow-up.

        Returns
        -------
        StitchResult or None
            None when the unit was bypassed or the device failed.
        """
        result = None
        failed = False
        try:
            if unit.bypassed:
                logger.info("Stitch stage bypassed for %s", unit.current_serial)
                if self.tracker and unit.current_serial:
                    self.tracker.mark_complete(unit.current_serial, unit.save_path, status='skipped')
            else:
                result = self.stitcher.stitch(unit)
                logger.info("Egg %s done: status=%s model=%s rows=%d",
                            unit.current_serial, result.status, result.model, result.rows)
        except (StitchError, ContractViolation) as exc:
            failed = True
            logger.exception("Failed to stitch %s", unit.current_serial)
            self._record_failure(unit, exc)
        except Exception as exc:
            failed = True
            logger.exception("Unexpected error stitching %s", unit.current_serial)
            self._record_failure(unit, exc)
        finally:
            self._enqueue_next(unit, failed)

        self.units_processed += 1
        return result

    def _record_failure(self, unit: UnitOfWork, exc: BaseException):
        self.devices_failed += 1
        if self.tracker and unit.current_serial:
            self.tracker.mark_failed(unit.current_serial, unit.save_path, str(exc))

    def _enqueue_next(self, unit: UnitOfWork, failed: bool):
        if failed and self.failure_policy == FailurePolicy.FAIL_FAST:
            next_item = unit.model_copy(update={"serials": unit.serials[:1]}).advance()
            logger.warning("Fail-fast: dropping %d remaining device(s) of %s",
                           max(len(unit.serials) - 1, 0), unit.save_path)
        else:
            next_item = unit.advance()

        if isinstance(next_item, PackageUnit):
            logger.info("All devices of %s stitched, queued for packaging", unit.save_path)
            self.package_queue.put(next_item)
            if self.request_slots is not None:
                self.request_slots.release()
        else:
            self.work_queue.put(next_item)

    def run(self):
        """Main worker loop (runs in thread).

        Notes
        -----
        Called automatically by thread.start(). Do not call directly.
        """
        logger.info("%s started, waiting for work...", self.name)

        while not self.stopped():
            try:
                try:
                    unit = self.work_queue.get(timeout=1)
                except queue.Empty:
                    continue

                try:
                    self.process_unit(unit)
                except Exception:
                    logger.exception("Failed to chain unit for %s", getattr(unit, 'save_path', unit))
                finally:
                    self.work_queue.task_done()

            except Exception:
                logger.exception("Worker error")

        logger.info("%s stopped", self.name)
