"""Multi-threaded stitch orchestration.

Owns the work queue, the packaging queue and a pool of stitch workers.
Manages logging, the stitch tracker, lifecycle and graceful shutdown.
"""

import queue
import sys
import threading
import time
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from eggstitch.contracts import FailurePolicy
from eggstitch.pipeline.tracker import StitchTracker
from eggstitch.pipeline.worker import StitchWorker
from eggstitch.schemas.work import PackageUnit, UnitOfWork
from eggstitch.setup_directories import get_log_path, setup_output_directories

__all__ = ['PipelineOrchestrator', 'install_fatal_handler']

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


class PipelineOrchestrator:
    """Manages the stitch worker pool.

    This is the main entry point for running ``eggstitch`` as a service or
    a batch. Units of work are submitted to a shared queue; each worker
    stitches the head device of a unit and puts the advanced unit back, so
    the devices of one request are processed one after another while
    different requests run in parallel.

    **Queues:**

    - ``work_queue``: ``UnitOfWork`` items. Unbounded, because workers put
      follow-up units back on it.
    - ``package_queue``: ``PackageUnit`` items, one per finished request.

    At most ``workers.max_queue_size`` requests are in flight; ``submit()``
    blocks until a running request is packaged.

    **Tracking:**

    When ``tracker.enabled`` and a ``base_dir`` is configured, a
    ``StitchTracker`` database under ``{base_dir}/tracker`` records the
    state of each device.

    **Logging:**

    Output goes to the console and, with a ``base_dir``, to
    ``{base_dir}/logs/stitch_pipeline.log``.

    Example usage::

        from eggstitch.pipeline import PipelineOrchestrator
        from eggstitch.schemas import ParamConfig, UnitOfWork, resolve_config

        config = resolve_config(ParamConfig(), {"BASE_DIR": "/tmp/stitch"})
        orch = PipelineOrchestrator(config)
        orch.start()
        package = orch.run_batch(UnitOfWork.from_directory("/data/req1"), timeout=600)
        orch.stop()
    """

    def __init__(self, config, metadata_store=None, configure_logging: bool = True):
        """Initialize orchestrator.

        Parameters
        ----------
        config : InternalConfig
            Fully validated runtime configuration.
        metadata_store : MetadataStore, optional
            Shared read-only metadata lookups for every worker.
        configure_logging : bool
            Install file and console handlers on the root logger in start().
        """
        self.config = config
        self.metadata_store = metadata_store
        self.configure_logging = configure_logging

        self.work_queue = queue.Queue()
        self.package_queue = queue.Queue()
        self.request_slots = threading.BoundedSemaphore(config.workers.max_queue_size)

        self.workers: List[StitchWorker] = []
        self.tracker: Optional[StitchTracker] = None
        self.output_dirs: Optional[Dict[str, Path]] = None

        self._handlers: List[logging.Handler] = []
        self._unclaimed: Dict[str, PackageUnit] = {}
        self._claim_lock = threading.Lock()
        self._started = False
        self._stopped = False
        self._start_time = None

    def _setup_logging(self):
        """Configure root logging and the stitch tracker.

        Initializes the root logger with file and console handlers, creates
        the run directories and opens the tracker database.
        """
        log_level = getattr(logging, self.config.logging.level, logging.INFO)

        if self.config.base_dir:
            if self.config.output_dirs:
                self.output_dirs = {name: Path(path) for name, path in self.config.output_dirs.items()}
            else:
                self.output_dirs = setup_output_directories(self.config.base_dir)

        if self.configure_logging:
            formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

            root = logging.getLogger()
            root.setLevel(log_level)
            for handler in root.handlers[:]:
                root.removeHandler(handler)

            handlers: List[logging.Handler] = [logging.StreamHandler()]
            log_path = None
            if self.output_dirs:
                log_path = get_log_path(self.output_dirs)
                handlers.insert(0, logging.FileHandler(log_path))

            for handler in handlers:
                handler.setLevel(log_level)
                handler.setFormatter(formatter)
                root.addHandler(handler)
            self._handlers = handlers

            logger.info("Logging: level=%s, file=%s", self.config.logging.level, log_path)

        if self.config.tracker.enabled and self.output_dirs:
            tracker_path = Path(self.output_dirs["tracker"]) / self.config.tracker.db_filename
            self.tracker = StitchTracker(tracker_path)
            logger.info("Stitch tracker: %s", tracker_path)

    def start(self):
        """Start the worker pool. Returns immediately.

        Raises
        ------
        RuntimeError
            If the orchestrator was already started.
        """
        if self._started:
            raise RuntimeError("PipelineOrchestrator.start() called twice")
        self._started = True

        self._setup_logging()

        logger.info("=" * 60)
        logger.info("Starting Egg Stitch Pipeline")
        logger.info("=" * 60)

        self._start_time = time.time()
        policy = FailurePolicy(self.config.workers.failure_policy)

        for index in range(self.config.workers.pool_size):
            worker = StitchWorker(
                self.work_queue,
                self.package_queue,
                self.config,
                metadata_store=self.metadata_store,
                tracker=self.tracker,
                failure_policy=policy,
                request_slots=self.request_slots,
                name=f"StitchWorker-{index + 1}",
            )
            worker.start()
            self.workers.append(worker)

        logger.info("✓ %d stitch worker(s) started", len(self.workers))

    def submit(self, unit):
        """Queue a unit of work (a ``UnitOfWork`` or its payload dict).

        Devices are registered with the tracker up front so pending devices
        show in its statistics. Blocks while ``workers.max_queue_size``
        requests are already in flight.

        Raises
        ------
        RuntimeError
            If the orchestrator is not running, or stops while waiting.
        """
        if not self._started or self._stopped:
            raise RuntimeError("PipelineOrchestrator is not running")
        if not isinstance(unit, UnitOfWork):
            unit = UnitOfWork.model_validate(unit)

        if unit.serials:
            while not self.request_slots.acquire(timeout=1):
                if self._stopped:
                    raise RuntimeError("PipelineOrchestrator stopped while waiting to submit")
                logger.debug("Request limit reached, waiting to queue %s", unit.save_path)

        if self.tracker:
            for serial in unit.serials:
                self.tracker.register_device(serial, unit.save_path)

        logger.info("Queued %d device(s) from %s", len(unit.serials), unit.save_path)
        if unit.serials:
            self.work_queue.put(unit)
        else:
            self.package_queue.put(unit.advance())
        return unit

    def run_batch(self, unit, timeout: Optional[float] = None) -> PackageUnit:
        """Submit a unit and block until its packaging unit is produced.

        Raises
        ------
        TimeoutError
            If the request does not finish within ``timeout`` seconds.
        """
        unit = self.submit(unit)
        return self.wait_for_package(unit.save_path, timeout=timeout)

    def wait_for_package(self, save_path: str, timeout: Optional[float] = None) -> PackageUnit:
        """Block until the packaging unit of ``save_path`` is produced.

        Packaging units of other requests seen while waiting are kept for
        their own callers.
        """
        save_path = str(save_path)
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            with self._claim_lock:
                package = self._unclaimed.pop(save_path, None)
            if package is not None:
                return package

            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise TimeoutError(f"Stitching {save_path} did not finish within {timeout} s")
            wait = 1.0 if remaining is None else min(remaining, 1.0)
            try:
                package = self.package_queue.get(timeout=wait)
            except queue.Empty:
                continue

            if package.save_path == save_path:
                return package
            with self._claim_lock:
                self._unclaimed[package.save_path] = package

    def stop(self, timeout: Optional[float] = None):
        """Stop the pool gracefully. Safe to call multiple times.

        Parameters
        ----------
        timeout : float, optional
            Join timeout per worker; defaults to ``workers.join_timeout_sec``.
        """
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping pipeline...")
        join_timeout = self.config.workers.join_timeout_sec if timeout is None else timeout

        for worker in self.workers:
            worker.stop()
        for worker in self.workers:
            worker.join(timeout=join_timeout)
            if worker.is_alive():
                logger.warning("%s did not stop cleanly", worker.name)

        elapsed = time.time() - self._start_time if self._start_time else 0
        logger.info("=" * 60)
        logger.info("Pipeline stopped. Runtime: %.1f seconds", elapsed)

        if self.tracker:
            stats = self.tracker.get_statistics()
            logger.info("Statistics: total=%d, completed=%d, no_data=%d, failed=%d, rows=%d",
                        stats.get('total', 0), stats.get('completed', 0), stats.get('no_data', 0),
                        stats.get('failed', 0), stats.get('rows_written', 0))
            self.tracker.close()

        logger.info("=" * 60)

        root = logging.getLogger()
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()
        self._handlers = []

    def log_status(self):
        """Log current pool status."""
        alive = sum(1 for worker in self.workers if worker.is_alive())
        logger.info("Status: workers=%d/%d Q=%d PQ=%d",
                    alive, len(self.workers), self.work_queue.qsize(), self.package_queue.qsize())


def install_fatal_handler(orchestrator: PipelineOrchestrator, grace_seconds: Optional[float] = None,
                          exit_func: Callable[[int], None] = sys.exit) -> Callable[[], None]:
    """Stop the pool and exit on the first uncaught exception.

    Hooks both ``sys.excepthook`` and ``threading.excepthook``. The pool is
    given ``grace_seconds`` (default ``workers.shutdown_grace_sec``) to stop
    before ``exit_func(1)`` is called. The hooks fire once.

    Returns
    -------
    callable
        Restores the previous hooks.
    """
    grace = orchestrator.config.workers.shutdown_grace_sec if grace_seconds is None else grace_seconds
    previous_excepthook = sys.excepthook
    previous_thread_hook = threading.excepthook
    fired = threading.Event()

    def _shutdown(exc_type, exc_value, exc_traceback):
        if fired.is_set():
            return
        fired.set()
        logger.critical("Uncaught exception, shutting down",
                        exc_info=(exc_type, exc_value, exc_traceback))
        stopper = threading.Thread(target=orchestrator.stop, kwargs={"timeout": grace},
                                   name="FatalShutdown", daemon=True)
        stopper.start()
        stopper.join(grace)
        if stopper.is_alive():
            logger.warning("Shutdown did not finish within %.1f s", grace)
        exit_func(1)

    def _excepthook(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            previous_excepthook(exc_type, exc_value, exc_traceback)
            return
        _shutdown(exc_type, exc_value, exc_traceback)

    def _thread_hook(args):
        if issubclass(args.exc_type, SystemExit):
            return
        _shutdown(args.exc_type, args.exc_value, args.exc_traceback)

    def uninstall():
        sys.excepthook = previous_excepthook
        threading.excepthook = previous_thread_hook

    sys.excepthook = _excepthook
    threading.excepthook = _thread_hook
    return uninstall
