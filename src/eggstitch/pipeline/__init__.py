"""Pipeline modules.

- orchestrator: worker pool controller, logging, fatal shutdown
- worker: stitch worker thread and work chaining
- stitcher: two-pass stitching of one device
- context: per-device state
- tracker: SQLite-based device tracking
"""

from eggstitch.pipeline.orchestrator import PipelineOrchestrator, install_fatal_handler
from eggstitch.pipeline.worker import StitchWorker
from eggstitch.pipeline.stitcher import DeviceStitcher, InputDataError, StitchError, StitchResult
from eggstitch.pipeline.context import DeviceContext
from eggstitch.pipeline.tracker import StitchTracker

__all__ = [
    "PipelineOrchestrator",
    "install_fatal_handler",
    "StitchWorker",
    "DeviceStitcher",
    "StitchError",
    "InputDataError",
    "StitchResult",
    "DeviceContext",
    "StitchTracker",
]
