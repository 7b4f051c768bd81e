"""`eggstitch` - stitching of Egg air-quality telemetry into per-device CSV and Influx files.

Subpackages:
- engine: classification, layouts, timebase, record assembly, encoders
- pipeline: orchestrator, workers, per-device stitcher, tracking
- schemas: configuration and unit-of-work models
- metadata: user and device metadata lookups
"""

__version__ = "0.1.0"
