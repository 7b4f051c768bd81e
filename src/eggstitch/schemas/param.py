"""ParamConfig: Expert defaults for the stitching pipeline.

This module defines the complete default configuration. ALL pipeline
parameters must have defaults here. No runtime code should define fallback
values - this is the single source of truth for defaults.

Runtime code NEVER reads from ParamConfig directly - it only receives InternalConfig.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from eggstitch.schemas.base import StitchBaseModel


# =============================================================================
# Nested Configuration Models
# =============================================================================

class AssemblerConfig(StitchBaseModel):
    """Record windowing configuration."""
    merge_tolerance_ms: float = Field(6000.0, gt=0, description="Fixed merge window in milliseconds")
    window_policy: Literal["fixed", "timebase"] = "fixed"
    yield_every: int = Field(100, ge=0, description="Cooperative yield period in messages (0 disables)")

    @field_validator("merge_tolerance_ms", mode="before")
    @classmethod
    def coerce_tolerance_to_float(cls, v):
        """Allow int or float for the tolerance."""
        return float(v)

    @field_validator("window_policy", mode="before")
    @classmethod
    def normalize_policy_name(cls, v):
        """Normalize policy names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v


class TimebaseConfig(StitchBaseModel):
    """Timebase estimation configuration."""
    reference_topics: list[str] = Field(
        default_factory=lambda: ["temperature", "battery", "humidity"]
    )
    max_timebase_ms: float = Field(600000.0, gt=0, description="Estimates above this are clamped")
    default_timebase_ms: float = Field(60000.0, gt=0, description="Window used when clamped")


class OutputConfig(StitchBaseModel):
    """Output encoding configuration."""
    sentinel: str = "---"
    csv_timestamp_format: str = "%m/%d/%Y %H:%M:%S"
    influx_measurement: str = "egg_data"
    temperature_decimals: int = Field(2, ge=0, le=6)
    default_temperature_units: Literal["degC", "degF"] = "degC"


class WorkersConfig(StitchBaseModel):
    """Worker pool configuration."""
    pool_size: int = Field(3, ge=1, le=15)
    max_queue_size: int = Field(100, ge=1)
    join_timeout_sec: float = Field(5.0, gt=0)
    shutdown_grace_sec: float = Field(1.0, ge=0)
    failure_policy: Literal["fail_device", "fail_fast"] = "fail_device"


class TrackerConfig(StitchBaseModel):
    """Per-device stitch tracker configuration."""
    enabled: bool = True
    db_filename: str = "stitch_tracker.db"


class LoggingConfig(StitchBaseModel):
    """Logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


# =============================================================================
# Main ParamConfig
# =============================================================================

class ParamConfig(StitchBaseModel):
    """Complete expert configuration with all defaults.

    This is the single source of truth for all pipeline parameters.
    Every tunable parameter MUST have a default here.

    Usage
    -----
    This config is NOT used directly by runtime code. It serves as the
    base layer in config resolution:

        internal_cfg = resolve_config(param_cfg, user_cfg, cli_cfg)

    Runtime code only sees InternalConfig.
    """

    base_dir: Optional[str] = None
    assembler: AssemblerConfig = Field(default_factory=AssemblerConfig)
    timebase: TimebaseConfig = Field(default_factory=TimebaseConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    workers: WorkersConfig = Field(default_factory=WorkersConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
