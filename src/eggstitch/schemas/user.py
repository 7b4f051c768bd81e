"""UserConfig: Forgiving, minimal user-facing configuration.

This schema accepts user inputs in a variety of formats, with aliases
for common naming patterns (e.g., MERGE_TOLERANCE_MS → merge_tolerance_ms,
WORKERS → workers.pool_size).

UserConfig is intentionally minimal - users only specify what they want
to override from the expert defaults. Validation is lenient to accept
both uppercase and lowercase keys, integers where floats are expected, etc.
"""

from typing import Literal, Optional
from pydantic import Field, field_validator
from eggstitch.schemas.base import StitchBaseModel
from eggstitch.engine.normalizer import normalize_temperature_units


class UserAssemblerConfig(StitchBaseModel):
    """User-facing assembler config."""
    merge_tolerance_ms: Optional[float] = None
    window_policy: Optional[str] = None
    yield_every: Optional[int] = None

    @field_validator("window_policy", mode="before")
    @classmethod
    def normalize_policy(cls, v):
        """Normalize policy names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v


class UserTimebaseConfig(StitchBaseModel):
    """User-facing timebase config."""
    reference_topics: Optional[list[str]] = None
    max_timebase_ms: Optional[float] = None
    default_timebase_ms: Optional[float] = None


class UserOutputConfig(StitchBaseModel):
    """User-facing output config."""
    sentinel: Optional[str] = None
    csv_timestamp_format: Optional[str] = None
    influx_measurement: Optional[str] = None
    temperature_decimals: Optional[int] = None
    default_temperature_units: Optional[str] = None


class UserWorkersConfig(StitchBaseModel):
    """User-facing worker pool config."""
    pool_size: Optional[int] = None
    max_queue_size: Optional[int] = None
    join_timeout_sec: Optional[float] = None
    shutdown_grace_sec: Optional[float] = None
    failure_policy: Optional[str] = None


class UserTrackerConfig(StitchBaseModel):
    """User-facing tracker config."""
    enabled: Optional[bool] = None
    db_filename: Optional[str] = None


class UserConfig(StitchBaseModel):
    """User-facing configuration schema.

    Minimal, forgiving, and uses common aliases. Users only specify
    what they want to override from ParamConfig defaults.

    This config is converted to internal overrides during resolution.

    Usage
    -----
        user_cfg = UserConfig(
            base_dir="/data/eggs",
            merge_tolerance_ms=5000,
            workers=5,
        )

        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    # Top-level operational settings
    base_dir: Optional[str] = Field(None, alias="BASE_DIR")
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = Field(None, alias="LOG_LEVEL")

    # Assembler settings (flat aliases)
    merge_tolerance_ms: Optional[float] = Field(None, alias="MERGE_TOLERANCE_MS")
    window_policy: Optional[str] = Field(None, alias="WINDOW_POLICY")

    # Timebase settings (flat aliases)
    max_timebase_ms: Optional[float] = Field(None, alias="MAX_TIMEBASE_MS")
    default_timebase_ms: Optional[float] = Field(None, alias="DEFAULT_TIMEBASE_MS")

    # Output settings (flat aliases)
    temperature_units: Optional[str] = Field(None, alias="TEMPERATURE_UNITS")

    # Operational settings (flat aliases)
    workers: Optional[int] = Field(None, alias="WORKERS")
    max_queue_size: Optional[int] = Field(None, alias="MAX_QUEUE_SIZE")
    tracker_enabled: Optional[bool] = Field(None, alias="TRACKER_ENABLED")

    # Nested overrides (advanced users)
    assembler: Optional[UserAssemblerConfig] = None
    timebase: Optional[UserTimebaseConfig] = None
    output: Optional[UserOutputConfig] = None
    worker_pool: Optional[UserWorkersConfig] = None
    tracker: Optional[UserTrackerConfig] = None

    model_config = StitchBaseModel.model_config.copy()
    # Allow forgiving input dictionaries (ignore unknown legacy keys)
    model_config.update({"populate_by_name": True, "extra": "ignore"})

    @field_validator("merge_tolerance_ms", "max_timebase_ms", "default_timebase_ms", mode="before")
    @classmethod
    def coerce_numeric_fields(cls, v):
        """Accept int or float for numeric fields."""
        if v is not None:
            return float(v)
        return v

    @field_validator("window_policy", mode="before")
    @classmethod
    def normalize_policy_name(cls, v):
        """Normalize policy names to lowercase."""
        if isinstance(v, str):
            return v.lower().strip()
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper().strip()
        return v

    @field_validator("temperature_units", mode="before")
    @classmethod
    def normalize_temperature(cls, v):
        """Accept C/F/celsius/fahrenheit spellings."""
        if v is None:
            return v
        units = normalize_temperature_units(v)
        if units is None:
            raise ValueError(f"Unrecognized temperature units: {v!r}")
        return units

    def to_internal_overrides(self) -> dict:
        """Convert flat UserConfig to nested InternalConfig structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        # Assembler section
        assembler = {}
        if self.merge_tolerance_ms is not None:
            assembler["merge_tolerance_ms"] = self.merge_tolerance_ms
        if self.window_policy is not None:
            assembler["window_policy"] = self.window_policy
        if self.assembler is not None:
            assembler.update(self.assembler.model_dump(exclude_none=True))
        if assembler:
            overrides["assembler"] = assembler

        # Timebase section
        timebase = {}
        if self.max_timebase_ms is not None:
            timebase["max_timebase_ms"] = self.max_timebase_ms
        if self.default_timebase_ms is not None:
            timebase["default_timebase_ms"] = self.default_timebase_ms
        if self.timebase is not None:
            timebase.update(self.timebase.model_dump(exclude_none=True))
        if timebase:
            overrides["timebase"] = timebase

        # Output section
        output = {}
        if self.temperature_units is not None:
            output["default_temperature_units"] = self.temperature_units
        if self.output is not None:
            output.update(self.output.model_dump(exclude_none=True))
        if output:
            overrides["output"] = output

        # Worker pool section
        workers = {}
        if self.workers is not None:
            workers["pool_size"] = self.workers
        if self.max_queue_size is not None:
            workers["max_queue_size"] = self.max_queue_size
        if self.worker_pool is not None:
            workers.update(self.worker_pool.model_dump(exclude_none=True))
        if workers:
            overrides["workers"] = workers

        # Tracker section
        tracker = {}
        if self.tracker_enabled is not None:
            tracker["enabled"] = self.tracker_enabled
        if self.tracker is not None:
            tracker.update(self.tracker.model_dump(exclude_none=True))
        if tracker:
            overrides["tracker"] = tracker

        return overrides
