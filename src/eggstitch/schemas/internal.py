"""InternalConfig: Authoritative runtime configuration.

This is the ONLY config schema that runtime code sees. It is fully validated,
normalized, and contains NO optional fields that processing code depends on.

All .get() calls, fallback defaults, and validation logic are FORBIDDEN in
runtime code - everything is explicit here.
"""

from typing import Literal, Optional
from pydantic import Field, ConfigDict, model_validator
from eggstitch.schemas.base import StitchBaseModel


# =============================================================================
# Nested Configuration Models (Runtime)
# =============================================================================

class InternalAssemblerConfig(StitchBaseModel):
    """Runtime record windowing configuration."""
    merge_tolerance_ms: float = Field(gt=0)
    window_policy: Literal["fixed", "timebase"]
    yield_every: int = Field(ge=0)


class InternalTimebaseConfig(StitchBaseModel):
    """Runtime timebase estimation configuration."""
    reference_topics: list[str] = Field(min_length=1)
    max_timebase_ms: float = Field(gt=0)
    default_timebase_ms: float = Field(gt=0)

    @model_validator(mode="after")
    def default_within_max(self):
        if self.default_timebase_ms > self.max_timebase_ms:
            raise ValueError("default_timebase_ms must not exceed max_timebase_ms")
        return self


class InternalOutputConfig(StitchBaseModel):
    """Runtime output configuration."""
    sentinel: str = Field(min_length=1)
    csv_timestamp_format: str
    influx_measurement: str = Field(min_length=1)
    temperature_decimals: int = Field(ge=0, le=6)
    default_temperature_units: Literal["degC", "degF"]


class InternalWorkersConfig(StitchBaseModel):
    """Runtime worker pool configuration."""
    pool_size: int = Field(ge=1, le=15)
    max_queue_size: int = Field(ge=1)
    join_timeout_sec: float = Field(gt=0)
    shutdown_grace_sec: float = Field(ge=0)
    failure_policy: Literal["fail_device", "fail_fast"]


class InternalTrackerConfig(StitchBaseModel):
    """Runtime tracker configuration."""
    enabled: bool
    db_filename: str


class InternalLoggingConfig(StitchBaseModel):
    """Runtime logging configuration."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


# =============================================================================
# Main InternalConfig
# =============================================================================

class InternalConfig(StitchBaseModel):
    """Authoritative runtime configuration.

    This is the ONLY configuration schema that processing code sees.
    It is fully validated, immutable, and contains explicit values for
    all parameters (no None for fields that runtime depends on).

    Usage
    -----
    Runtime modules receive InternalConfig and access fields directly:

        def __init__(self, config: InternalConfig):
            self.tolerance = config.assembler.merge_tolerance_ms  # NOT .get()

    Rules
    -----
    - NO .get() calls
    - NO fallback defaults
    - NO validation

    All of that happens during config resolution, not in runtime code.
    ``base_dir`` is the only optional field; without it logs go to the
    console only and the tracker database is not created.
    """

    base_dir: Optional[str] = None
    assembler: InternalAssemblerConfig
    timebase: InternalTimebaseConfig
    output: InternalOutputConfig
    workers: InternalWorkersConfig
    tracker: InternalTrackerConfig
    logging: InternalLoggingConfig
    output_dirs: Optional[dict[str, str]] = None

    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        frozen=True,  # Immutable after construction
    )
