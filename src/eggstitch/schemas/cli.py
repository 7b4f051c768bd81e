"""CLIConfig: Command-line operational overrides.

Minimal configuration for operational parameters that commonly change
between runs: worker count, output paths, verbosity.

This schema handles command-line arguments parsed by argparse.
"""

from typing import Literal, Optional
from pydantic import Field
from eggstitch.schemas.base import StitchBaseModel


class CLIConfig(StitchBaseModel):
    """Command-line configuration overrides.

    Operational-only settings that override user and param configs.
    Highest priority in config resolution.

    Usage
    -----
        cli_cfg = CLIConfig(workers=8, base_dir="/scratch/stitch_logs")
        internal = resolve_config(param_cfg, user_cfg, cli_cfg)
    """

    base_dir: Optional[str] = None
    workers: Optional[int] = Field(None, ge=1, le=15)
    window_policy: Optional[Literal["fixed", "timebase"]] = None
    no_tracker: bool = False
    log_level: Optional[Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]] = None

    def to_internal_overrides(self) -> dict:
        """Convert CLI config to internal config structure.

        Returns
        -------
        dict
            Nested dictionary matching InternalConfig structure
        """
        overrides = {}

        if self.base_dir is not None:
            overrides["base_dir"] = str(self.base_dir)

        if self.workers is not None:
            overrides["workers"] = {"pool_size": self.workers}

        if self.window_policy is not None:
            overrides["assembler"] = {"window_policy": self.window_policy}

        if self.no_tracker:
            overrides["tracker"] = {"enabled": False}

        if self.log_level is not None:
            overrides["logging"] = {"level": self.log_level}

        return overrides
