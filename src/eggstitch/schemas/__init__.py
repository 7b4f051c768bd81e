"""Pydantic schemas for the eggstitch pipeline.

This module provides strictly typed configuration models and the
unit-of-work models passed between pipeline stages. All configuration
validation, coercion, and normalization happens at schema validation time
via Pydantic.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
CLIConfig : class
    Command-line operational overrides
UnitOfWork, PackageUnit : class
    Stitch request and its packaging hand-off
"""

from eggstitch.schemas.resolve import resolve_config
from eggstitch.schemas.internal import InternalConfig
from eggstitch.schemas.param import ParamConfig
from eggstitch.schemas.user import UserConfig
from eggstitch.schemas.cli import CLIConfig
from eggstitch.schemas.work import UnitOfWork, PackageUnit

__all__ = [
    'resolve_config',
    'InternalConfig',
    'ParamConfig',
    'UserConfig',
    'CLIConfig',
    'UnitOfWork',
    'PackageUnit',
]
