"""Build the stitcher's frozen runtime config.

Expert defaults (``ParamConfig``) are overlaid with the operator's CONFIG
file (``UserConfig``) and then with command-line flags (``CLIConfig``).
Workers, the stitcher and the orchestrator only ever see the result.
"""

from typing import Optional, Type, TypeVar, Union

from pydantic import BaseModel

from eggstitch.schemas.cli import CLIConfig
from eggstitch.schemas.internal import InternalConfig
from eggstitch.schemas.param import ParamConfig
from eggstitch.schemas.user import UserConfig

ModelT = TypeVar("ModelT", bound=BaseModel)


def deep_merge(base: dict, *overrides: dict) -> dict:
    """Overlay override dicts on ``base``, left to right.

    Sections present on both sides (``assembler``, ``workers``, ...) merge
    key by key; any other value is replaced.

    >>> deep_merge({"workers": {"pool_size": 3, "max_queue_size": 100}},
    ...            {"workers": {"pool_size": 1}})
    {'workers': {'pool_size': 1, 'max_queue_size': 100}}
    """
    result = base.copy()
    for override in overrides:
        for key, value in override.items():
            if isinstance(result.get(key), dict) and isinstance(value, dict):
                result[key] = deep_merge(result[key], value)
            else:
                result[key] = value
    return result


def _as_model(value: Union[None, dict, ModelT], model: Type[ModelT]) -> ModelT:
    if isinstance(value, model):
        return value
    return model.model_validate(value or {})


def resolve_config(
    param_cfg: Union[dict, ParamConfig],
    user_cfg: Optional[Union[dict, UserConfig]] = None,
    cli_cfg: Optional[Union[dict, CLIConfig]] = None,
) -> InternalConfig:
    """Resolve the runtime config for a stitch run.

    Parameters
    ----------
    param_cfg : dict or ParamConfig
        Expert defaults; every runtime field has a value here.
    user_cfg : dict or UserConfig, optional
        The CONFIG dict of a user config file (``MERGE_TOLERANCE_MS``,
        ``WORKERS``, ``MAX_QUEUE_SIZE``, ``BASE_DIR``, ...).
    cli_cfg : dict or CLIConfig, optional
        Flags from ``eggstitch-run``; these win over everything else.

    Returns
    -------
    InternalConfig
        Frozen config shared by the orchestrator and every worker.

    Raises
    ------
    ValidationError
        If a layer has an invalid value, e.g. ``WORKERS=0`` or an unknown
        window policy.

    Examples
    --------
    >>> from eggstitch.schemas import resolve_config, ParamConfig
    >>> config = resolve_config(ParamConfig(), {"MERGE_TOLERANCE_MS": 4000}, {"workers": 5})
    >>> config.assembler.merge_tolerance_ms, config.workers.pool_size
    (4000.0, 5)
    """
    param = _as_model(param_cfg, ParamConfig)
    user = _as_model(user_cfg, UserConfig)
    cli = _as_model(cli_cfg, CLIConfig)

    merged = deep_merge(
        param.model_dump(),
        user.to_internal_overrides(),
        cli.to_internal_overrides(),
    )
    return InternalConfig.model_validate(merged)
