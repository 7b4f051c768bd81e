"""Core batch stitching execution logic.

This module contains the actual batch runner, separated from argument parsing.
Scripts are thin wrappers; this is the real implementation.
"""

import sys
import json
import argparse
import logging
import importlib.util
from pathlib import Path
from typing import Optional, Dict, Any, List, Sequence

from eggstitch.metadata import JsonMetadataStore
from eggstitch.pipeline.orchestrator import PipelineOrchestrator, install_fatal_handler
from eggstitch.schemas import resolve_config, ParamConfig, UserConfig, CLIConfig, UnitOfWork, PackageUnit

__all__ = ['load_user_config_dict', 'run_stitch_pipeline', 'main']

logger = logging.getLogger(__name__)


def load_user_config_dict(config_path: str) -> dict:
    """Load user config dict from Python file.

    Returns the raw dict before Pydantic validation.

    Parameters
    ----------
    config_path : str
        Path to user config Python file containing CONFIG dict.

    Returns
    -------
    dict
        Raw user configuration dictionary.

    Raises
    ------
    FileNotFoundError
        If config file does not exist.
    ValueError
        If no CONFIG dict found in file.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    spec = importlib.util.spec_from_file_location("config_module", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    for name in dir(module):
        if name.startswith('CONFIG'):
            obj = getattr(module, name)
            if isinstance(obj, dict):
                return obj

    raise ValueError(f"No CONFIG dict found in {path}")


def run_stitch_pipeline(
    save_paths: Sequence[str],
    user_config_path: Optional[str] = None,
    cli_args: Optional[Dict[str, Any]] = None,
    unit_options: Optional[Dict[str, Any]] = None,
    metadata_path: Optional[str] = None,
    timeout: Optional[float] = None,
    verbose: bool = False,
) -> List[PackageUnit]:
    """Stitch every device directory of one or more request directories.

    This is the core batch execution function. It:
    1. Loads and resolves configuration (Param < User < CLI)
    2. Builds one unit of work per request directory
    3. Starts the worker pool and waits for every request to finish
    4. Stops the pool

    Parameters
    ----------
    save_paths : sequence of str
        Request directories, each holding one sub-directory per device.
    user_config_path : str, optional
        Path to user config file (Python file with CONFIG dict).
    cli_args : dict, optional
        CLI argument overrides. Keys: base_dir, workers, window_policy,
        no_tracker, log_level. All optional.
    unit_options : dict, optional
        Unit-of-work options applied to every request (stitch_format,
        compensated, instantaneous, utc_offset, email, ...).
    metadata_path : str, optional
        JSON metadata file with ``users`` and ``devices`` arrays.
    timeout : float, optional
        Per-request timeout in seconds.
    verbose : bool, optional
        If True, enable DEBUG logging and print full resolved config.

    Returns
    -------
    list of PackageUnit
        One packaging unit per request, in input order.

    Examples
    --------
    Stitch one request to Influx JSON::

        run_stitch_pipeline(["/data/req1"], unit_options={"stitch_format": "influx"})
    """
    user_cfg_dict = load_user_config_dict(user_config_path) if user_config_path else {}
    user_cfg = UserConfig.model_validate(user_cfg_dict)

    cli_args = dict(cli_args or {})
    if verbose and "log_level" not in cli_args:
        cli_args["log_level"] = "DEBUG"
    cli_dict = {k: v for k, v in cli_args.items() if v is not None}
    cli_cfg = CLIConfig.model_validate(cli_dict) if cli_dict else CLIConfig()

    config = resolve_config(ParamConfig(), user_cfg, cli_cfg)

    print(f"\n{'='*60}")
    print("Egg Telemetry Stitching")
    print('='*60)
    print(f"Config:   {user_config_path or '(defaults)'}")
    print(f"Requests: {len(save_paths)}")
    print(f"Workers:  {config.workers.pool_size}")
    print(f"Logs:     {config.base_dir or '(console only)'}")
    print('='*60)

    if verbose:
        print("\nFull Internal Configuration:")
        print(json.dumps(config.model_dump(), indent=2))
        print('='*60)

    units = [UnitOfWork.from_directory(path, **(unit_options or {})) for path in save_paths]
    metadata_store = JsonMetadataStore(metadata_path) if metadata_path else None

    orchestrator = PipelineOrchestrator(config, metadata_store=metadata_store)
    orchestrator.start()
    uninstall = install_fatal_handler(orchestrator)

    packages = []
    try:
        for unit in units:
            orchestrator.submit(unit)
        for unit in units:
            packages.append(orchestrator.wait_for_package(unit.save_path, timeout=timeout))
    except KeyboardInterrupt:
        logger.info("Shutdown signal received (Ctrl+C)")
    finally:
        orchestrator.stop()
        uninstall()

    return packages


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stitch Egg telemetry into per-device CSV or Influx JSON files")
    parser.add_argument("save_paths", nargs="+", help="Request directories (one sub-directory per device)")
    parser.add_argument("-c", "--config", help="Path to user config file (CONFIG dict)")
    parser.add_argument("--format", dest="stitch_format", choices=["csv", "influx"], default="csv",
                        help="Output format")
    parser.add_argument("--compensated", action="store_true", help="Use compensated values")
    parser.add_argument("--instantaneous", action="store_true", help="Use instantaneous values")
    parser.add_argument("--utc-offset", type=float, default=0,
                        help="CSV timestamp offset (hours if |n| < 16, else minutes)")
    parser.add_argument("--email", help="Requesting user (for units and aliases)")
    parser.add_argument("--metadata", help="JSON metadata file with users and devices")
    parser.add_argument("--base-dir", help="Directory for logs and the tracker database")
    parser.add_argument("--workers", type=int, help="Worker pool size (1-15)")
    parser.add_argument("--window-policy", choices=["fixed", "timebase"], help="Record merge window policy")
    parser.add_argument("--no-tracker", action="store_true", help="Disable the stitch tracker")
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    cli_args = {
        "base_dir": args.base_dir,
        "workers": args.workers,
        "window_policy": args.window_policy,
        "no_tracker": args.no_tracker or None,
    }
    unit_options = {
        "stitch_format": args.stitch_format,
        "compensated": args.compensated,
        "instantaneous": args.instantaneous,
        "utc_offset": args.utc_offset,
        "email": args.email,
    }

    try:
        packages = run_stitch_pipeline(
            args.save_paths,
            user_config_path=args.config,
            cli_args=cli_args,
            unit_options=unit_options,
            metadata_path=args.metadata,
            timeout=args.timeout,
            verbose=args.verbose,
        )
    except (FileNotFoundError, ValueError, TimeoutError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    for package in packages:
        print(f"Stitched {len(package.original_serials)} device(s) in {package.save_path}")
    return 0 if len(packages) == len(args.save_paths) else 1


if __name__ == "__main__":
    sys.exit(main())
