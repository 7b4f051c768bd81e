"""
Directory helpers for the stitching pipeline.

Input layout (one request):
- {save_path}/{device_dir}/1.json, 2.json, ...  message arrays per device
- {save_path}/{name}.csv | {name}.json          stitched output per device

Run layout (operational, under base_dir):
- logs/     pipeline log files
- tracker/  SQLite stitch tracker
"""

import os
from pathlib import Path
from datetime import datetime, timezone
from typing import Dict, List, Union

PathLike = Union[str, Path]


def setup_output_directories(base_dir: PathLike) -> Dict[str, Path]:
    """
    Create the run directory structure.

    Parameters
    ----------
    base_dir : str or Path
        Base directory for logs and the tracker database.

    Returns
    -------
    dict
        Dictionary with paths: 'base', 'logs', 'tracker'
    """
    base_dir = Path(base_dir).expanduser().resolve()

    directories = {
        "base": base_dir,
        "logs": base_dir / "logs",
        "tracker": base_dir / "tracker",
    }

    for path in directories.values():
        path.mkdir(parents=True, exist_ok=True)

    return directories


def discover_device_dirs(save_path: PathLike) -> List[Path]:
    """
    Device sub-directories of a request, sorted by name.

    Hidden directories are skipped.
    """
    root = Path(save_path)
    return sorted(
        (entry for entry in root.iterdir() if entry.is_dir() and not entry.name.startswith('.')),
        key=lambda entry: entry.name,
    )


def list_message_files(device_dir: PathLike) -> List[Path]:
    """
    Message files of one device in processing order.

    Files are ordered by modification time; ties are broken by name so the
    order is deterministic when files share an mtime.

    Returns
    -------
    list of Path
        Empty when the directory does not exist.
    """
    device_dir = Path(device_dir)
    if not device_dir.is_dir():
        return []
    files = [entry for entry in device_dir.iterdir()
             if entry.is_file() and not entry.name.startswith('.')]
    return sorted(files, key=lambda entry: (os.stat(entry).st_mtime_ns, entry.name))


def get_output_path(save_path: PathLike, name: str, extension: str = "csv") -> Path:
    """
    Stitched output file for one device.

    Example
    -------
    >>> get_output_path('/data/req1', 'egg_AB123', 'csv')
    PosixPath('/data/req1/egg_AB123.csv')
    """
    extension = extension[1:] if extension.startswith('.') else extension
    return Path(save_path) / f"{name}.{extension}"


def get_log_path(output_dirs: Dict[str, Path], name: str = "stitch_pipeline") -> Path:
    """
    Log file path inside the run's logs directory.

    Returns
    -------
    Path
        logs/{name}.log
    """
    log_dir = Path(output_dirs["logs"])
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"{name}.log"


def get_run_id() -> str:
    """UTC timestamp used to tag a batch run."""
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
