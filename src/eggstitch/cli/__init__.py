"""Command-line interface modules for eggstitch batch runs.

This package contains core execution logic, making scripts/ optional and deletable.
"""

from eggstitch.cli.run_stitch import run_stitch_pipeline

__all__ = ['run_stitch_pipeline']
