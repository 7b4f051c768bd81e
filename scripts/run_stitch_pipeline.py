#!/usr/bin/env python3
"""``eggstitch`` batch runner.

Usage:
    python scripts/run_stitch_pipeline.py /data/req1
    python scripts/run_stitch_pipeline.py /data/req1 -c scripts/user_config.py --format influx
    python scripts/run_stitch_pipeline.py /data/req1 /data/req2 --workers 5 --base-dir /tmp/stitch

Note: User config in scripts/user_config.py, expert defaults in eggstitch.schemas.param
"""

import sys

from eggstitch.cli.run_stitch import main


if __name__ == "__main__":
    sys.exit(main())
