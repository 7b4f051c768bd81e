"""eggstitch User Configuration.

This is the user-facing configuration file. Modify settings here to customize
the pipeline behavior. Advanced settings are in eggstitch/schemas/param.py

Usage:
    python scripts/run_stitch_pipeline.py /data/req1 -c scripts/user_config.py
    eggstitch-run /data/req1 -c scripts/user_config.py --format influx
"""

CONFIG = {
    # ========================================================================
    # OPERATIONAL
    # ========================================================================
    "BASE_DIR": "/tmp/eggstitch",   # Logs and tracker database go here
    "LOG_LEVEL": "INFO",
    "WORKERS": 3,                   # Parallel requests (1-15)
    "MAX_QUEUE_SIZE": 100,          # Requests in flight before submit() waits
    "TRACKER_ENABLED": True,

    # ========================================================================
    # RECORD WINDOWING
    # ========================================================================
    "MERGE_TOLERANCE_MS": 6000,     # Messages closer than this share a row
    "WINDOW_POLICY": "fixed",       # "fixed" or "timebase" (half the timebase)

    # ========================================================================
    # TIMEBASE
    # ========================================================================
    "MAX_TIMEBASE_MS": 600000,      # Longer estimates are implausible
    "DEFAULT_TIMEBASE_MS": 60000,   # Used in their place

    # ========================================================================
    # OUTPUT
    # ========================================================================
    "TEMPERATURE_UNITS": "degC",    # Used when the user has no preference
    # Note: sentinel, timestamp format and Influx measurement name are
    # configured in eggstitch/schemas/param.py
}
