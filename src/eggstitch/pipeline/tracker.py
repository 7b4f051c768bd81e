"""SQLite-based device stitch state tracker.

Records each device of a stitch request as it moves through the pipeline
(pending, processing, completed / no_data / skipped / failed), with the
resolved model, timebase and message progress. Lets an operator see which
devices of a batch failed and retry them.
"""

import sqlite3
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Dict
import threading

__all__ = ['StitchTracker', 'TRACKER_STATUSES']

logger = logging.getLogger(__name__)

TRACKER_STATUSES = ('pending', 'processing', 'completed', 'no_data', 'skipped', 'failed')
_FINAL_STATUSES = ('completed', 'no_data', 'skipped')


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StitchTracker:
    """Tracks per-device stitch state and progress.

    **Database Schema:**

    SQLite table `device_stitch`, keyed by (save_path, serial):

    - serial: device directory name (e.g., egg_AB123)
    - save_path: request directory the device belongs to
    - status: pending, processing, completed, no_data, skipped, failed
    - model, timebase_ms: classification results
    - messages_total, messages_processed, rows_written: progress counters
    - output_path, error_message
    - started_at, finished_at, created_at, updated_at

    **Thread Safety:**

    All methods are thread-safe via internal locking; every worker of the
    pool shares one tracker.

    **Typical Usage:**

        with StitchTracker(db_path) as tracker:
            tracker.register_device("egg_AB123", "/data/req1")
            tracker.mark_started("egg_AB123", "/data/req1")
            ...
            tracker.mark_complete("egg_AB123", "/data/req1", rows_written=42)
            print(tracker.get_statistics())
    """

    def __init__(self, db_path: Path | str):
        """Initialize tracker.

        Parameters
        ----------
        db_path : Path or str
            Path to SQLite database file. Created if doesn't exist.
            Typically: {base_dir}/tracker/stitch_tracker.db
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = None
        self._lock = threading.Lock()

        self._init_database()
        logger.info("Stitch tracker initialized: %s", self.db_path)

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self):
        """Create database schema if it doesn't exist."""
        conn = self._get_connection()

        with self._lock:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS device_stitch (
                    serial TEXT NOT NULL,
                    save_path TEXT NOT NULL,

                    status TEXT DEFAULT 'pending',
                    model TEXT,
                    timebase_ms REAL,

                    messages_total INTEGER DEFAULT 0,
                    messages_processed INTEGER DEFAULT 0,
                    rows_written INTEGER DEFAULT 0,

                    output_path TEXT,
                    error_message TEXT,

                    started_at TEXT,
                    finished_at TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,

                    PRIMARY KEY (save_path, serial)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_stitch_status ON device_stitch(status)")
            conn.commit()

    def register_device(self, serial: str, save_path: str) -> bool:
        """Register a device for tracking.

        Returns
        -------
        bool
            True if newly registered, False if already in the database.
        """
        conn = self._get_connection()

        with self._lock:
            cursor = conn.execute(
                "SELECT serial FROM device_stitch WHERE save_path = ? AND serial = ?",
                (str(save_path), serial)
            )
            if cursor.fetchone():
                return False

            conn.execute("""
                INSERT INTO device_stitch (serial, save_path, status, updated_at)
                VALUES (?, ?, 'pending', ?)
            """, (serial, str(save_path), _now()))
            conn.commit()

            logger.debug("Registered device: %s", serial)
            return True

    def mark_started(self, serial: str, save_path: str, output_path: Optional[Path] = None):
        """Mark a device as processing; registers it first when needed."""
        self.register_device(serial, save_path)
        conn = self._get_connection()

        with self._lock:
            conn.execute("""
                UPDATE device_stitch
                SET status = 'processing',
                    output_path = ?,
                    error_message = NULL,
                    messages_processed = 0,
                    rows_written = 0,
                    started_at = ?,
                    finished_at = NULL,
                    updated_at = ?
                WHERE save_path = ? AND serial = ?
            """, (str(output_path) if output_path else None, _now(), _now(), str(save_path), serial))
            conn.commit()

    def update_progress(self, serial: str, save_path: str,
                        messages_processed: Optional[int] = None,
                        messages_total: Optional[int] = None,
                        model: Optional[str] = None,
                        timebase_ms: Optional[float] = None):
        """Update progress counters and classification results.

        Only the arguments that are given are written.
        """
        updates = {
            'messages_processed': messages_processed,
            'messages_total': messages_total,
            'model': model,
            'timebase_ms': timebase_ms,
        }
        updates = {column: value for column, value in updates.items() if value is not None}
        if not updates:
            return

        assignments = ", ".join(f"{column} = ?" for column in updates)
        conn = self._get_connection()

        with self._lock:
            conn.execute(f"""
                UPDATE device_stitch
                SET {assignments}, updated_at = ?
                WHERE save_path = ? AND serial = ?
            """, (*updates.values(), _now(), str(save_path), serial))
            conn.commit()

    def mark_complete(self, serial: str, save_path: str, status: str = 'completed',
                      rows_written: Optional[int] = None,
                      messages_processed: Optional[int] = None):
        """Mark a device as finished.

        Parameters
        ----------
        status : str
            One of 'completed', 'no_data', 'skipped'.

        Raises
        ------
        ValueError
            If status is not a final success status.
        """
        if status not in _FINAL_STATUSES:
            raise ValueError(f"Invalid status: {status}. Must be one of {list(_FINAL_STATUSES)}")

        self.register_device(serial, save_path)
        conn = self._get_connection()

        with self._lock:
            conn.execute("""
                UPDATE device_stitch
                SET status = ?,
                    rows_written = COALESCE(?, rows_written),
                    messages_processed = COALESCE(?, messages_processed),
                    finished_at = ?,
                    updated_at = ?
                WHERE save_path = ? AND serial = ?
            """, (status, rows_written, messages_processed, _now(), _now(), str(save_path), serial))
            conn.commit()

            logger.debug("Marked %s %s", serial, status)

    def mark_failed(self, serial: str, save_path: str, error: str):
        """Mark a device as failed with an error message."""
        self.register_device(serial, save_path)
        conn = self._get_connection()

        with self._lock:
            conn.execute("""
                UPDATE device_stitch
                SET status = 'failed',
                    error_message = ?,
                    finished_at = ?,
                    updated_at = ?
                WHERE save_path = ? AND serial = ?
            """, (error, _now(), _now(), str(save_path), serial))
            conn.commit()

            logger.debug("Marked %s failed: %s", serial, error)

    def get_device_status(self, serial: str, save_path: str) -> Optional[Dict]:
        """Complete record for one device, or None when not registered."""
        conn = self._get_connection()

        with self._lock:
            cursor = conn.execute(
                "SELECT * FROM device_stitch WHERE save_path = ? AND serial = ?",
                (str(save_path), serial)
            )
            row = cursor.fetchone()
            return dict(row) if row else None

    def get_statistics(self, save_path: Optional[str] = None) -> Dict:
        """Summary statistics, optionally for one request.

        Returns
        -------
        dict
            `total`, one count per status and `rows_written` (sum).
        """
        conn = self._get_connection()

        where_clause = "WHERE save_path = ?" if save_path else ""
        params = (str(save_path),) if save_path else ()
        status_counts = ",\n".join(
            f"SUM(CASE WHEN status = '{status}' THEN 1 ELSE 0 END) as {status}"
            for status in TRACKER_STATUSES
        )

        with self._lock:
            cursor = conn.execute(f"""
                SELECT
                    COUNT(*) as total,
                    {status_counts},
                    SUM(rows_written) as rows_written
                FROM device_stitch
                {where_clause}
            """, params)
            row = cursor.fetchone()

        stats = dict(row) if row else {}
        # SUM over an empty table is NULL
        return {key: (value or 0) for key, value in stats.items()}

    def reset_failed(self, save_path: Optional[str] = None) -> int:
        """Reset failed devices to pending for retry.

        Returns
        -------
        int
            Number of devices reset.
        """
        conn = self._get_connection()

        with self._lock:
            if save_path:
                cursor = conn.execute("""
                    UPDATE device_stitch
                    SET status = 'pending', error_message = NULL, updated_at = ?
                    WHERE status = 'failed' AND save_path = ?
                """, (_now(), str(save_path)))
            else:
                cursor = conn.execute("""
                    UPDATE device_stitch
                    SET status = 'pending', error_message = NULL, updated_at = ?
                    WHERE status = 'failed'
                """, (_now(),))
            conn.commit()

        logger.info("Reset %d failed device(s) to pending", cursor.rowcount)
        return cursor.rowcount

    def close(self):
        """Close database connection. Safe to call multiple times."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
