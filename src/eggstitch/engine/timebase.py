"""Timebase Estimator.

Estimates a device's nominal sampling period from the timestamps of one
reference topic.
"""

import logging
from typing import Iterable, Optional, Sequence

import numpy as np

__all__ = [
    'DEFAULT_REFERENCE_TOPICS',
    'select_reference_topic',
    'estimate_timebase',
]

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_TOPICS = ('temperature', 'battery', 'humidity')


def select_reference_topic(kinds: Iterable[str],
                           reference_topics: Sequence[str] = DEFAULT_REFERENCE_TOPICS) -> Optional[str]:
    """First reference topic the device reports, in priority order."""
    present = set(kinds)
    for topic in reference_topics:
        if topic in present:
            return topic
    return None


def estimate_timebase(timestamps_ms: Sequence[float],
                      max_timebase_ms: float = 600000.0,
                      default_timebase_ms: float = 60000.0) -> Optional[float]:
    """Mean inter-sample period in milliseconds after trimming outliers.

    Parameters
    ----------
    timestamps_ms : sequence of float
        Reference-topic timestamps in epoch milliseconds, in message order.
    max_timebase_ms : float
        Estimates above this are implausible and replaced by ``default_timebase_ms``.
    default_timebase_ms : float
        Conservative window used when the reference topic is too sparse.

    Returns
    -------
    float or None
        None when fewer than one non-zero delta exists.

    Notes
    -----
    Zero deltas (duplicate timestamps) are dropped before the statistics.
    Deltas outside ``[mean - std, mean + std]`` (population std) are
    discarded and the mean of the rest is the estimate.
    """
    times = np.asarray(timestamps_ms, dtype=float)
    if times.size < 2:
        return None

    deltas = np.diff(times)
    deltas = deltas[deltas != 0]
    if deltas.size == 0:
        return None

    mean = deltas.mean()
    std = deltas.std()
    kept = deltas[(deltas >= mean - std) & (deltas <= mean + std)]
    estimate = float(kept.mean()) if kept.size else float(mean)

    if estimate > max_timebase_ms:
        logger.info("Timebase estimate %.0f ms exceeds %.0f ms, using %.0f ms",
                    estimate, max_timebase_ms, default_timebase_ms)
        return float(default_timebase_ms)
    return estimate
