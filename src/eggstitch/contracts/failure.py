"""Failure type for engine contract violations.

All violations raise the same exception type so that the worker can treat
an engine bug in one device as an assembly fault and keep the batch going.
"""

from enum import Enum


class FailurePolicy(str, Enum):
    """What the worker does when a device fails.

    FAIL_DEVICE (default): mark the device failed and advance the chain.
    FAIL_FAST: mark the device failed and hand the request straight to
    packaging, dropping its remaining devices.
    """
    FAIL_DEVICE = "fail_device"
    FAIL_FAST = "fail_fast"


class ContractViolation(RuntimeError):
    """Raised when an engine invariant is broken.

    This indicates a bug in the engine, not bad device data. Bad data is an
    ``InputDataError``; an unrecognized sensor combination is not an error
    at all (it selects the dynamic layout).
    """
    pass
