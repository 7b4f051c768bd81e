"""Engine contracts: fail-fast enforcement of stage invariants.

Contracts fail immediately and loudly when a stage does not produce the
invariants it promised.

Key principle:
- Pydantic validates config and unit-of-work correctness
- Contracts validate engine correctness
- The stitcher handles bad device data
"""

from eggstitch.contracts.failure import ContractViolation, FailurePolicy
from eggstitch.contracts.base import require
from eggstitch.contracts.layout import assert_layout_consistent
from eggstitch.contracts.record import assert_record_width

__all__ = [
    "ContractViolation",
    "FailurePolicy",
    "require",
    "assert_layout_consistent",
    "assert_record_width",
]
