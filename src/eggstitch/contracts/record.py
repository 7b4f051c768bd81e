"""Record stage contract.

Every record flushed for a device has the width fixed by its layout.
"""

from eggstitch.contracts.base import require
from eggstitch.engine.assembler import OutputRecord
from eggstitch.engine.layout import FieldLayout


def assert_record_width(record: OutputRecord, layout: FieldLayout) -> None:
    """Enforce record width contract.

    Raises
    ------
    ContractViolation
        If the record width differs from the layout width.
    """
    require(
        len(record.values) == layout.width,
        f"Record contract violated: record has {len(record.values)} slots, "
        f"layout {layout.model} has {layout.width}"
    )
