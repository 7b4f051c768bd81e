"""Base contract enforcement utility.

``require()`` is the single enforcement mechanism for all contracts.
"""

from eggstitch.contracts.failure import ContractViolation


def require(condition: bool, message: str) -> None:
    """Enforce an engine contract.

    Called at stage boundaries to verify the preceding stage produced the
    guaranteed invariants. Fail-fast: no recovery, no fallback.

    Parameters
    ----------
    condition : bool
        The invariant that must be true.
    message : str
        Explanation used as the exception message.

    Raises
    ------
    ContractViolation
        If condition is False.

    Examples
    --------
    >>> require(layout.width > 0, "Layout contract: empty layout")
    >>> require(len(record) == layout.width, "Record contract: width mismatch")
    """
    if not condition:
        raise ContractViolation(message)
