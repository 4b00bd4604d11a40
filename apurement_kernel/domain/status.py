"""
Status -- SA apurement status derivation.

Pure function of (consumed total, initial quota).  The aggregation
procedure is the only caller that persists its result.
"""

from decimal import Decimal
from enum import Enum

from apurement_kernel.db.types import QUANTITY_TOLERANCE, ZERO


class SaStatus(str, Enum):
    """Apurement status of a SA declaration.

    Contract: Derived, never set by hand.  As allocations only accumulate,
    the status only moves OPEN -> PARTIALLY_APURED -> FULLY_APURED.
    """

    OPEN = "OPEN"
    PARTIALLY_APURED = "PARTIALLY_APURED"
    FULLY_APURED = "FULLY_APURED"


# Statuses that still accept allocations in the eligibility projection
ALLOCATABLE_STATUSES = (SaStatus.OPEN, SaStatus.PARTIALLY_APURED)


def derive_status(
    total_allocated: Decimal,
    quantity_initial: Decimal,
    tolerance: Decimal = QUANTITY_TOLERANCE,
) -> SaStatus:
    """
    Derive the SA status from its consumed total.

    - total <= 0                          -> OPEN
    - total + tolerance < quantity_initial -> PARTIALLY_APURED
    - otherwise                           -> FULLY_APURED
    """
    if total_allocated <= ZERO:
        return SaStatus.OPEN
    if total_allocated + tolerance < quantity_initial:
        return SaStatus.PARTIALLY_APURED
    return SaStatus.FULLY_APURED
