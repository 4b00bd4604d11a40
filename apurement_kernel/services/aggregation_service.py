"""
SaAggregator -- recomputes the materialized consumption aggregate of a SA.

Responsibility:
    Sums the SA's allocation quantities, writes the rounded total to
    ``quantity_apured`` and derives ``status`` from it.  This is the only
    code path allowed to write those two columns (ORM listener in
    db/immutability.py).

Architecture position:
    Kernel > Services -- imperative shell.  Called by AllocationLedger in
    the same transaction as the allocation insert.

Invariants enforced:
    - quantity_apured == round3(sum(allocations.quantity)) after every call.
    - Idempotent: a second call with no new allocation changes nothing.

Failure modes:
    - SaNotFoundError if the SA does not exist.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from apurement_kernel.db.immutability import aggregation_write
from apurement_kernel.db.types import QUANTITY_TOLERANCE, round_quantity, to_decimal
from apurement_kernel.domain.status import derive_status
from apurement_kernel.exceptions import SaNotFoundError
from apurement_kernel.logging_config import get_logger
from apurement_kernel.models.allocation import Allocation
from apurement_kernel.models.sa_declaration import SaDeclaration
from apurement_kernel.services.base import BaseService

logger = get_logger("services.aggregation")


class SaAggregator(BaseService[SaDeclaration]):
    """
    Single writer of SaDeclaration.quantity_apured and status.

    Non-goals:
        - Does NOT lock the SA row; the caller (AllocationLedger) already
          holds the lock for the whole check-insert-aggregate sequence.
    """

    def __init__(self, session: Session, tolerance: Decimal = QUANTITY_TOLERANCE):
        super().__init__(session)
        self._tolerance = tolerance

    def total_allocated(self, sa_id: UUID) -> Decimal:
        """Rounded sum of allocation quantities for a SA (0 when none)."""
        total = self.session.execute(
            select(func.coalesce(func.sum(Allocation.quantity), 0)).where(
                Allocation.sa_id == sa_id
            )
        ).scalar_one()
        return round_quantity(to_decimal(total))

    def recalculate(self, sa_id: UUID) -> SaDeclaration:
        """
        Recompute and persist quantity_apured and status for a SA.

        Returns:
            The refreshed SaDeclaration.
        """
        sa = self.session.get(SaDeclaration, sa_id)
        if sa is None:
            raise SaNotFoundError(str(sa_id))

        total = self.total_allocated(sa_id)
        status = derive_status(total, to_decimal(sa.quantity_initial), self._tolerance)

        with aggregation_write(self.session):
            sa.quantity_apured = total
            sa.status = status.value
            self.session.flush()

        logger.debug(
            "sa_aggregate_recalculated",
            extra={
                "sa_id": str(sa_id),
                "quantity_apured": str(total),
                "status": status.value,
            },
        )
        return sa
