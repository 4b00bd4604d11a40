"""
AllocationLedger -- records the consumption of SA raw material by an EA.

Responsibility:
    Validates an allocation request, converts the EA-side quantity into the
    SA-side quantity with the SA family's scrap coefficient, enforces the SA
    quota, appends the allocation row and refreshes the SA aggregate -- all
    inside the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Invoked by ApurementOrchestrator
    and EaDeclarationService.  Pure arithmetic lives in domain/coefficient.py.

Invariants enforced:
    - Quota: for every SA, sum(allocation.quantity) <= quantity_initial
      + QUANTITY_TOLERANCE after every successful create.
    - Isolation: the SA row is locked (SELECT ... FOR UPDATE) before the
      current total is read, so concurrent creates against the same SA are
      serialized and never jointly overshoot the quota.
    - No write on any error path: every precondition is checked before the
      first INSERT or UPDATE.

Failure modes (checked in this order, first failure wins):
    1. SaNotFoundError
    2. EaNotFoundError
    3. InvalidQuantityError -- quantity missing, non-numeric, NaN/Inf, <= 0
    4. InvalidScrapPercentError -- SA family scrap_percent >= 100
    5. QuotaExceededError -- new total would exceed quantity_initial

Audit relevance:
    Every created allocation is logged as ``allocation_created`` with its
    SA-side quantity and the quota figures; rejected quota checks are logged
    as ``allocation_quota_exceeded``.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from apurement_kernel.db.types import QUANTITY_TOLERANCE, as_uuid, parse_quantity, to_decimal
from apurement_kernel.domain.clock import Clock, SystemClock
from apurement_kernel.domain.coefficient import consumed_on_sa, scrap_rate
from apurement_kernel.exceptions import (
    EaNotFoundError,
    QuotaExceededError,
    SaNotFoundError,
)
from apurement_kernel.logging_config import get_logger
from apurement_kernel.models.allocation import Allocation
from apurement_kernel.models.ea_declaration import EaDeclaration
from apurement_kernel.models.sa_declaration import SaDeclaration
from apurement_kernel.services.aggregation_service import SaAggregator
from apurement_kernel.services.base import BaseService
from apurement_kernel.services.sequence_service import SequenceService

logger = get_logger("services.allocation_ledger")


class AllocationLedger(BaseService[Allocation]):
    """
    Append-only ledger of SA/EA allocations.

    Contract:
        ``create_allocation`` takes an EA-side quantity and persists the
        SA-side quantity ``round3(q / (1 - t))`` where ``t`` is the SA
        family's scrap fraction (0 without a family).

    Guarantees:
        - Flush-only: never commits or rolls back.
        - The SA row lock is held from the first read until the caller's
          transaction ends.

    Non-goals:
        - No reversal or deletion of allocations.
        - Does NOT reject a mismatch between the EA's display family and
          the SA family; it logs ``allocation_family_mismatch``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
        aggregator: SaAggregator | None = None,
        tolerance: Decimal = QUANTITY_TOLERANCE,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._tolerance = tolerance
        self._sequence_service = sequence_service or SequenceService(session)
        self._aggregator = aggregator or SaAggregator(session, tolerance=tolerance)

    def _lock_sa(self, sa_id: UUID | None) -> SaDeclaration | None:
        if sa_id is None:
            return None
        return self.session.execute(
            select(SaDeclaration)
            .where(SaDeclaration.id == sa_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def create_allocation(
        self,
        sa_id: UUID | str,
        ea_id: UUID | str,
        quantity: Decimal | int | float | str,
        actor_id: UUID,
    ) -> Allocation:
        """
        Allocate an EA-side quantity against a SA quota.

        Args:
            sa_id: SA declaration to consume.
            ea_id: EA declaration consuming it.
            quantity: EA-side (finished product) quantity, > 0.
            actor_id: Acting user, recorded as created_by_id.

        Returns:
            The persisted Allocation (flushed, not committed).
        """
        sa = self._lock_sa(as_uuid(sa_id))
        if sa is None:
            raise SaNotFoundError(str(sa_id))

        ea_uuid = as_uuid(ea_id)
        ea = self.session.get(EaDeclaration, ea_uuid) if ea_uuid else None
        if ea is None:
            raise EaNotFoundError(str(ea_id))

        ea_quantity = parse_quantity(quantity)

        family = sa.family
        t = scrap_rate(
            family.scrap_percent if family is not None else None,
            str(family.id) if family is not None else None,
        )
        consumed = consumed_on_sa(ea_quantity, t)

        current = self._aggregator.total_allocated(sa.id)
        new_total = current + consumed
        quantity_initial = to_decimal(sa.quantity_initial)

        if new_total > quantity_initial + self._tolerance:
            logger.warning(
                "allocation_quota_exceeded",
                extra={
                    "sa_id": str(sa.id),
                    "ea_id": str(ea.id),
                    "requested": str(consumed),
                    "current_allocated": str(current),
                    "new_total": str(new_total),
                    "quantity_initial": str(quantity_initial),
                },
            )
            raise QuotaExceededError(
                sa_id=str(sa.id),
                new_total=new_total,
                quantity_initial=quantity_initial,
                current_allocated=current,
                requested=consumed,
            )

        if ea.family_id is not None and ea.family_id != sa.family_id:
            logger.warning(
                "allocation_family_mismatch",
                extra={
                    "sa_id": str(sa.id),
                    "ea_id": str(ea.id),
                    "sa_family_id": str(sa.family_id) if sa.family_id else None,
                    "ea_family_id": str(ea.family_id),
                },
            )

        seq = self._sequence_service.next_value(SequenceService.ALLOCATION)
        allocation = Allocation(
            sa_id=sa.id,
            ea_id=ea.id,
            quantity=consumed,
            seq=seq,
            created_at=self._clock.now(),
            created_by_id=actor_id,
        )
        self.session.add(allocation)
        self.session.flush()

        self._aggregator.recalculate(sa.id)

        logger.info(
            "allocation_created",
            extra={
                "allocation_id": str(allocation.id),
                "sa_id": str(sa.id),
                "ea_id": str(ea.id),
                "seq": seq,
                "ea_quantity": str(ea_quantity),
                "scrap_rate": str(t),
                "quantity": str(consumed),
                "new_total": str(new_total),
                "quantity_initial": str(quantity_initial),
                "status": sa.status,
            },
        )
        return allocation
