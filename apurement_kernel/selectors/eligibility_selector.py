"""
Module: apurement_kernel.selectors.eligibility_selector
Responsibility: Advisory projection of the SAs that can still be allocated
    against, with the EA-side quantity each could still absorb, and the
    pre-fill data for creating an EA against one SA.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only OPEN and PARTIALLY_APURED SAs are listed, ordered by due_date
      (earliest first), then sa_number.
    - The projection uses the coefficient ``1 + t``; the ledger uses
      ``1 / (1 - t)``.  The projected ea_remaining can therefore slightly
      exceed what AllocationLedger accepts.  The ledger is authoritative.

Failure modes:
    - SaNotFoundError from sa_for_ea() on an unknown SA.
    - InvalidScrapPercentError from sa_for_ea() when the family percent is
      >= 100.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from apurement_kernel.db.types import ZERO, as_uuid, round_quantity, to_decimal
from apurement_kernel.domain.coefficient import (
    HUNDRED,
    ea_remaining,
    eligibility_coefficient,
    max_export_quantity,
    scrap_rate,
)
from apurement_kernel.domain.dtos import EligibleSa, SaForEa
from apurement_kernel.domain.status import ALLOCATABLE_STATUSES
from apurement_kernel.exceptions import SaNotFoundError
from apurement_kernel.models.sa_declaration import SaDeclaration
from apurement_kernel.selectors.base import BaseSelector


def _sa_remaining(sa: SaDeclaration):
    apured = round_quantity(to_decimal(sa.quantity_apured))
    remaining = max(to_decimal(sa.quantity_initial) - apured, ZERO)
    return apured, round_quantity(remaining)


class EligibilitySelector(BaseSelector[SaDeclaration]):
    """Read-only eligibility and pre-fill projections over SA declarations."""

    def eligible_for_allocation(self) -> list[EligibleSa]:
        """SAs still open for allocation, earliest due date first."""
        rows = self.session.execute(
            select(SaDeclaration)
            .options(selectinload(SaDeclaration.family))
            .where(SaDeclaration.status.in_([s.value for s in ALLOCATABLE_STATUSES]))
            .order_by(SaDeclaration.due_date, SaDeclaration.sa_number)
        ).scalars().all()

        result = []
        for sa in rows:
            apured, sa_remaining = _sa_remaining(sa)
            percent = to_decimal(sa.scrap_percent)
            # Advisory figure: a bad family percent must not hide the SA
            t = percent / HUNDRED
            result.append(
                EligibleSa(
                    id=sa.id,
                    sa_number=sa.sa_number,
                    supplier_name=sa.supplier_name,
                    due_date=sa.due_date,
                    quantity_initial=to_decimal(sa.quantity_initial),
                    quantity_apured=apured,
                    sa_remaining=sa_remaining,
                    ea_remaining=ea_remaining(sa_remaining, t),
                    coefficient_used=eligibility_coefficient(t),
                    scrap_percent=percent,
                    quantity_unit=sa.quantity_unit,
                )
            )
        return result

    def sa_for_ea(self, sa_id: UUID | str) -> SaForEa:
        """
        Pre-fill data for an EA against one SA.

        ``max_export_quantity`` is the EA-side quantity that would consume
        exactly the SA's remaining quota: ``round3(sa_remaining * (1 - t))``.
        """
        sa_uuid = as_uuid(sa_id)
        sa = self.session.get(SaDeclaration, sa_uuid) if sa_uuid else None
        if sa is None:
            raise SaNotFoundError(str(sa_id))

        family = sa.family
        t = scrap_rate(
            family.scrap_percent if family is not None else None,
            str(family.id) if family is not None else None,
        )
        apured, sa_remaining = _sa_remaining(sa)

        return SaForEa(
            id=sa.id,
            sa_number=sa.sa_number,
            supplier_name=sa.supplier_name,
            family_id=sa.family_id,
            family_label=family.label if family is not None else None,
            quantity_initial=to_decimal(sa.quantity_initial),
            quantity_unit=sa.quantity_unit,
            quantity_apured=apured,
            sa_remaining=sa_remaining,
            max_export_quantity=max_export_quantity(sa_remaining, t),
            description=sa.description,
        )
