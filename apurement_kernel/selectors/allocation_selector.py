"""
Module: apurement_kernel.selectors.allocation_selector
Responsibility: Read-only listings of allocations per SA and per EA, and the
    existence checks used by the mutation guards.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Canonical ordering: every listing is ordered by (created_at, seq).
    - Display values (scrap_quantity, family_mismatch) are computed on read
      and never stored.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.orm import joinedload

from apurement_kernel.db.types import as_uuid, round_quantity, to_decimal
from apurement_kernel.domain.coefficient import scrap_in_consumed, scrap_rate
from apurement_kernel.domain.dtos import EaAllocationView, EaRef, SaAllocationView, SaRef
from apurement_kernel.models.allocation import Allocation
from apurement_kernel.models.ea_declaration import EaDeclaration
from apurement_kernel.models.sa_declaration import SaDeclaration
from apurement_kernel.selectors.base import BaseSelector


def _ea_ref(ea: EaDeclaration) -> EaRef:
    return EaRef(
        id=ea.id,
        ea_number=ea.ea_number,
        export_date=ea.export_date,
        customer_name=ea.customer_name,
        total_quantity=to_decimal(ea.total_quantity),
        quantity_unit=ea.quantity_unit,
    )


def _sa_ref(sa: SaDeclaration) -> SaRef:
    return SaRef(
        id=sa.id,
        sa_number=sa.sa_number,
        supplier_name=sa.supplier_name,
        due_date=sa.due_date,
        quantity_initial=to_decimal(sa.quantity_initial),
        quantity_apured=to_decimal(sa.quantity_apured),
        quantity_unit=sa.quantity_unit,
        description=sa.description,
        family_id=sa.family_id,
        family_label=sa.family.label if sa.family is not None else None,
    )


class AllocationSelector(BaseSelector[Allocation]):
    """Read-only access to the allocation ledger."""

    def list_for_sa(self, sa_id: UUID | str) -> list[SaAllocationView]:
        """Allocations consuming a SA, oldest first."""
        sa_uuid = as_uuid(sa_id)
        if sa_uuid is None:
            return []

        rows = self.session.execute(
            select(Allocation)
            .options(joinedload(Allocation.ea))
            .where(Allocation.sa_id == sa_uuid)
            .order_by(Allocation.created_at, Allocation.seq)
        ).scalars().all()

        return [
            SaAllocationView(
                id=a.id,
                seq=a.seq,
                ea=_ea_ref(a.ea),
                quantity=to_decimal(a.quantity),
                created_at=a.created_at,
            )
            for a in rows
        ]

    def list_for_ea(self, ea_id: UUID | str) -> list[EaAllocationView]:
        """
        Allocations made by an EA, oldest first.

        ``scrap_quantity`` is the waste contained in the stored SA-side
        quantity, ``round3(quantity * t)``, with the SA family fraction.
        """
        ea_uuid = as_uuid(ea_id)
        if ea_uuid is None:
            return []

        ea = self.session.get(EaDeclaration, ea_uuid)
        rows = self.session.execute(
            select(Allocation)
            .options(joinedload(Allocation.sa).joinedload(SaDeclaration.family))
            .where(Allocation.ea_id == ea_uuid)
            .order_by(Allocation.created_at, Allocation.seq)
        ).scalars().all()

        return [self._ea_view(a, ea) for a in rows]

    def first_for_ea(self, ea_id: UUID | str) -> EaAllocationView | None:
        """Oldest allocation of an EA, or None when it has none."""
        views = self.list_for_ea(ea_id)
        return views[0] if views else None

    def _ea_view(self, allocation: Allocation, ea: EaDeclaration | None) -> EaAllocationView:
        sa = allocation.sa
        family = sa.family
        t = scrap_rate(
            family.scrap_percent if family is not None else None,
            str(family.id) if family is not None else None,
        )
        quantity = to_decimal(allocation.quantity)
        mismatch = (
            ea is not None
            and ea.family_id is not None
            and ea.family_id != sa.family_id
        )
        return EaAllocationView(
            id=allocation.id,
            seq=allocation.seq,
            sa=_sa_ref(sa),
            quantity=quantity,
            scrap_quantity=scrap_in_consumed(quantity, t),
            family_mismatch=mismatch,
            created_at=allocation.created_at,
        )

    def has_allocations_for_sa(self, sa_id: UUID) -> bool:
        return bool(
            self.session.execute(
                select(exists().where(Allocation.sa_id == sa_id))
            ).scalar()
        )

    def has_allocations_for_ea(self, ea_id: UUID) -> bool:
        return bool(
            self.session.execute(
                select(exists().where(Allocation.ea_id == ea_id))
            ).scalar()
        )

    def total_allocated_for_sa(self, sa_id: UUID | str) -> Decimal:
        """Rounded sum of the SA's allocation quantities, recomputed from rows."""
        total = self.session.execute(
            select(func.coalesce(func.sum(Allocation.quantity), 0)).where(
                Allocation.sa_id == as_uuid(sa_id)
            )
        ).scalar_one()
        return round_quantity(to_decimal(total))
