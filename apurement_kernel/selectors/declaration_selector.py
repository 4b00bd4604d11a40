"""
Module: apurement_kernel.selectors.declaration_selector
Responsibility: Read models of SA and EA declarations.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from apurement_kernel.db.types import as_uuid, to_decimal
from apurement_kernel.domain.dtos import EaView, SaView
from apurement_kernel.exceptions import EaNotFoundError, SaNotFoundError
from apurement_kernel.models.ea_declaration import EaDeclaration
from apurement_kernel.models.sa_declaration import SaDeclaration
from apurement_kernel.selectors.base import BaseSelector


def _optional_decimal(value):
    return to_decimal(value) if value is not None else None


def sa_view(sa: SaDeclaration) -> SaView:
    family = sa.family
    return SaView(
        id=sa.id,
        sa_number=sa.sa_number,
        regime_code=sa.regime_code,
        declaration_date=sa.declaration_date,
        due_date=sa.due_date,
        status=sa.status,
        quantity_initial=to_decimal(sa.quantity_initial),
        quantity_unit=sa.quantity_unit,
        scrap_quantity_ton=_optional_decimal(sa.scrap_quantity_ton),
        quantity_apured=to_decimal(sa.quantity_apured),
        invoice_amount=_optional_decimal(sa.invoice_amount),
        currency_code=sa.currency_code,
        fx_rate=_optional_decimal(sa.fx_rate),
        amount_ds=_optional_decimal(sa.amount_ds),
        supplier_name=sa.supplier_name,
        family_id=sa.family_id,
        family_label=family.label if family is not None else None,
        scrap_percent=_optional_decimal(family.scrap_percent) if family is not None else None,
        description=sa.description,
        created_by_id=sa.created_by_id,
        created_at=sa.created_at,
    )


def ea_view(ea: EaDeclaration) -> EaView:
    return EaView(
        id=ea.id,
        ea_number=ea.ea_number,
        regime_code=ea.regime_code,
        export_date=ea.export_date,
        status=ea.status,
        customer_name=ea.customer_name,
        destination_country=ea.destination_country,
        product_ref=ea.product_ref,
        product_desc=ea.product_desc,
        total_quantity=to_decimal(ea.total_quantity),
        quantity_unit=ea.quantity_unit,
        family_id=ea.family_id,
        scrap_percent=_optional_decimal(ea.scrap_percent),
        scrap_quantity=_optional_decimal(ea.scrap_quantity),
        created_by_id=ea.created_by_id,
        created_at=ea.created_at,
    )


class DeclarationSelector(BaseSelector[SaDeclaration]):
    """Read-only SA and EA listings."""

    def list_sa(self) -> list[SaView]:
        """All SAs, latest declaration date first, then by number."""
        rows = self.session.execute(
            select(SaDeclaration)
            .options(selectinload(SaDeclaration.family))
            .order_by(SaDeclaration.declaration_date.desc(), SaDeclaration.sa_number)
        ).scalars().all()
        return [sa_view(sa) for sa in rows]

    def get_sa(self, sa_id: UUID | str) -> SaView:
        sa_uuid = as_uuid(sa_id)
        sa = self.session.get(SaDeclaration, sa_uuid) if sa_uuid else None
        if sa is None:
            raise SaNotFoundError(str(sa_id))
        return sa_view(sa)

    def list_ea(self) -> list[EaView]:
        """All EAs, latest export first."""
        rows = self.session.execute(
            select(EaDeclaration).order_by(
                EaDeclaration.export_date.desc(), EaDeclaration.ea_number
            )
        ).scalars().all()
        return [ea_view(ea) for ea in rows]

    def get_ea(self, ea_id: UUID | str) -> EaView:
        ea_uuid = as_uuid(ea_id)
        ea = self.session.get(EaDeclaration, ea_uuid) if ea_uuid else None
        if ea is None:
            raise EaNotFoundError(str(ea_id))
        return ea_view(ea)
