"""
Declaration services -- create, update and delete SA/EA declarations and
scrap families.

Responsibility:
    Input validation and normalization for declarations (numbers, positive
    quantities, family resolution, derived display amounts) and the
    mutation guard: a declaration referenced by any allocation can be
    neither updated nor deleted.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only; the caller owns the
    transaction.

Invariants enforced:
    - SA/EA numbers normalized to PREFIX + 6 digits.
    - quantity_initial and total_quantity are > 0.
    - SA quantity_apured starts at 0 and status at OPEN; both are written
      afterwards only by SaAggregator.
    - EA creation with linked allocations is atomic: the EA row and every
      allocation of the call are rolled back together on any failure.

Failure modes:
    - InvalidDeclarationNumberError, InvalidQuantityError,
      InvalidScrapPercentError (VALIDATION).
    - FamilyNotFoundError, SaNotFoundError, EaNotFoundError (NOT_FOUND).
    - DeclarationLockedError when updating/deleting a referenced declaration.
    - Any AllocationLedger failure while creating linked allocations.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from apurement_kernel.db.types import as_uuid, parse_quantity, round_quantity, to_decimal
from apurement_kernel.domain.clock import Clock, SystemClock
from apurement_kernel.domain.coefficient import (
    HUNDRED,
    scrap_allowance,
    scrap_quantity,
    scrap_rate,
)
from apurement_kernel.domain.dtos import LinkedSaRequest
from apurement_kernel.domain.numbering import normalize_ea_number, normalize_sa_number
from apurement_kernel.domain.status import SaStatus
from apurement_kernel.exceptions import (
    DeclarationLockedError,
    EaNotFoundError,
    FamilyNotFoundError,
    InvalidScrapPercentError,
    SaNotFoundError,
)
from apurement_kernel.logging_config import get_logger
from apurement_kernel.models.ea_declaration import EaDeclaration
from apurement_kernel.models.family import ScrapFamily
from apurement_kernel.models.sa_declaration import SaDeclaration
from apurement_kernel.selectors.allocation_selector import AllocationSelector
from apurement_kernel.services.allocation_ledger import AllocationLedger
from apurement_kernel.services.base import BaseService

logger = get_logger("services.declarations")

DEFAULT_SA_REGIME_CODE = "532"
DEFAULT_EA_REGIME_CODE = "362"
DEFAULT_QUANTITY_UNIT = "TONNE"
EA_DEFAULT_STATUS = "SUBMITTED"


def _optional_amount(value) -> Decimal | None:
    if value is None:
        return None
    try:
        result = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    return result if result.is_finite() else None


def _parse_percent(value, family_id: str | None = None) -> Decimal:
    """Parse a display scrap percentage; must be a finite number >= 0."""
    try:
        percent = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidScrapPercentError(value, family_id) from None
    if not percent.is_finite() or percent < 0:
        raise InvalidScrapPercentError(percent, family_id)
    return percent


def _linked_request(item) -> LinkedSaRequest:
    if isinstance(item, LinkedSaRequest):
        return item
    if isinstance(item, Mapping):
        return LinkedSaRequest(sa_id=item["sa_id"], quantity=item["quantity"])
    sa_id, quantity = item
    return LinkedSaRequest(sa_id=sa_id, quantity=quantity)


class FamilyService(BaseService[ScrapFamily]):
    """Reference data for product families and their scrap percentage."""

    def list_families(self) -> list[ScrapFamily]:
        """All families ordered by label."""
        return list(
            self.session.execute(
                select(ScrapFamily).order_by(ScrapFamily.label)
            ).scalars()
        )

    def get(self, family_id: UUID | str) -> ScrapFamily:
        family_uuid = as_uuid(family_id)
        family = self.session.get(ScrapFamily, family_uuid) if family_uuid else None
        if family is None:
            raise FamilyNotFoundError(str(family_id))
        return family

    def get_by_label(self, label: str) -> ScrapFamily | None:
        return self.session.execute(
            select(ScrapFamily).where(ScrapFamily.label == label)
        ).scalar_one_or_none()

    def create(
        self,
        label: str,
        scrap_percent: Decimal | int | str,
        is_active: bool = True,
    ) -> ScrapFamily:
        """
        Create a family.

        Raises:
            InvalidScrapPercentError: If the percent is negative or >= 100.
        """
        percent = _parse_percent(scrap_percent)
        scrap_rate(percent)

        family = ScrapFamily(label=label, scrap_percent=percent, is_active=is_active)
        self.session.add(family)
        self.session.flush()

        logger.info(
            "family_created",
            extra={"family_id": str(family.id), "label": label, "scrap_percent": str(percent)},
        )
        return family

    def seed_from_config(self, families: Iterable) -> list[ScrapFamily]:
        """
        Insert or update families by label from configuration.

        Idempotent: running it twice with the same definitions leaves the
        table unchanged.

        Args:
            families: Objects with ``label``, ``scrap_percent`` and
                ``is_active`` attributes (apurement_config.FamilyDefinition).
        """
        seeded = []
        for definition in families:
            existing = self.get_by_label(definition.label)
            if existing is None:
                seeded.append(
                    self.create(
                        definition.label,
                        definition.scrap_percent,
                        definition.is_active,
                    )
                )
                continue

            percent = _parse_percent(definition.scrap_percent)
            scrap_rate(percent)
            if to_decimal(existing.scrap_percent) != percent or existing.is_active != definition.is_active:
                existing.scrap_percent = percent
                existing.is_active = definition.is_active
                logger.info(
                    "family_updated",
                    extra={"family_id": str(existing.id), "label": existing.label},
                )
            seeded.append(existing)

        self.session.flush()
        return seeded


class SaDeclarationService(BaseService[SaDeclaration]):
    """
    Write side of SA declarations.

    Non-goals:
        - quantity_initial, quantity_apured and status are not updatable here.
    """

    def __init__(
        self,
        session: Session,
        regime_code: str = DEFAULT_SA_REGIME_CODE,
        quantity_unit: str = DEFAULT_QUANTITY_UNIT,
    ):
        super().__init__(session)
        self._regime_code = regime_code
        self._quantity_unit = quantity_unit
        self._allocations = AllocationSelector(session)

    def get(self, sa_id: UUID | str) -> SaDeclaration:
        sa_uuid = as_uuid(sa_id)
        sa = self.session.get(SaDeclaration, sa_uuid) if sa_uuid else None
        if sa is None:
            raise SaNotFoundError(str(sa_id))
        return sa

    def create(
        self,
        sa_number: str,
        declaration_date: date,
        due_date: date,
        quantity_initial: Decimal | int | float | str,
        actor_id: UUID,
        regime_code: str | None = None,
        family_id: UUID | str | None = None,
        supplier_name: str | None = None,
        description: str | None = None,
        invoice_amount: Decimal | int | float | str | None = None,
        currency_code: str | None = None,
        fx_rate: Decimal | int | float | str | None = None,
    ) -> SaDeclaration:
        """
        Declare a SA quota.

        Derived on creation:
            - scrap_quantity_ton = round3(quantity_initial * p / 100) with a family.
            - amount_ds = round3(invoice_amount * fx_rate) when both are given.
        """
        number = normalize_sa_number(sa_number)
        quantity = round_quantity(parse_quantity(quantity_initial, "quantity_initial"))

        family = None
        scrap_ton = None
        if family_id is not None:
            family = FamilyService(self.session).get(family_id)
            scrap_ton = scrap_allowance(quantity, to_decimal(family.scrap_percent))

        invoice = _optional_amount(invoice_amount)
        rate = _optional_amount(fx_rate)
        amount_ds = round_quantity(invoice * rate) if invoice is not None and rate is not None else None

        sa = SaDeclaration(
            sa_number=number,
            regime_code=regime_code or self._regime_code,
            declaration_date=declaration_date,
            due_date=due_date,
            status=SaStatus.OPEN.value,
            quantity_initial=quantity,
            quantity_unit=self._quantity_unit,
            scrap_quantity_ton=scrap_ton,
            quantity_apured=Decimal("0"),
            invoice_amount=invoice,
            currency_code=currency_code,
            fx_rate=rate,
            amount_ds=amount_ds,
            supplier_name=supplier_name,
            family_id=family.id if family is not None else None,
            description=description,
            created_by_id=actor_id,
        )
        self.session.add(sa)
        self.session.flush()

        logger.info(
            "sa_created",
            extra={
                "sa_id": str(sa.id),
                "sa_number": number,
                "quantity_initial": str(quantity),
                "family_id": str(sa.family_id) if sa.family_id else None,
            },
        )
        return sa

    def _guard(self, sa: SaDeclaration, operation: str) -> None:
        if self._allocations.has_allocations_for_sa(sa.id):
            logger.warning(
                "declaration_locked",
                extra={"declaration_type": "SA", "sa_id": str(sa.id), "operation": operation},
            )
            raise DeclarationLockedError("SA", str(sa.id), operation)

    def update(
        self,
        sa_id: UUID | str,
        actor_id: UUID,
        sa_number: str | None = None,
        declaration_date: date | None = None,
        due_date: date | None = None,
        description: str | None = None,
    ) -> SaDeclaration:
        """Update the editable header fields of an unreferenced SA."""
        sa = self.get(sa_id)
        self._guard(sa, "update")

        if sa_number is not None:
            sa.sa_number = normalize_sa_number(sa_number)
        if declaration_date is not None:
            sa.declaration_date = declaration_date
        if due_date is not None:
            sa.due_date = due_date
        if description is not None:
            sa.description = description
        sa.updated_by_id = actor_id
        self.session.flush()

        logger.info("sa_updated", extra={"sa_id": str(sa.id)})
        return sa

    def delete(self, sa_id: UUID | str) -> None:
        sa = self.get(sa_id)
        self._guard(sa, "delete")
        self.session.delete(sa)
        self.session.flush()
        logger.info("sa_deleted", extra={"sa_id": str(sa_id)})


class EaDeclarationService(BaseService[EaDeclaration]):
    """
    Write side of EA declarations.

    The EA's family_id, scrap_percent and scrap_quantity are display
    estimates.  They are resolved on creation from, in order: the explicit
    family, the explicit percent, the family of the first linked SA.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: AllocationLedger | None = None,
        regime_code: str = DEFAULT_EA_REGIME_CODE,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._ledger = ledger or AllocationLedger(session, clock=self._clock)
        self._regime_code = regime_code
        self._allocations = AllocationSelector(session)

    def get(self, ea_id: UUID | str) -> EaDeclaration:
        ea_uuid = as_uuid(ea_id)
        ea = self.session.get(EaDeclaration, ea_uuid) if ea_uuid else None
        if ea is None:
            raise EaNotFoundError(str(ea_id))
        return ea

    def _resolve_display_family(
        self,
        family_id,
        scrap_percent,
        linked: list[LinkedSaRequest],
    ) -> tuple[UUID | None, Decimal | None]:
        if family_id is not None:
            family = FamilyService(self.session).get(family_id)
            return family.id, to_decimal(family.scrap_percent)
        if scrap_percent is not None:
            return None, _parse_percent(scrap_percent)
        if linked:
            sa_uuid = as_uuid(linked[0].sa_id)
            sa = self.session.get(SaDeclaration, sa_uuid) if sa_uuid else None
            if sa is not None and sa.family is not None:
                return sa.family.id, to_decimal(sa.family.scrap_percent)
        return None, None

    def create(
        self,
        ea_number: str,
        export_date: date,
        customer_name: str,
        total_quantity: Decimal | int | float | str,
        quantity_unit: str,
        actor_id: UUID,
        regime_code: str | None = None,
        destination_country: str | None = None,
        product_ref: str | None = None,
        product_desc: str | None = None,
        family_id: UUID | str | None = None,
        scrap_percent: Decimal | int | str | None = None,
        linked_sas: Iterable = (),
    ) -> EaDeclaration:
        """
        Declare an export, optionally allocating it against SAs at once.

        Args:
            linked_sas: ``LinkedSaRequest`` items, ``(sa_id, quantity)``
                pairs or ``{"sa_id", "quantity"}`` mappings.  Each quantity
                is EA-side and goes through AllocationLedger.

        Returns:
            The flushed EaDeclaration.
        """
        total = round_quantity(parse_quantity(total_quantity, "total_quantity"))
        number = normalize_ea_number(ea_number)
        linked = [_linked_request(item) for item in linked_sas]

        display_family_id, percent = self._resolve_display_family(
            family_id, scrap_percent, linked
        )
        display_scrap = None
        if percent is not None and 0 < percent < HUNDRED:
            display_scrap = scrap_quantity(total, percent / HUNDRED)

        with self.session.begin_nested():
            ea = EaDeclaration(
                ea_number=number,
                regime_code=regime_code or self._regime_code,
                export_date=export_date,
                status=EA_DEFAULT_STATUS,
                customer_name=customer_name,
                destination_country=destination_country,
                product_ref=product_ref,
                product_desc=product_desc,
                total_quantity=total,
                quantity_unit=quantity_unit,
                family_id=display_family_id,
                scrap_percent=percent,
                scrap_quantity=display_scrap,
                created_by_id=actor_id,
            )
            self.session.add(ea)
            self.session.flush()

            for request in linked:
                self._ledger.create_allocation(request.sa_id, ea.id, request.quantity, actor_id)

        logger.info(
            "ea_created",
            extra={
                "ea_id": str(ea.id),
                "ea_number": number,
                "total_quantity": str(total),
                "linked_allocations": len(linked),
            },
        )
        return ea

    def _guard(self, ea: EaDeclaration, operation: str) -> None:
        if self._allocations.has_allocations_for_ea(ea.id):
            logger.warning(
                "declaration_locked",
                extra={"declaration_type": "EA", "ea_id": str(ea.id), "operation": operation},
            )
            raise DeclarationLockedError("EA", str(ea.id), operation)

    def update(
        self,
        ea_id: UUID | str,
        actor_id: UUID,
        ea_number: str | None = None,
        export_date: date | None = None,
        customer_name: str | None = None,
        destination_country: str | None = None,
        product_ref: str | None = None,
        product_desc: str | None = None,
        total_quantity: Decimal | int | float | str | None = None,
        quantity_unit: str | None = None,
        regime_code: str | None = None,
    ) -> EaDeclaration:
        """Update an EA that no allocation references yet."""
        ea = self.get(ea_id)
        self._guard(ea, "update")

        if ea_number is not None:
            ea.ea_number = normalize_ea_number(ea_number)
        if export_date is not None:
            ea.export_date = export_date
        if customer_name is not None:
            ea.customer_name = customer_name
        if destination_country is not None:
            ea.destination_country = destination_country
        if product_ref is not None:
            ea.product_ref = product_ref
        if product_desc is not None:
            ea.product_desc = product_desc
        if total_quantity is not None:
            ea.total_quantity = round_quantity(parse_quantity(total_quantity, "total_quantity"))
        if quantity_unit is not None:
            ea.quantity_unit = quantity_unit
        if regime_code is not None:
            ea.regime_code = regime_code
        ea.updated_by_id = actor_id
        self.session.flush()

        logger.info("ea_updated", extra={"ea_id": str(ea.id)})
        return ea

    def delete(self, ea_id: UUID | str) -> None:
        ea = self.get(ea_id)
        self._guard(ea, "delete")
        self.session.delete(ea)
        self.session.flush()
        logger.info("ea_deleted", extra={"ea_id": str(ea_id)})
