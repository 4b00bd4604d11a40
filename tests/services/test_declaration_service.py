"""
Tests for the declaration services.

Covers:
- SA/EA creation: number normalization, validation, derived amounts
- EA display family resolution
- Atomic EA creation with linked allocations
- Update/delete guard on declarations referenced by allocations
- Family reference data and configuration seeding
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from apurement_config.schema import FamilyDefinition
from apurement_kernel.domain.dtos import LinkedSaRequest
from apurement_kernel.domain.status import SaStatus
from apurement_kernel.exceptions import (
    DeclarationLockedError,
    FamilyNotFoundError,
    InvalidDeclarationNumberError,
    InvalidQuantityError,
    InvalidScrapPercentError,
    QuotaExceededError,
    SaNotFoundError,
)
from apurement_kernel.models.allocation import Allocation
from apurement_kernel.models.ea_declaration import EaDeclaration
from apurement_kernel.models.sa_declaration import SaDeclaration
from apurement_kernel.selectors.declaration_selector import DeclarationSelector


class TestSaCreation:

    def test_defaults(self, sa_service, test_actor_id):
        sa = sa_service.create(
            "sa250777", date(2025, 3, 1), date(2025, 9, 1), "100", test_actor_id,
            supplier_name="Acier du Nord",
        )

        assert sa.sa_number == "SA250777"
        assert sa.regime_code == "532"
        assert sa.quantity_unit == "TONNE"
        assert sa.quantity_initial == Decimal("100.000")
        assert sa.quantity_apured == Decimal("0")
        assert sa.status == SaStatus.OPEN.value
        assert sa.family_id is None
        assert sa.scrap_quantity_ton is None
        assert sa.created_by_id == test_actor_id

    def test_family_scrap_allowance(self, create_family, create_sa):
        family = create_family(scrap_percent="5")

        sa = create_sa(quantity_initial="100", family=family)

        assert sa.family_id == family.id
        assert sa.scrap_quantity_ton == Decimal("5.000")
        assert sa.scrap_percent == Decimal("5")

    def test_amount_ds(self, create_sa):
        sa = create_sa(invoice_amount="1000.50", currency_code="EUR", fx_rate="10.8")

        assert sa.amount_ds == Decimal("10805.400")
        assert sa.currency_code == "EUR"

    def test_amount_ds_needs_both_figures(self, create_sa):
        assert create_sa(invoice_amount="1000").amount_ds is None
        assert create_sa(fx_rate="10.8").amount_ds is None

    def test_unknown_family(self, sa_service, test_actor_id):
        with pytest.raises(FamilyNotFoundError):
            sa_service.create(
                "SA250889", date(2025, 3, 1), date(2025, 9, 1), "10", test_actor_id,
                family_id=uuid4(),
            )

    @pytest.mark.parametrize("quantity", ["0", "-3", "abc", None, "1e30"])
    def test_invalid_initial_quantity(self, create_sa, quantity):
        with pytest.raises(InvalidQuantityError) as exc_info:
            create_sa(quantity_initial=quantity)
        assert exc_info.value.field == "quantity_initial"

    def test_invalid_number(self, create_sa):
        with pytest.raises(InvalidDeclarationNumberError):
            create_sa(sa_number="SA12")

    def test_duplicate_number_rejected(self, session, create_sa):
        create_sa(sa_number="SA250888")

        with pytest.raises(IntegrityError):
            create_sa(sa_number="250888")
        session.rollback()


class TestSaGuard:

    def test_update_unreferenced(self, sa_service, create_sa, test_actor_id):
        sa = create_sa()
        editor = uuid4()

        updated = sa_service.update(
            sa.id, editor, due_date=date(2026, 1, 31), description="Billettes"
        )

        assert updated.due_date == date(2026, 1, 31)
        assert updated.description == "Billettes"
        assert updated.updated_by_id == editor

    def test_update_renumbers(self, sa_service, create_sa, test_actor_id):
        sa = create_sa()
        assert sa_service.update(sa.id, test_actor_id, sa_number="259999").sa_number == "SA259999"

    def test_update_referenced_rejected(self, sa_service, ledger, create_sa, create_ea, test_actor_id):
        sa = create_sa()
        ea = create_ea()
        ledger.create_allocation(sa.id, ea.id, "1", test_actor_id)

        with pytest.raises(DeclarationLockedError) as exc_info:
            sa_service.update(sa.id, test_actor_id, description="changed")

        assert exc_info.value.declaration_type == "SA"
        assert exc_info.value.operation == "update"
        assert exc_info.value.code == "DECLARATION_LOCKED"

    def test_delete_referenced_rejected(self, session, sa_service, ledger, create_sa, create_ea, test_actor_id):
        sa = create_sa()
        ea = create_ea()
        ledger.create_allocation(sa.id, ea.id, "1", test_actor_id)

        with pytest.raises(DeclarationLockedError) as exc_info:
            sa_service.delete(sa.id)

        assert exc_info.value.operation == "delete"
        assert session.get(SaDeclaration, sa.id) is not None

    def test_delete_unreferenced(self, session, sa_service, create_sa):
        sa = create_sa()
        sa_id = sa.id

        sa_service.delete(sa_id)

        with pytest.raises(SaNotFoundError):
            sa_service.get(sa_id)

    def test_guard_logged(self, sa_service, ledger, captured_logs, create_sa, create_ea, test_actor_id):
        sa = create_sa()
        ea = create_ea()
        ledger.create_allocation(sa.id, ea.id, "1", test_actor_id)

        with pytest.raises(DeclarationLockedError):
            sa_service.delete(sa.id)

        assert any(r["message"] == "declaration_locked" for r in captured_logs())


class TestEaCreation:

    def test_defaults(self, ea_service, test_actor_id):
        ea = ea_service.create(
            "ea250123", date(2025, 2, 1), "ACME Steel", "10", "TONNE", test_actor_id,
            destination_country="FR",
        )

        assert ea.ea_number == "EA250123"
        assert ea.regime_code == "362"
        assert ea.status == "SUBMITTED"
        assert ea.total_quantity == Decimal("10.000")
        assert ea.destination_country == "FR"
        assert ea.family_id is None
        assert ea.scrap_percent is None
        assert ea.scrap_quantity is None

    def test_total_checked_before_number(self, create_ea):
        with pytest.raises(InvalidQuantityError) as exc_info:
            create_ea(total_quantity="0", ea_number="bad")
        assert exc_info.value.field == "total_quantity"

    def test_invalid_number(self, create_ea):
        with pytest.raises(InvalidDeclarationNumberError) as exc_info:
            create_ea(ea_number="EA-1")
        assert exc_info.value.prefix == "EA"

    def test_display_family_from_explicit_family(self, create_family, create_ea):
        family = create_family(scrap_percent="8")

        ea = create_ea(total_quantity="92", family=family)

        assert ea.family_id == family.id
        assert ea.scrap_percent == Decimal("8")
        # 92 * 0.08 / 0.92
        assert ea.scrap_quantity == Decimal("8.000")

    def test_display_family_from_explicit_percent(self, create_ea):
        ea = create_ea(total_quantity="95", scrap_percent="5")

        assert ea.family_id is None
        assert ea.scrap_percent == Decimal("5")
        assert ea.scrap_quantity == Decimal("5.000")

    def test_display_family_from_first_linked_sa(self, create_family, create_sa, create_ea):
        family = create_family(scrap_percent="5")
        other = create_family(scrap_percent="8")
        sa = create_sa(family=family)
        sa_other = create_sa(family=other)

        ea = create_ea(total_quantity="20", linked_sas=[(sa.id, "10"), (sa_other.id, "10")])

        assert ea.family_id == family.id
        assert ea.scrap_percent == Decimal("5")

    def test_zero_percent_has_no_scrap_quantity(self, create_ea):
        ea = create_ea(scrap_percent="0")
        assert ea.scrap_percent == Decimal("0")
        assert ea.scrap_quantity is None

    def test_invalid_display_percent(self, create_ea):
        with pytest.raises(InvalidScrapPercentError):
            create_ea(scrap_percent="-2")

    def test_unknown_display_family(self, ea_service, test_actor_id):
        with pytest.raises(FamilyNotFoundError):
            ea_service.create(
                "EA250124", date(2025, 2, 1), "ACME", "1", "TONNE", test_actor_id,
                family_id=str(uuid4()),
            )


class TestEaLinkedAllocations:

    def test_linked_request_forms(self, session, create_family, create_sa, create_ea):
        family = create_family(scrap_percent="5")
        sa_a = create_sa(family=family)
        sa_b = create_sa()
        sa_c = create_sa()

        ea = create_ea(
            total_quantity="30",
            linked_sas=[
                (sa_a.id, "10"),
                {"sa_id": str(sa_b.id), "quantity": "10"},
                LinkedSaRequest(sa_id=sa_c.id, quantity=Decimal("10")),
            ],
        )

        rows = session.execute(
            select(Allocation).where(Allocation.ea_id == ea.id).order_by(Allocation.seq)
        ).scalars().all()
        assert [(r.sa_id, r.quantity) for r in rows] == [
            (sa_a.id, Decimal("10.526")),
            (sa_b.id, Decimal("10.000")),
            (sa_c.id, Decimal("10.000")),
        ]
        assert sa_a.status == SaStatus.PARTIALLY_APURED.value

    def test_failure_rolls_back_ea_and_earlier_allocations(
        self, session, ea_service, create_sa, test_actor_id
    ):
        sa_ok = create_sa(quantity_initial="100")
        sa_small = create_sa(quantity_initial="10")

        with pytest.raises(QuotaExceededError):
            ea_service.create(
                "EA250555", date(2025, 2, 1), "ACME", "70", "TONNE", test_actor_id,
                linked_sas=[(sa_ok.id, "50"), (sa_small.id, "20")],
            )

        assert session.execute(
            select(EaDeclaration).where(EaDeclaration.ea_number == "EA250555")
        ).scalar_one_or_none() is None
        assert session.execute(select(func.count()).select_from(Allocation)).scalar_one() == 0

        view = DeclarationSelector(session).get_sa(sa_ok.id)
        assert view.quantity_apured == Decimal("0")
        assert view.status == SaStatus.OPEN.value

    def test_unknown_linked_sa_rolls_back(self, session, ea_service, test_actor_id):
        with pytest.raises(SaNotFoundError):
            ea_service.create(
                "EA250556", date(2025, 2, 1), "ACME", "1", "TONNE", test_actor_id,
                linked_sas=[(uuid4(), "1")],
            )

        assert session.execute(
            select(EaDeclaration).where(EaDeclaration.ea_number == "EA250556")
        ).scalar_one_or_none() is None


class TestEaGuard:

    def test_update_unreferenced(self, ea_service, create_ea, test_actor_id):
        ea = create_ea(total_quantity="10")

        updated = ea_service.update(
            ea.id, test_actor_id, total_quantity="12", customer_name="Client B", product_ref="FM-8"
        )

        assert updated.total_quantity == Decimal("12.000")
        assert updated.customer_name == "Client B"
        assert updated.product_ref == "FM-8"

    def test_update_invalid_total(self, ea_service, create_ea, test_actor_id):
        ea = create_ea()
        with pytest.raises(InvalidQuantityError):
            ea_service.update(ea.id, test_actor_id, total_quantity="-1")

    def test_update_referenced_rejected(self, ea_service, create_sa, create_ea, test_actor_id):
        sa = create_sa()
        ea = create_ea(linked_sas=[(sa.id, "1")])

        with pytest.raises(DeclarationLockedError) as exc_info:
            ea_service.update(ea.id, test_actor_id, customer_name="Other")

        assert exc_info.value.declaration_type == "EA"

    def test_delete_referenced_rejected(self, ea_service, create_sa, create_ea):
        sa = create_sa()
        ea = create_ea(linked_sas=[(sa.id, "1")])

        with pytest.raises(DeclarationLockedError):
            ea_service.delete(ea.id)

    def test_delete_unreferenced(self, session, ea_service, create_ea):
        ea = create_ea()
        ea_id = ea.id

        ea_service.delete(ea_id)

        assert session.get(EaDeclaration, ea_id) is None


class TestFamilyService:

    def test_list_ordered_by_label(self, family_service):
        family_service.create("Zinc", "2")
        family_service.create("Acier", "5")

        labels = [f.label for f in family_service.list_families()]

        assert labels.index("Acier") < labels.index("Zinc")

    @pytest.mark.parametrize("percent", ["100", "120", "-1", "abc"])
    def test_create_rejects_unusable_percent(self, family_service, percent):
        with pytest.raises(InvalidScrapPercentError):
            family_service.create("Invalide", percent)

    def test_get_unknown(self, family_service):
        with pytest.raises(FamilyNotFoundError):
            family_service.get(uuid4())

    def test_seed_from_config_is_idempotent(self, family_service, captured_logs):
        definitions = [
            FamilyDefinition(label="Rond test", scrap_percent=Decimal("5.00")),
            FamilyDefinition(label="Carré test", scrap_percent=Decimal("8.00")),
        ]

        first = family_service.seed_from_config(definitions)
        second = family_service.seed_from_config(definitions)

        assert [f.id for f in first] == [f.id for f in second]
        assert sum(1 for r in captured_logs() if r["message"] == "family_created") == 2
        assert not any(r["message"] == "family_updated" for r in captured_logs())

    def test_seed_updates_changed_percent(self, family_service):
        family_service.seed_from_config([FamilyDefinition(label="Fil test", scrap_percent=Decimal("6"))])

        updated = family_service.seed_from_config(
            [FamilyDefinition(label="Fil test", scrap_percent=Decimal("7"), is_active=False)]
        )

        assert updated[0].scrap_percent == Decimal("7")
        assert updated[0].is_active is False
