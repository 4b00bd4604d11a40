"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable structures returned by the selectors and accepted by the
    declaration services.  Selectors never hand ORM instances to callers.

Architecture position:
    Kernel > Domain -- pure, zero I/O, no ORM imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class LinkedSaRequest:
    """One allocation requested while creating an EA (EA-side quantity)."""

    sa_id: UUID
    quantity: Decimal | int | float | str


@dataclass(frozen=True)
class EaRef:
    """EA summary embedded in a SA's allocation listing."""

    id: UUID
    ea_number: str
    export_date: date
    customer_name: str
    total_quantity: Decimal
    quantity_unit: str


@dataclass(frozen=True)
class SaRef:
    """SA summary embedded in an EA's allocation listing."""

    id: UUID
    sa_number: str
    supplier_name: str | None
    due_date: date
    quantity_initial: Decimal
    quantity_apured: Decimal
    quantity_unit: str
    description: str | None
    family_id: UUID | None
    family_label: str | None


@dataclass(frozen=True)
class SaAllocationView:
    """Allocation as listed for a SA (quantity is SA-side consumption)."""

    id: UUID
    seq: int
    ea: EaRef
    quantity: Decimal
    created_at: datetime


@dataclass(frozen=True)
class EaAllocationView:
    """
    Allocation as listed for an EA.

    ``scrap_quantity`` is the waste implied by the SA-side quantity under the
    SA family coefficient (display only).  ``family_mismatch`` is True when
    the EA's display family differs from the SA's family; this is an allowed
    state, surfaced rather than rejected.
    """

    id: UUID
    seq: int
    sa: SaRef
    quantity: Decimal
    scrap_quantity: Decimal
    family_mismatch: bool
    created_at: datetime


@dataclass(frozen=True)
class EligibleSa:
    """One row of the eligibility projection (advisory)."""

    id: UUID
    sa_number: str
    supplier_name: str | None
    due_date: date
    quantity_initial: Decimal
    quantity_apured: Decimal
    sa_remaining: Decimal
    ea_remaining: Decimal
    coefficient_used: Decimal
    scrap_percent: Decimal
    quantity_unit: str


@dataclass(frozen=True)
class SaForEa:
    """Pre-fill data for creating an EA against one SA."""

    id: UUID
    sa_number: str
    supplier_name: str | None
    family_id: UUID | None
    family_label: str | None
    quantity_initial: Decimal
    quantity_unit: str
    quantity_apured: Decimal
    sa_remaining: Decimal
    max_export_quantity: Decimal
    description: str | None


@dataclass(frozen=True)
class SaView:
    """Read model of a SA declaration."""

    id: UUID
    sa_number: str
    regime_code: str | None
    declaration_date: date
    due_date: date
    status: str
    quantity_initial: Decimal
    quantity_unit: str
    scrap_quantity_ton: Decimal | None
    quantity_apured: Decimal
    invoice_amount: Decimal | None
    currency_code: str | None
    fx_rate: Decimal | None
    amount_ds: Decimal | None
    supplier_name: str | None
    family_id: UUID | None
    family_label: str | None
    scrap_percent: Decimal | None
    description: str | None
    created_by_id: UUID
    created_at: datetime | None


@dataclass(frozen=True)
class EaView:
    """Read model of an EA declaration."""

    id: UUID
    ea_number: str
    regime_code: str
    export_date: date
    status: str
    customer_name: str
    destination_country: str | None
    product_ref: str | None
    product_desc: str | None
    total_quantity: Decimal
    quantity_unit: str
    family_id: UUID | None
    scrap_percent: Decimal | None
    scrap_quantity: Decimal | None
    created_by_id: UUID
    created_at: datetime | None
