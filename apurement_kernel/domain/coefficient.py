"""
Coefficient -- scrap-coefficient conversion arithmetic.

Responsibility:
    Converts between EA-side (finished product) and SA-side (raw material)
    quantities using a product family's scrap percentage ``p``, with
    ``t = p / 100`` the fraction of raw material lost to processing waste.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Formulas:
    consumed_on_sa(q, t)       = round3(q / (1 - t))        ledger-affecting
    scrap_quantity(q, t)       = round3(q * t / (1 - t))    display only
    scrap_in_consumed(c, t)    = round3(c * t)              display only
    eligibility_coefficient(t) = 1 + t                      eligibility projection
    max_export_quantity(r, t)  = round3(r * (1 - t))        SA-for-EA pre-fill

    ``1 + t`` and ``1 / (1 - t)`` are different approximations of the same
    physical ratio.  They diverge as ``t`` grows (about 0.25 % of the
    quantity at t = 0.05, about 0.6 % at t = 0.08), so an eligibility
    maximum computed with ``1 + t`` can exceed what the ledger accepts.  The
    eligibility figure is advisory; the ledger check is authoritative.

Failure modes:
    - InvalidScrapPercentError when p >= 100 (t >= 1) or p < 0.
"""

from decimal import Decimal

from apurement_kernel.db.types import ZERO, round_quantity, to_decimal
from apurement_kernel.exceptions import InvalidScrapPercentError

ONE = Decimal("1")
HUNDRED = Decimal("100")


def scrap_rate(
    scrap_percent: Decimal | int | str | None,
    family_id: str | None = None,
) -> Decimal:
    """
    Convert a family scrap percentage into the scrap fraction ``t``.

    An absent family (``None``) means no scrap: ``t = 0``.

    Raises:
        InvalidScrapPercentError: If the percentage is negative or >= 100.
    """
    if scrap_percent is None:
        return ZERO
    percent = to_decimal(scrap_percent)
    if not percent.is_finite() or percent < ZERO or percent >= HUNDRED:
        raise InvalidScrapPercentError(percent, family_id)
    return percent / HUNDRED


def consumed_on_sa(ea_quantity: Decimal, t: Decimal) -> Decimal:
    """SA raw material consumed to yield ``ea_quantity`` of finished product."""
    return round_quantity(ea_quantity / (ONE - t))


def scrap_quantity(ea_quantity: Decimal, t: Decimal) -> Decimal:
    """Waste implied by producing ``ea_quantity``; never stored in the ledger."""
    return round_quantity(ea_quantity * t / (ONE - t))


def scrap_in_consumed(consumed: Decimal, t: Decimal) -> Decimal:
    """
    Waste contained in a SA-side consumed quantity.

    ``consumed = q / (1 - t)``, so this is ``scrap_quantity(q, t)`` recovered
    from the stored ledger figure.
    """
    return round_quantity(consumed * t)


def eligibility_coefficient(t: Decimal) -> Decimal:
    """Coefficient of the eligibility projection (``1 + t``, see module doc)."""
    return ONE + t


def ea_remaining(sa_remaining: Decimal, t: Decimal) -> Decimal:
    """Advisory EA-side maximum still allocatable, using ``1 + t``."""
    return round_quantity(sa_remaining / eligibility_coefficient(t))


def max_export_quantity(sa_remaining: Decimal, t: Decimal) -> Decimal:
    """EA-side maximum that exactly inverts ``consumed_on_sa``."""
    return round_quantity(sa_remaining * (ONE - t))


def scrap_allowance(quantity_initial: Decimal, scrap_percent: Decimal) -> Decimal:
    """Scrap allowance of a SA in tonnes: ``quantity_initial * p / 100``."""
    return round_quantity(quantity_initial * to_decimal(scrap_percent) / HUNDRED)
