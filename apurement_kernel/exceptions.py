"""
Typed Exception Hierarchy for the Apurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected allocation must surface a specific, machine-readable reason
to the caller.  Callers catch by TYPE (or by ``category``), never by
parsing message text:

    try:
        ledger.create_allocation(sa_id, ea_id, quantity, actor_id)
    except QuotaExceededError as e:
        show(f"{e.new_total} > {e.quantity_initial}")
    except ApurementKernelError as e:
        api_response(code=e.code, category=e.category)

Each class carries:
  1. ``code``      -- stable identifier, safe to expose through an API.
  2. ``category``  -- one of NOT_FOUND, VALIDATION, CONFLICT, INTEGRITY.
  3. Structured attributes holding the offending values.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApurementKernelError (base)
    |
    +-- NotFoundError                        category NOT_FOUND
    |   +-- SaNotFoundError
    |   +-- EaNotFoundError
    |   +-- FamilyNotFoundError
    |
    +-- ApurementValidationError             category VALIDATION
    |   +-- InvalidQuantityError
    |   +-- InvalidScrapPercentError
    |   +-- QuotaExceededError
    |   +-- DeclarationLockedError
    |   +-- InvalidDeclarationNumberError
    |
    +-- ConcurrencyError                     category CONFLICT
    |   +-- AllocationConflictError
    |
    +-- ImmutabilityError                    category INTEGRITY
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category    | Code                       | When Raised
------------|----------------------------|---------------------------------------
NOT_FOUND   | SA_NOT_FOUND               | SA id doesn't exist
            | EA_NOT_FOUND               | EA id doesn't exist
            | FAMILY_NOT_FOUND           | Family id doesn't exist
------------|----------------------------|---------------------------------------
VALIDATION  | INVALID_QUANTITY           | Quantity not finite, <= 0 or too large
            | INVALID_SCRAP_PERCENT      | Family scrap percent >= 100 (or < 0)
            | QUOTA_EXCEEDED             | Allocation would overshoot the SA quota
            | DECLARATION_LOCKED         | SA/EA edit or delete while allocated
            | INVALID_DECLARATION_NUMBER | SA/EA number not "SA"/"EA" + 6 digits
------------|----------------------------|---------------------------------------
CONFLICT    | ALLOCATION_CONFLICT        | Storage serialization failure persisted
            |                            | after the orchestrator's retries
------------|----------------------------|---------------------------------------
INTEGRITY   | IMMUTABILITY_VIOLATION     | Update/delete of an allocation, or a
            |                            | write to a derived SA field outside
            |                            | the aggregation procedure
"""

from decimal import Decimal


class ApurementKernelError(Exception):
    """
    Base exception for all apurement kernel errors.

    All subclasses carry a ``code`` and a ``category`` class attribute.
    """

    code: str = "APUREMENT_KERNEL_ERROR"
    category: str = "INTERNAL"


# Not-found exceptions


class NotFoundError(ApurementKernelError):
    """Base exception for missing referenced records."""

    code: str = "NOT_FOUND"
    category: str = "NOT_FOUND"


class SaNotFoundError(NotFoundError):
    """SA declaration with given ID was not found."""

    code: str = "SA_NOT_FOUND"

    def __init__(self, sa_id: str):
        self.sa_id = sa_id
        super().__init__(f"SA not found: {sa_id}")


class EaNotFoundError(NotFoundError):
    """EA declaration with given ID was not found."""

    code: str = "EA_NOT_FOUND"

    def __init__(self, ea_id: str):
        self.ea_id = ea_id
        super().__init__(f"EA not found: {ea_id}")


class FamilyNotFoundError(NotFoundError):
    """Scrap family with given ID was not found."""

    code: str = "FAMILY_NOT_FOUND"

    def __init__(self, family_id: str):
        self.family_id = family_id
        super().__init__(f"Scrap family not found: {family_id}")


# Validation exceptions


class ApurementValidationError(ApurementKernelError):
    """Base exception for rejected inputs and rule violations."""

    code: str = "VALIDATION_ERROR"
    category: str = "VALIDATION"


class InvalidQuantityError(ApurementValidationError):
    """Quantity is not a finite number strictly greater than zero."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, value: object, field: str = "quantity"):
        self.value = str(value)
        self.field = field
        super().__init__(f"{field} must be a positive number, got {value!r}")


class InvalidScrapPercentError(ApurementValidationError):
    """
    Scrap percent yields a coefficient that cannot be applied.

    ``scrap_percent >= 100`` would divide by zero (or by a negative) in the
    consumption formula, so it is rejected rather than clamped.
    """

    code: str = "INVALID_SCRAP_PERCENT"

    def __init__(self, scrap_percent: Decimal, family_id: str | None = None):
        self.scrap_percent = str(scrap_percent)
        self.family_id = family_id
        super().__init__(
            f"Invalid scrap percent for family {family_id}: {scrap_percent}"
        )


class QuotaExceededError(ApurementValidationError):
    """
    Allocation would push the SA's consumed total above its initial quantity.

    Carries both totals so the user can correct the requested quantity.
    """

    code: str = "QUOTA_EXCEEDED"

    def __init__(
        self,
        sa_id: str,
        new_total: Decimal,
        quantity_initial: Decimal,
        current_allocated: Decimal,
        requested: Decimal,
    ):
        self.sa_id = sa_id
        self.new_total = str(new_total)
        self.quantity_initial = str(quantity_initial)
        self.current_allocated = str(current_allocated)
        self.requested = str(requested)
        super().__init__(
            f"Allocated quantity ({new_total}) exceeds SA initial quantity "
            f"({quantity_initial}) for SA {sa_id}"
        )


class DeclarationLockedError(ApurementValidationError):
    """SA or EA is referenced by allocations and cannot be modified or deleted."""

    code: str = "DECLARATION_LOCKED"

    def __init__(self, declaration_type: str, declaration_id: str, operation: str):
        self.declaration_type = declaration_type
        self.declaration_id = declaration_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {declaration_type} {declaration_id}: "
            f"it is already used by an apurement allocation"
        )


class InvalidDeclarationNumberError(ApurementValidationError):
    """Declaration number does not match the PREFIX + 6 digits format."""

    code: str = "INVALID_DECLARATION_NUMBER"

    def __init__(self, prefix: str, value: object):
        self.prefix = prefix
        self.value = str(value)
        super().__init__(
            f"{prefix} number must contain 6 digits (e.g. {prefix}250001), got {value!r}"
        )


# Concurrency exceptions


class ConcurrencyError(ApurementKernelError):
    """Base exception for storage-level concurrency failures."""

    code: str = "CONCURRENCY_ERROR"
    category: str = "CONFLICT"


class AllocationConflictError(ConcurrencyError):
    """
    The storage layer aborted the transaction because of a concurrent writer
    (deadlock, serialization failure, lock timeout, busy database).
    """

    code: str = "ALLOCATION_CONFLICT"

    def __init__(self, sa_id: str | None, attempts: int, reason: str):
        self.sa_id = sa_id
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Allocation on SA {sa_id} aborted by a concurrent write "
            f"after {attempts} attempt(s): {reason}"
        )


# Immutability exceptions


class ImmutabilityError(ApurementKernelError):
    """Base exception for append-only and derived-field violations."""

    code: str = "IMMUTABILITY_ERROR"
    category: str = "INTEGRITY"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify an immutable record or a derived field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
