"""Read-only selectors returning DTOs."""

from apurement_kernel.selectors.allocation_selector import AllocationSelector
from apurement_kernel.selectors.declaration_selector import DeclarationSelector
from apurement_kernel.selectors.eligibility_selector import EligibilitySelector

__all__ = [
    "AllocationSelector",
    "DeclarationSelector",
    "EligibilitySelector",
]
