"""Pure domain layer: clock, coefficient arithmetic, status derivation, DTOs."""

from apurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from apurement_kernel.domain.status import SaStatus, derive_status

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "SaStatus",
    "derive_status",
]
