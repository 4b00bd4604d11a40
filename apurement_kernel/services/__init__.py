"""Write services: flush-only, the caller (or the orchestrator) owns commit."""

from apurement_kernel.services.aggregation_service import SaAggregator
from apurement_kernel.services.allocation_ledger import AllocationLedger
from apurement_kernel.services.apurement_orchestrator import ApurementOrchestrator
from apurement_kernel.services.declaration_service import (
    EaDeclarationService,
    FamilyService,
    SaDeclarationService,
)
from apurement_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "AllocationLedger",
    "ApurementOrchestrator",
    "EaDeclarationService",
    "FamilyService",
    "SaAggregator",
    "SaDeclarationService",
    "SequenceCounter",
    "SequenceService",
]
