"""
Apurement Orchestrator -- transaction owner for ledger writes.

The Orchestrator ties together:
- AllocationLedger: quota check and allocation append
- SaAggregator: materialized SA aggregate (called by the ledger)
- SA/EA declaration services

It defines its own transaction boundary: commits on success, rolls back on
failure.  Lock conflicts reported by the database (deadlock, serialization
failure, lock timeout, ``database is locked``) are retried up to
``max_conflict_retries`` times and then surface as AllocationConflictError.
Any other storage error, and every NOT_FOUND or VALIDATION error, is
re-raised unchanged without a retry.
"""

import time
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, TypeVar
from uuid import UUID
from uuid import uuid4 as _uuid4

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from apurement_kernel.db.types import QUANTITY_TOLERANCE
from apurement_kernel.domain.clock import Clock, SystemClock
from apurement_kernel.exceptions import AllocationConflictError, ApurementKernelError
from apurement_kernel.logging_config import LogContext, get_logger
from apurement_kernel.models.allocation import Allocation
from apurement_kernel.models.ea_declaration import EaDeclaration
from apurement_kernel.models.sa_declaration import SaDeclaration
from apurement_kernel.services.allocation_ledger import AllocationLedger
from apurement_kernel.services.declaration_service import (
    DEFAULT_EA_REGIME_CODE,
    DEFAULT_QUANTITY_UNIT,
    DEFAULT_SA_REGIME_CODE,
    EaDeclarationService,
    SaDeclarationService,
)

logger = get_logger("services.apurement_orchestrator")

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
LOCK_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

# SQLite reports a busy writer lock only through the message
_SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")


def is_lock_conflict(exc: OperationalError) -> bool:
    """True when the database aborted the statement because of a concurrent writer."""
    if getattr(exc.orig, "pgcode", None) in LOCK_CONFLICT_SQLSTATES:
        return True
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(text in message for text in _SQLITE_LOCK_MESSAGES)


def _elapsed_ms(t0: float) -> float:
    return round((time.monotonic() - t0) * 1000, 2)


class ApurementOrchestrator:
    """
    Orchestrates allocation and declaration writes.

    By default every operation commits on success and rolls back on
    failure.  Set auto_commit=False to delegate transaction control to the
    caller; conflicts are then translated but not retried.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_commit: bool = True,
        max_conflict_retries: int = 2,
        sa_regime_code: str = DEFAULT_SA_REGIME_CODE,
        ea_regime_code: str = DEFAULT_EA_REGIME_CODE,
        quantity_unit: str = DEFAULT_QUANTITY_UNIT,
        tolerance: Decimal = QUANTITY_TOLERANCE,
    ):
        """
        Args:
            session: SQLAlchemy session.
            clock: Clock for allocation timestamps. Defaults to SystemClock.
            auto_commit: If True (default), commits on success and rolls back
                on failure.
            max_conflict_retries: Extra attempts after a lock conflict.
            tolerance: Quota comparison epsilon.
        """
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._max_conflict_retries = max_conflict_retries

        self._ledger = AllocationLedger(session, clock=self._clock, tolerance=tolerance)
        self._sa_service = SaDeclarationService(
            session, regime_code=sa_regime_code, quantity_unit=quantity_unit
        )
        self._ea_service = EaDeclarationService(
            session, clock=self._clock, ledger=self._ledger, regime_code=ea_regime_code
        )

    def create_allocation(
        self,
        sa_id: UUID | str,
        ea_id: UUID | str,
        quantity: Decimal | int | float | str,
        actor_id: UUID,
    ) -> Allocation:
        """
        Allocate an EA-side quantity against a SA and commit.

        Returns:
            The committed Allocation.
        """
        with LogContext.bind(
            correlation_id=_uuid4(),
            actor_id=actor_id,
            sa_id=sa_id,
            ea_id=ea_id,
        ):
            logger.info("allocation_started", extra={"quantity": str(quantity)})
            t0 = time.monotonic()
            allocation = self._run(
                lambda: self._ledger.create_allocation(sa_id, ea_id, quantity, actor_id),
                event="allocation",
                sa_id=str(sa_id),
                t0=t0,
            )
            logger.info(
                "allocation_completed",
                extra={
                    "allocation_id": str(allocation.id),
                    "seq": allocation.seq,
                    "quantity": allocation.quantity,
                    "duration_ms": _elapsed_ms(t0),
                },
            )
            return allocation

    def create_sa(
        self,
        sa_number: str,
        declaration_date: date,
        due_date: date,
        quantity_initial: Decimal | int | float | str,
        actor_id: UUID,
        **fields,
    ) -> SaDeclaration:
        """Declare a SA and commit.  Extra fields go to SaDeclarationService.create."""
        with LogContext.bind(correlation_id=_uuid4(), actor_id=actor_id):
            logger.info("sa_creation_started", extra={"sa_number": sa_number})
            t0 = time.monotonic()
            sa = self._run(
                lambda: self._sa_service.create(
                    sa_number, declaration_date, due_date, quantity_initial, actor_id, **fields
                ),
                event="sa_creation",
                sa_id=None,
                t0=t0,
            )
            logger.info(
                "sa_creation_completed",
                extra={"sa_id": str(sa.id), "duration_ms": _elapsed_ms(t0)},
            )
            return sa

    def create_ea(
        self,
        ea_number: str,
        export_date: date,
        customer_name: str,
        total_quantity: Decimal | int | float | str,
        quantity_unit: str,
        actor_id: UUID,
        linked_sas: Iterable = (),
        **fields,
    ) -> EaDeclaration:
        """
        Declare an EA with its linked allocations in one transaction.

        A failure of any linked allocation rolls back the EA and every
        allocation made by the call.
        """
        linked = list(linked_sas)
        with LogContext.bind(correlation_id=_uuid4(), actor_id=actor_id):
            logger.info(
                "ea_creation_started",
                extra={"ea_number": ea_number, "linked_allocations": len(linked)},
            )
            t0 = time.monotonic()
            ea = self._run(
                lambda: self._ea_service.create(
                    ea_number,
                    export_date,
                    customer_name,
                    total_quantity,
                    quantity_unit,
                    actor_id,
                    linked_sas=linked,
                    **fields,
                ),
                event="ea_creation",
                sa_id=None,
                t0=t0,
            )
            logger.info(
                "ea_creation_completed",
                extra={"ea_id": str(ea.id), "duration_ms": _elapsed_ms(t0)},
            )
            return ea

    def _run(self, operation: Callable[[], T], event: str, sa_id: str | None, t0: float) -> T:
        """
        Run ``operation`` in the session transaction, committing on success.

        Lock conflicts are retried while attempts remain (auto_commit only);
        kernel errors and any other storage error are rolled back and
        re-raised unchanged.  Log events are named ``<event>_rejected``,
        ``<event>_conflict_retry`` and ``<event>_failed``.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                result = operation()
                if self._auto_commit:
                    self._session.commit()
                return result

            except ApurementKernelError as exc:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    f"{event}_rejected",
                    extra={"error": exc, "duration_ms": _elapsed_ms(t0)},
                )
                raise

            except OperationalError as exc:
                if self._auto_commit:
                    self._session.rollback()
                if not is_lock_conflict(exc):
                    logger.error(
                        f"{event}_failed",
                        extra={"duration_ms": _elapsed_ms(t0)},
                        exc_info=True,
                    )
                    raise
                reason = str(exc.orig) if exc.orig is not None else str(exc)
                if self._auto_commit and attempt <= self._max_conflict_retries:
                    logger.warning(
                        f"{event}_conflict_retry",
                        extra={"attempt": attempt, "reason": reason},
                    )
                    continue
                logger.error(
                    f"{event}_failed",
                    extra={"attempts": attempt, "reason": reason, "duration_ms": _elapsed_ms(t0)},
                )
                raise AllocationConflictError(sa_id, attempt, reason) from exc

            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.error(
                    f"{event}_failed",
                    extra={"duration_ms": _elapsed_ms(t0)},
                    exc_info=True,
                )
                raise
