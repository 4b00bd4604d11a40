"""
ORM-level immutability and mutation guards for the allocation ledger.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_flush event]  --> _check_declaration_deletion_before_flush()
         |                         --> DeclarationLockedError
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_allocation_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, the exception propagates out of flush() and the
transaction must be rolled back.  The database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | Rule
----------------|------------------------------------------------------------
Allocation      | ALWAYS immutable and undeletable (append-only ledger)
SaDeclaration   | quantity_initial fixed after creation;
                | quantity_apured/status written only under the aggregation
                | flag; undeletable while allocations reference it
EaDeclaration   | undeletable while allocations reference it

===============================================================================
USAGE
===============================================================================

    from apurement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

SaAggregator is the only writer of the derived SA columns; it wraps its
flush in ``aggregation_write(session)``, which sets AGGREGATION_FLAG in
``session.info`` for the duration of the flush.
"""

from contextlib import contextmanager

from sqlalchemy import event, exists, select
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from apurement_kernel.exceptions import DeclarationLockedError, ImmutabilityViolationError
from apurement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

AGGREGATION_FLAG = "apurement_aggregation_write"

_DERIVED_SA_FIELDS = ("quantity_apured", "status")


@contextmanager
def aggregation_write(session: Session):
    """Allow the derived SA columns to be flushed inside this block."""
    previous = session.info.get(AGGREGATION_FLAG, False)
    session.info[AGGREGATION_FLAG] = True
    try:
        yield session
    finally:
        session.info[AGGREGATION_FLAG] = previous


def _check_declaration_deletion_before_flush(session, flush_context, instances):
    """
    Block deletion of a SA or EA that any allocation references.

    Runs in SessionEvents.before_flush, before the flush plan is finalized;
    mapper-level delete events fire too late to prevent the DELETE.
    """
    from apurement_kernel.models.allocation import Allocation
    from apurement_kernel.models.ea_declaration import EaDeclaration
    from apurement_kernel.models.sa_declaration import SaDeclaration

    for obj in list(session.deleted):
        if isinstance(obj, SaDeclaration):
            declaration_type, column = "SA", Allocation.sa_id
        elif isinstance(obj, EaDeclaration):
            declaration_type, column = "EA", Allocation.ea_id
        else:
            continue

        with session.no_autoflush:
            referenced = session.execute(
                select(exists().where(column == obj.id))
            ).scalar()

        if referenced:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": type(obj).__name__,
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "declaration_has_allocations",
                },
            )
            raise DeclarationLockedError(
                declaration_type=declaration_type,
                declaration_id=str(obj.id),
                operation="delete",
            )


def _check_allocation_immutability(mapper, connection, target):
    """Allocations are append-only: every UPDATE is rejected."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Allocation",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Allocation",
        entity_id=str(target.id),
        reason="Allocations are append-only and cannot be modified",
    )


def _check_allocation_delete(mapper, connection, target):
    """Allocations are append-only: every DELETE is rejected."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "Allocation",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="Allocation",
        entity_id=str(target.id),
        reason="Allocations are append-only and cannot be deleted",
    )


def _check_sa_declaration_immutability(mapper, connection, target):
    """
    Guard the quota and the derived aggregate of a SA.

    quantity_initial never changes after creation.  quantity_apured and
    status may change only while the aggregation flag is set.
    """
    if get_history(target, "quantity_initial").deleted:
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "SaDeclaration",
                "entity_id": str(target.id),
                "operation": "UPDATE",
                "field": "quantity_initial",
            },
        )
        raise ImmutabilityViolationError(
            entity_type="SaDeclaration",
            entity_id=str(target.id),
            reason="Cannot modify field 'quantity_initial' after creation",
        )

    session = object_session(target)
    if session is not None and session.info.get(AGGREGATION_FLAG, False):
        return

    for field in _DERIVED_SA_FIELDS:
        if get_history(target, field).has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "SaDeclaration",
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": field,
                },
            )
            raise ImmutabilityViolationError(
                entity_type="SaDeclaration",
                entity_id=str(target.id),
                reason=f"Field '{field}' is derived from allocations and set only by aggregation",
            )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Registering twice is a no-op.
    """
    from apurement_kernel.models.allocation import Allocation
    from apurement_kernel.models.sa_declaration import SaDeclaration

    if event.contains(Session, "before_flush", _check_declaration_deletion_before_flush):
        return

    event.listen(Session, "before_flush", _check_declaration_deletion_before_flush)

    event.listen(Allocation, "before_update", _check_allocation_immutability)
    event.listen(Allocation, "before_delete", _check_allocation_delete)

    event.listen(SaDeclaration, "before_update", _check_sa_declaration_immutability)

    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it is not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Tests only.  Never call this in production code.
    """
    from apurement_kernel.models.allocation import Allocation
    from apurement_kernel.models.sa_declaration import SaDeclaration

    _safe_remove_listener(Session, "before_flush", _check_declaration_deletion_before_flush)
    _safe_remove_listener(Allocation, "before_update", _check_allocation_immutability)
    _safe_remove_listener(Allocation, "before_delete", _check_allocation_delete)
    _safe_remove_listener(SaDeclaration, "before_update", _check_sa_declaration_immutability)
