#!/usr/bin/env python3
"""
Apurement command line: database setup, declarations, allocations, listings.

Usage:
  python3 -m scripts.apurement_cli init-db
  python3 -m scripts.apurement_cli seed-families
  python3 -m scripts.apurement_cli families
  python3 -m scripts.apurement_cli create-sa --number 250001 --declaration-date 2025-01-10 \\
      --due-date 2025-07-10 --quantity 100 --family "Rond à béton"
  python3 -m scripts.apurement_cli create-ea --number 250001 --export-date 2025-02-01 \\
      --customer ACME --quantity 10 --link SA_ID:10
  python3 -m scripts.apurement_cli allocate --sa SA_ID --ea EA_ID --quantity 10
  python3 -m scripts.apurement_cli eligible
  python3 -m scripts.apurement_cli sa-allocations SA_ID
  python3 -m scripts.apurement_cli ea-allocations EA_ID

Rows are printed tab-separated on stdout; structured logs go to stderr.
Kernel errors exit with status 1 and print ``CODE: message`` on stderr.
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

# Fixed actor recorded on rows created from the command line
CLI_ACTOR_ID = UUID("00000000-0000-0000-0000-00000000c11a")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from None


def _parse_link(value: str) -> tuple[str, str]:
    sa_id, sep, quantity = value.rpartition(":")
    if not sep or not sa_id or not quantity:
        raise argparse.ArgumentTypeError(f"invalid link {value!r}, expected SA_ID:QUANTITY")
    return sa_id, quantity


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="apurement", description="SA/EA apurement ledger")
    p.add_argument("--config", type=Path, default=None, help="Configuration YAML file")
    p.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Level of the structured logs written to stderr (default: WARNING)",
    )
    p.add_argument("--actor", type=UUID, default=CLI_ACTOR_ID, help="Acting user id")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")
    sub.add_parser("seed-families", help="Insert or update families from configuration")
    sub.add_parser("families", help="List families")

    sa = sub.add_parser("create-sa", help="Declare a SA quota")
    sa.add_argument("--number", required=True)
    sa.add_argument("--declaration-date", type=_parse_date, required=True)
    sa.add_argument("--due-date", type=_parse_date, required=True)
    sa.add_argument("--quantity", required=True, help="Initial quantity (tonnes)")
    sa.add_argument("--family", default=None, help="Family label or id")
    sa.add_argument("--supplier", default=None)
    sa.add_argument("--description", default=None)

    ea = sub.add_parser("create-ea", help="Declare an EA, optionally allocating it")
    ea.add_argument("--number", required=True)
    ea.add_argument("--export-date", type=_parse_date, required=True)
    ea.add_argument("--customer", required=True)
    ea.add_argument("--quantity", required=True, help="Exported quantity")
    ea.add_argument("--unit", default=None, help="Quantity unit (default from configuration)")
    ea.add_argument("--country", default=None)
    ea.add_argument("--family", default=None, help="Display family label or id")
    ea.add_argument(
        "--link",
        type=_parse_link,
        action="append",
        default=[],
        help="SA_ID:QUANTITY allocation to create with the EA (repeatable)",
    )

    alloc = sub.add_parser("allocate", help="Allocate an EA quantity against a SA")
    alloc.add_argument("--sa", required=True)
    alloc.add_argument("--ea", required=True)
    alloc.add_argument("--quantity", required=True, help="EA-side quantity")

    sub.add_parser("eligible", help="List SAs still open for allocation")

    sa_alloc = sub.add_parser("sa-allocations", help="List allocations of a SA")
    sa_alloc.add_argument("sa_id")

    ea_alloc = sub.add_parser("ea-allocations", help="List allocations of an EA")
    ea_alloc.add_argument("ea_id")

    return p


def _row(*values) -> None:
    print("\t".join("" if v is None else str(v) for v in values))


def _resolve_family_id(session, value: str | None):
    if value is None:
        return None
    from apurement_kernel.db.types import as_uuid
    from apurement_kernel.services.declaration_service import FamilyService

    service = FamilyService(session)
    if as_uuid(value) is not None:
        return service.get(value).id
    family = service.get_by_label(value)
    if family is None:
        from apurement_kernel.exceptions import FamilyNotFoundError

        raise FamilyNotFoundError(value)
    return family.id


def _orchestrator(session, config):
    from apurement_kernel.services.apurement_orchestrator import ApurementOrchestrator

    ledger = config.ledger
    return ApurementOrchestrator(
        session,
        max_conflict_retries=ledger.max_conflict_retries,
        sa_regime_code=ledger.sa_regime_code,
        ea_regime_code=ledger.ea_regime_code,
        quantity_unit=ledger.default_quantity_unit,
        tolerance=ledger.tolerance,
    )


def run(args: argparse.Namespace) -> int:
    from apurement_config import get_active_config
    from apurement_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from apurement_kernel.db.immutability import register_immutability_listeners
    from apurement_kernel.selectors.allocation_selector import AllocationSelector
    from apurement_kernel.selectors.eligibility_selector import EligibilitySelector
    from apurement_kernel.services.declaration_service import FamilyService

    config = get_active_config(args.config)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    register_immutability_listeners()

    if args.command == "init-db":
        create_tables()
        _row("tables created")
        return 0

    with session_scope() as session:
        if args.command == "seed-families":
            for family in FamilyService(session).seed_from_config(config.families):
                _row(family.id, family.label, family.scrap_percent)

        elif args.command == "families":
            for family in FamilyService(session).list_families():
                _row(family.id, family.label, family.scrap_percent, family.is_active)

        elif args.command == "create-sa":
            sa = _orchestrator(session, config).create_sa(
                args.number,
                args.declaration_date,
                args.due_date,
                args.quantity,
                args.actor,
                family_id=_resolve_family_id(session, args.family),
                supplier_name=args.supplier,
                description=args.description,
            )
            _row(sa.id, sa.sa_number, sa.quantity_initial, sa.status)

        elif args.command == "create-ea":
            ea = _orchestrator(session, config).create_ea(
                args.number,
                args.export_date,
                args.customer,
                args.quantity,
                args.unit or config.ledger.default_quantity_unit,
                args.actor,
                linked_sas=args.link,
                destination_country=args.country,
                family_id=_resolve_family_id(session, args.family),
            )
            _row(ea.id, ea.ea_number, ea.total_quantity, ea.scrap_quantity)

        elif args.command == "allocate":
            allocation = _orchestrator(session, config).create_allocation(
                args.sa, args.ea, args.quantity, args.actor
            )
            _row(allocation.id, allocation.seq, allocation.quantity)

        elif args.command == "eligible":
            for item in EligibilitySelector(session).eligible_for_allocation():
                _row(
                    item.id,
                    item.sa_number,
                    item.due_date,
                    item.quantity_initial,
                    item.quantity_apured,
                    item.sa_remaining,
                    item.ea_remaining,
                    item.coefficient_used,
                )

        elif args.command == "sa-allocations":
            for view in AllocationSelector(session).list_for_sa(args.sa_id):
                _row(view.id, view.seq, view.ea.ea_number, view.quantity, view.created_at)

        elif args.command == "ea-allocations":
            for view in AllocationSelector(session).list_for_ea(args.ea_id):
                _row(
                    view.id,
                    view.seq,
                    view.sa.sa_number,
                    view.quantity,
                    view.scrap_quantity,
                    "MISMATCH" if view.family_mismatch else "",
                    view.created_at,
                )

    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    from apurement_kernel.exceptions import ApurementKernelError
    from apurement_kernel.logging_config import configure_logging

    configure_logging(level=getattr(logging, args.log_level))

    try:
        return run(args)
    except ApurementKernelError as exc:
        print(f"{exc.code}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
