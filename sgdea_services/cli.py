"""sgdea-admin: maintenance commands for the workflow core.

Usage:
    sgdea-admin [--config FILE] [--db-url URL] init-db
    sgdea-admin stats DEFINITION_ID
    sgdea-admin cleanup [--days N] [--dry-run]
    sgdea-admin process
    sgdea-admin verify-audit
"""

from __future__ import annotations

import argparse
import sys
from uuid import UUID

import yaml

from sgdea_config import get_active_config
from sgdea_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from sgdea_kernel.exceptions import AuditChainBrokenError, ConcurrentModificationError
from sgdea_kernel.logging_config import get_logger
from sgdea_kernel.selectors.workflow_selector import WorkflowSelector
from sgdea_services.audit_sink import DatabaseAuditSink
from sgdea_services.retention import purge_completed_instances
from sgdea_services.workflow_orchestrator import WorkflowOrchestrator

logger = get_logger("cli")


def _cmd_init_db(args, config) -> int:
    create_tables()
    print("Tables created.")
    return 0


def _cmd_stats(args, config) -> int:
    try:
        definition_id = UUID(args.definition_id)
    except ValueError:
        print(f"Error: not a workflow id: {args.definition_id}", file=sys.stderr)
        return 2

    with session_scope() as session:
        selector = WorkflowSelector(session)
        definition = selector.get_definition(definition_id, include_deleted=True)
        if definition is None:
            print(f"Error: workflow {definition_id} not found", file=sys.stderr)
            return 1
        stats = selector.statistics(definition_id)

    print(f"Workflow:  {definition.name} ({definition.entity_kind.value})")
    print(f"  total:     {stats.total}")
    print(f"  active:    {stats.active}")
    print(f"  completed: {stats.completed}")
    for status, count in stats.by_status.items():
        print(f"    {status:<12} {count}")
    if stats.average_completion_hours is not None:
        print(f"  average completion: {stats.average_completion_hours} h")
    return 0


def _cmd_cleanup(args, config) -> int:
    days = args.days if args.days is not None else config.retention.completed_instance_days
    if days < 1:
        print("Error: --days must be at least 1", file=sys.stderr)
        return 2

    with session_scope() as session:
        result = purge_completed_instances(session, days, dry_run=args.dry_run)

    if result.dry_run:
        print(f"{result.count} completed instance(s) finished before "
              f"{result.cutoff:%Y-%m-%d} would be deleted.")
    else:
        print(f"Deleted {result.count} completed instance(s) finished before "
              f"{result.cutoff:%Y-%m-%d}.")
    return 0


def _cmd_process(args, config) -> int:
    orchestrator = WorkflowOrchestrator(get_session_factory(), config)
    try:
        report = orchestrator.process_deadlines()
    except ConcurrentModificationError as exc:
        print(f"Error: {exc}; run again", file=sys.stderr)
        return 1
    print(f"Checked {report.checked} timed instance(s): "
          f"{len(report.reminded)} reminder(s), {len(report.escalated)} escalation(s).")
    return 0


def _cmd_verify_audit(args, config) -> int:
    sink = DatabaseAuditSink(get_session_factory())
    try:
        sink.validate_chain()
    except AuditChainBrokenError as exc:
        print(f"Audit chain broken: {exc}", file=sys.stderr)
        return 1
    print("Audit chain intact.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sgdea-admin",
        description="Workflow core maintenance",
    )
    parser.add_argument("--config", help="YAML file overlaid on the defaults")
    parser.add_argument("--db-url", help="Database URL (overrides configuration)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the workflow tables")
    p.set_defaults(handler=_cmd_init_db)

    p = sub.add_parser("stats", help="Instance statistics of one workflow")
    p.add_argument("definition_id")
    p.set_defaults(handler=_cmd_stats)

    p = sub.add_parser("cleanup", help="Delete old completed instances")
    p.add_argument("--days", type=int, default=None,
                   help="Age in days (default: retention.completed_instance_days)")
    p.add_argument("--dry-run", action="store_true",
                   help="Only report what would be deleted")
    p.set_defaults(handler=_cmd_cleanup)

    p = sub.add_parser("process", help="Send step reminders and escalate overdue steps")
    p.set_defaults(handler=_cmd_process)

    p = sub.add_parser("verify-audit", help="Check the persisted audit hash chain")
    p.set_defaults(handler=_cmd_verify_audit)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    init_engine_from_url(args.db_url or config.database.url, echo=config.database.echo)
    try:
        logger.info("cli_command", extra={"command": args.command})
        return args.handler(args, config)
    finally:
        reset_engine()


if __name__ == "__main__":
    sys.exit(main())
