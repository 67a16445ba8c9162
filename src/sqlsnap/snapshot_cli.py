#!/usr/bin/env python3
"""
CLI for snapshot lifecycle operations.

Usage:
    sqlsnap create --group billing --name "Before migration"
    sqlsnap list [--group billing]
    sqlsnap delete --snapshot billing_ab12cd34
    sqlsnap check-external --snapshot billing_ab12cd34
    sqlsnap rollback --snapshot billing_ab12cd34
    sqlsnap cleanup-invalid --snapshot billing_ab12cd34
    sqlsnap verify
    sqlsnap cleanup-orphaned (--name billing_ab12cd34_orders ... | --all)
    sqlsnap cleanup-stale
    sqlsnap startup-sweep
    sqlsnap databases
    sqlsnap health
    sqlsnap history [--limit 20]

Exit codes: 0 success, 1 error, 2 rollback blocked by external snapshots.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from sqlsnap.config.config_loader import SnapshotConfig
from sqlsnap.core.exceptions import (
    ConfigurationError, PartialFailure, SnapshotCreationFailed, SqlSnapError,
)
from sqlsnap.core.logging import configure_logging
from sqlsnap.core.models import RollbackStatus
from sqlsnap.services import create_snapshot_service


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BLOCKED = 2

logger = logging.getLogger("sqlsnap.cli")


def setup_logging(args, config: SnapshotConfig) -> None:
    """Configure logging from flags, falling back to the config file."""
    logging_config = config.get_logging_config()
    if args.verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO)
    structured = args.json_logs or bool(logging_config.get("structured", False))
    configure_logging(level=level, structured=structured)


def emit(args, payload: Any, text: str) -> None:
    """Print JSON when --json was given, otherwise the human-readable text."""
    if getattr(args, "json", False):
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(text)


def cmd_create(service, args) -> int:
    """Create a snapshot of a group."""
    try:
        result = service.create_snapshot(args.group, args.name)
    except SnapshotCreationFailed as e:
        logger.error(str(e))
        if e.result is not None:
            emit(args, e.result.to_dict(), _format_failures(e.result.failures))
        return EXIT_ERROR

    snapshot = result.snapshot
    lines = [
        f"Created snapshot {snapshot.id} '{snapshot.display_name}' (sequence {snapshot.sequence})",
        f"  Databases: {len(snapshot.successful)}/{snapshot.database_count} captured",
    ]
    if result.failures:
        lines.append(_format_failures(result.failures))
    emit(args, result.to_dict(), "\n".join(lines))
    return EXIT_OK if result.success else EXIT_ERROR


def _format_failures(failures) -> str:
    return "\n".join(f"  FAILED {database}: {error}" for database, error in failures)


def cmd_list(service, args) -> int:
    """List snapshots."""
    snapshots = service.list_snapshots(args.group)
    if not snapshots:
        emit(args, [], "No snapshots")
        return EXIT_OK

    lines = []
    for s in snapshots:
        flags = []
        if s.is_automatic:
            flags.append("auto")
        if s.failed:
            flags.append(f"{len(s.failed)} failed")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        lines.append(
            f"{s.group_id:<16} #{s.sequence:<3} {s.id:<28} {s.created_at:%Y-%m-%d %H:%M:%S}  "
            f"{s.display_name}{suffix}"
        )
    emit(args, [s.to_dict() for s in snapshots], "\n".join(lines))
    return EXIT_OK


def cmd_delete(service, args) -> int:
    """Delete a snapshot."""
    result = service.delete_snapshot(args.snapshot)
    emit(args, result.to_dict(), f"Deleted {args.snapshot} ({len(result.dropped)} engine objects dropped)")
    return EXIT_OK


def cmd_check_external(service, args) -> int:
    """Report external snapshots that would block a rollback."""
    pre_check = service.check_external(args.snapshot)
    if not pre_check.blocked:
        emit(args, pre_check.to_dict(), "No external snapshots; rollback can proceed")
        return EXIT_OK

    lines = ["External snapshots block rollback. Remove them with:"]
    lines.extend(f"  {command}" for command in pre_check.removal_commands)
    emit(args, pre_check.to_dict(), "\n".join(lines))
    return EXIT_BLOCKED


def cmd_rollback(service, args) -> int:
    """Roll a group back to a snapshot."""
    result = service.rollback(args.snapshot)

    if result.status == RollbackStatus.BLOCKED:
        lines = ["Rollback blocked by external snapshots. Remove them with:"]
        lines.extend(f"  {command}" for command in result.pre_check.removal_commands)
        emit(args, result.to_dict(), "\n".join(lines))
        return EXIT_BLOCKED

    lines = [f"Rollback {result.status.value}: {result.databases_restored}/{len(result.restores)} databases restored"]
    for restore in result.restores:
        state = "ok" if restore.success else f"FAILED: {restore.error}"
        lines.append(f"  {restore.database}: {state}")
        lines.extend(f"    warning: {w}" for w in restore.warnings)
    if result.checkpoint_created:
        lines.append(f"  Checkpoint: {result.checkpoint.snapshot.id}")
    elif result.checkpoint_error:
        lines.append(f"  Checkpoint failed: {result.checkpoint_error}")
    emit(args, result.to_dict(), "\n".join(lines))
    return EXIT_OK if result.status == RollbackStatus.DONE else EXIT_ERROR


def cmd_cleanup_invalid(service, args) -> int:
    """Remove an incomplete snapshot."""
    result = service.cleanup_invalid(args.snapshot)
    emit(args, result.to_dict(), f"Removed invalid snapshot {args.snapshot}")
    return EXIT_OK if not result.errors else EXIT_ERROR


def cmd_verify(service, args) -> int:
    """Compare metadata against the engine catalog."""
    report = service.verify()
    emit(args, report.to_dict(), report.summary())
    return EXIT_OK


def cmd_cleanup_orphaned(service, args) -> int:
    """Drop orphaned engine snapshots."""
    if not args.all and not args.name:
        logger.error("Specify orphan names with --name or pass --all")
        return EXIT_ERROR

    result = service.cleanup_orphaned(args.name, drop_all=args.all)
    lines = [f"Dropped {len(result.dropped)} orphaned snapshots"]
    lines.extend(f"  dropped {name}" for name in result.dropped)
    lines.extend(f"  skipped {name}" for name in result.skipped)
    lines.extend(f"  FAILED {name}: {error}" for name, error in result.errors)
    emit(args, result.to_dict(), "\n".join(lines))
    return EXIT_OK if not result.errors else EXIT_ERROR


def cmd_cleanup_stale(service, args) -> int:
    """Heal metadata records whose engine objects are gone."""
    result = service.cleanup_stale_metadata()
    emit(args, result.to_dict(), f"Healed {len(result.deleted_snapshots)} snapshot records")
    return EXIT_OK


def cmd_startup_sweep(service, args) -> int:
    """Drop inaccessible snapshots and heal metadata."""
    result = service.startup_sweep()
    emit(
        args, result.to_dict(),
        f"Dropped {len(result.dropped)} inaccessible snapshots, "
        f"removed {len(result.deleted_snapshots)} records",
    )
    return EXIT_OK if not result.errors else EXIT_ERROR


def cmd_databases(service, args) -> int:
    """List user databases."""
    databases = service.list_databases()
    emit(args, databases, "\n".join(databases) if databases else "No user databases")
    return EXIT_OK


def cmd_health(service, args) -> int:
    """Check engine and metadata health."""
    status = service.health()
    lines = [f"Status: {status['status']}"]
    for component in ("engine", "metadata"):
        info = status[component]
        detail = info.get("version") or info.get("error") or ""
        lines.append(f"  {component}: {info['status']} {detail}".rstrip())
    for name in status["engine"].get("inaccessible_snapshot_names", []):
        lines.append(f"  inaccessible snapshot: {name}")
    emit(args, status, "\n".join(lines))
    return EXIT_OK if status["status"] == "ok" else EXIT_ERROR


def cmd_history(service, args) -> int:
    """Show recent operations."""
    entries = service.get_history(args.limit)
    lines = [
        f"{e.timestamp:%Y-%m-%d %H:%M:%S}  {e.operation_type:<26} {e.user_name or '-':<12} "
        f"{e.details.get('snapshot_id') or e.details.get('group_id') or ''}"
        for e in entries
    ]
    emit(args, [e.to_dict() for e in entries], "\n".join(lines) if lines else "No history")
    return EXIT_OK


COMMANDS = {
    "create": cmd_create,
    "list": cmd_list,
    "delete": cmd_delete,
    "check-external": cmd_check_external,
    "rollback": cmd_rollback,
    "cleanup-invalid": cmd_cleanup_invalid,
    "verify": cmd_verify,
    "cleanup-orphaned": cmd_cleanup_orphaned,
    "cleanup-stale": cmd_cleanup_stale,
    "startup-sweep": cmd_startup_sweep,
    "databases": cmd_databases,
    "health": cmd_health,
    "history": cmd_history,
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="sqlsnap",
        description="SQL Server database group snapshots and rollback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="Path to YAML config file")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON-structured logs")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    create_parser = subparsers.add_parser("create", help="Snapshot every database of a group")
    create_parser.add_argument("--group", required=True, help="Group id")
    create_parser.add_argument("--name", required=True, help="Snapshot display name")

    list_parser = subparsers.add_parser("list", help="List snapshots")
    list_parser.add_argument("--group", help="Only snapshots of this group")

    delete_parser = subparsers.add_parser("delete", help="Delete a snapshot")
    delete_parser.add_argument("--snapshot", required=True, help="Snapshot id")

    check_parser = subparsers.add_parser("check-external", help="Check for snapshots blocking a rollback")
    check_parser.add_argument("--snapshot", required=True, help="Snapshot id")

    rollback_parser = subparsers.add_parser("rollback", help="Roll a group back to a snapshot")
    rollback_parser.add_argument("--snapshot", required=True, help="Snapshot id")

    invalid_parser = subparsers.add_parser("cleanup-invalid", help="Remove an incomplete snapshot")
    invalid_parser.add_argument("--snapshot", required=True, help="Snapshot id")

    subparsers.add_parser("verify", help="Compare metadata against the engine and heal drift")

    orphan_parser = subparsers.add_parser("cleanup-orphaned", help="Drop orphaned engine snapshots")
    orphan_parser.add_argument("--name", action="append", default=[], help="Orphan to drop (repeatable)")
    orphan_parser.add_argument("--all", action="store_true", help="Drop every orphan found")

    subparsers.add_parser("cleanup-stale", help="Remove metadata whose engine objects are gone")
    subparsers.add_parser("startup-sweep", help="Drop inaccessible snapshots and heal metadata")
    subparsers.add_parser("databases", help="List user databases")
    subparsers.add_parser("health", help="Check engine and metadata store")

    history_parser = subparsers.add_parser("history", help="Show operation history")
    history_parser.add_argument("--limit", type=int, default=20, help="Entries to show")

    for sub in subparsers.choices.values():
        sub.add_argument("--json", action="store_true", help="Output result as JSON")

    return parser


def main(argv=None, service=None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        print("No command specified. Use --help for usage.", file=sys.stderr)
        return EXIT_ERROR

    try:
        config = SnapshotConfig(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(args, config)

    owns_service = service is None
    try:
        if owns_service:
            service = create_snapshot_service(config)
    except (SqlSnapError, ValueError) as e:
        logger.error(f"Failed to initialize: {e}")
        return EXIT_ERROR

    try:
        return COMMANDS[args.command](service, args)
    except PartialFailure as e:
        logger.error(str(e))
        for item in e.results:
            logger.error(f"  {item}")
        return EXIT_ERROR
    except SqlSnapError as e:
        logger.error(str(e))
        return EXIT_ERROR
    finally:
        if owns_service:
            service.close()


if __name__ == "__main__":
    sys.exit(main())
