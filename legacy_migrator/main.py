"""
Legacy Migration Scheduler CLI
==============================

Each invocation performs one operation against the state directory and
prints its result envelope as JSON on stdout. Logs go to stderr.

Usage:
    legacy-migrator --scan ./LegacySolution          # Scan and classify a source tree
    legacy-migrator --start <ID> --create-outputs    # Start migrating a scanned workspace
    legacy-migrator --next <ID>                      # Claim the next unit with its context
    legacy-migrator --complete <ID> --unit <UID>     # Record a unit as migrated
    legacy-migrator --status <ID>                    # Progress, ETA and derived status
"""

import argparse
import json
import logging
import sys
from typing import Optional

from legacy_migrator.analysis.models import OperationResult
from legacy_migrator.config import resolve_state_dir
from legacy_migrator.orchestrator import MigrationOrchestrator
from legacy_migrator.storage.json_store import JsonFileStore
from legacy_migrator.utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


# ============================================================================
# OUTPUT
# ============================================================================

def print_result(result: OperationResult) -> None:
    """Write an envelope to stdout as JSON."""
    payload = {
        "success": result.success,
        "data": result.data,
        "error": result.error,
        "warnings": result.warnings,
    }
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def create_orchestrator(state_dir: Optional[str] = None) -> MigrationOrchestrator:
    """Orchestrator over the JSON file store in the resolved state directory."""
    directory = resolve_state_dir(state_dir)
    logger.debug(f"Using state directory {directory}")
    return MigrationOrchestrator(JsonFileStore(directory))


# ============================================================================
# CLI INTERFACE
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="legacy-migrator",
        description="Schedule and track the migration of a legacy WebForms solution",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  legacy-migrator --scan ./LegacySolution
  legacy-migrator --start 3f2a9c1b7d4e --create-outputs
  legacy-migrator --next 3f2a9c1b7d4e
  legacy-migrator --complete 3f2a9c1b7d4e --unit 9b1e0c5a2f7d3e41 --notes "split into DAL and BAL"
  legacy-migrator --retry 3f2a9c1b7d4e
  legacy-migrator --list 3f2a9c1b7d4e --filter failed
  legacy-migrator --batches 3f2a9c1b7d4e --budget 50000
        """
    )

    operations = parser.add_mutually_exclusive_group()
    operations.add_argument("--scan", metavar="PATH", help="Scan a source tree and create a workspace")
    operations.add_argument("--start", metavar="ID", help="Start migrating a scanned workspace")
    operations.add_argument("--next", metavar="ID", help="Claim the next unit of work")
    operations.add_argument("--complete", metavar="ID", help="Record a unit as completed (needs --unit)")
    operations.add_argument("--fail", metavar="ID", help="Record a unit as failed (needs --unit and --error)")
    operations.add_argument("--retry", metavar="ID", help="Reset failed units to pending (one with --unit)")
    operations.add_argument("--status", metavar="ID", help="Show progress and derived status")
    operations.add_argument("--list", metavar="ID", help="List unit summaries")
    operations.add_argument("--batches", metavar="ID", help="Prepare (or show) the batches of a workspace")
    operations.add_argument("--cycles", metavar="ID", help="Report reference cycles among pending units")

    parser.add_argument("--no-recurse", action="store_true", help="Only scan the top-level directory")
    parser.add_argument("--create-outputs", action="store_true", help="Create the output project directories")
    parser.add_argument("--output-root", metavar="DIR", help="Parent directory of the output projects")
    parser.add_argument("--unit", metavar="UID", help="Unit id for --complete, --fail and --retry")
    parser.add_argument("--notes", help="Notes recorded with --complete")
    parser.add_argument("--error", help="Error message recorded with --fail")
    parser.add_argument("--filter", help="Status or kind filter for --list (default: all)")
    parser.add_argument("--budget", type=int, help="Batch budget in estimated tokens for --batches")
    parser.add_argument("--state-dir", metavar="DIR", help="State directory (default: ~/.legacy_migrator)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def dispatch(args: argparse.Namespace, parser: argparse.ArgumentParser) -> Optional[OperationResult]:
    """Run the selected operation; None when no operation was given."""
    if args.complete and not args.unit:
        parser.error("--complete requires --unit")
    if args.fail and not (args.unit and args.error):
        parser.error("--fail requires --unit and --error")

    if not any([args.scan, args.start, args.next, args.complete, args.fail, args.retry,
                args.status, args.list, args.batches, args.cycles]):
        return None

    orchestrator = create_orchestrator(args.state_dir)

    if args.scan:
        return orchestrator.scan(args.scan, recurse=not args.no_recurse)
    if args.start:
        return orchestrator.start(args.start, create_outputs=args.create_outputs, output_root=args.output_root)
    if args.next:
        return orchestrator.next_unit(args.next)
    if args.complete:
        return orchestrator.complete_unit(args.complete, args.unit, notes=args.notes)
    if args.fail:
        return orchestrator.fail_unit(args.fail, args.unit, args.error)
    if args.retry:
        if args.unit:
            return orchestrator.retry_unit(args.retry, args.unit)
        return orchestrator.retry_failed(args.retry)
    if args.status:
        return orchestrator.status(args.status)
    if args.list:
        return orchestrator.list_units(args.list, filter=args.filter)
    if args.batches:
        return orchestrator.prepare_batches(args.batches, budget=args.budget)
    return orchestrator.find_cycles(args.cycles)


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        result = dispatch(args, parser)
    except Exception as e:
        # Store construction can fail before any operation runs
        logger.error(f"Could not run operation: {e}", exc_info=args.verbose)
        result = OperationResult.fail(str(e))

    if result is None:
        parser.print_help()
        return 2

    print_result(result)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
