"""
Command line entry point: ``shadowmigrate`` / ``python -m shadowmigrate``.

A single command with no subcommands. Settings come from the environment
and a ``.env`` file (variables already set in the environment win); flags
override both.

Exit codes:
    0   migration COMPLETED
    1   migration ROLLED_BACK, or stopped before anything was changed
    2   ROLLBACK_FAILED; the backup location is printed to stderr
    64  invalid settings or usage
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import NoReturn

from shadowmigrate.config import MigrationSettings
from shadowmigrate.migration import (
    EXIT_FAILED,
    MigrationConfig,
    MigrationConfigError,
    MigrationDefinition,
    MigrationOrchestrator,
    MigrationOutcome,
    MigrationPhase,
    load_definition,
)
from shadowmigrate.stores import MongoDatabase, StoreError

logger = logging.getLogger(__name__)

EXIT_USAGE = 64


def setup_logging(log_level: str = "INFO") -> None:
    """Configure process logging for a command-line run."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    # Driver chatter is rarely useful during a migration.
    logging.getLogger("pymongo").setLevel(logging.WARNING)


class _ArgumentParser(argparse.ArgumentParser):
    """Reports usage errors with the usage exit code."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="shadowmigrate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="environment variables:\n  " + "\n  ".join(MigrationSettings.variable_names()),
        description=(
            "Migrate a MongoDB collection to a new schema through a shadow "
            "collection, with backup, validation and automatic rollback."
        ),
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Dotenv file read before the environment is applied (default: .env)",
    )
    parser.add_argument("--source", help="Live collection to migrate (default: products)")
    parser.add_argument("--shadow", help="Shadow collection name (default: products_v2)")
    parser.add_argument("--database", help="Database name (default: from MONGODB_URI)")
    parser.add_argument(
        "--definition",
        help="Migration definition as 'package.module:attribute'",
    )
    parser.add_argument("--batch-size", type=int, help="Records per batch (default: 10)")
    parser.add_argument(
        "--threshold",
        type=float,
        dest="validation_threshold",
        help="Minimum shadow/source count ratio (default: 0.95)",
    )
    parser.add_argument("--backup-dir", help="Directory for backup artifacts")
    parser.add_argument("--report", dest="report_path", help="Path of the migration report")
    parser.add_argument(
        "--performance-policy",
        choices=["advisory", "strict"],
        help="Whether a performance shortfall blocks promotion (default: advisory)",
    )
    parser.add_argument(
        "--phase-timeout",
        type=float,
        dest="phase_timeout_seconds",
        help="Deadline in seconds for each phase (default: none)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--no-tracing",
        action="store_true",
        help="Disable OpenTelemetry tracing",
    )
    return parser


def resolve_settings(args: argparse.Namespace) -> MigrationSettings:
    """
    Combine environment settings with command-line overrides.

    Raises:
        MigrationConfigError: If the combined settings are invalid
    """
    settings = MigrationSettings.from_env(args.env_file).with_overrides(
        source_collection=args.source,
        shadow_collection=args.shadow,
        database=args.database,
        definition=args.definition,
        batch_size=args.batch_size,
        validation_threshold=args.validation_threshold,
        backup_dir=args.backup_dir,
        report_path=args.report_path,
        performance_policy=args.performance_policy,
        phase_timeout_seconds=args.phase_timeout_seconds,
        log_level=args.log_level,
        enable_tracing=False if args.no_tracing else None,
    )
    if not settings.mongodb_uri:
        raise MigrationConfigError("MONGODB_URI is not set")
    if not settings.definition:
        raise MigrationConfigError(
            "No migration definition; set MIGRATION_DEFINITION or pass --definition"
        )
    return settings


async def run_migration(
    settings: MigrationSettings,
    definition: MigrationDefinition,
    config: MigrationConfig,
) -> MigrationOutcome:
    """
    Connect, run one migration and disconnect.

    Raises:
        StoreError: If the database cannot be reached
    """
    database = MongoDatabase.from_uri(
        settings.mongodb_uri or "",
        settings.database,
        enable_tracing=settings.enable_tracing,
    )
    try:
        await database.ping()
        orchestrator = MigrationOrchestrator(
            database,
            definition,
            config,
            enable_tracing=settings.enable_tracing,
        )
        return await orchestrator.run()
    finally:
        await database.close()


def print_summary(outcome: MigrationOutcome) -> None:
    state = outcome.state
    stats = state.statistics
    print(f"Migration {state.run_id}: {state.phase.value}")
    print(
        f"  records: {stats.total_source} read, {stats.migrated} migrated, {stats.failed} failed"
    )
    if state.backup_location:
        print(f"  backup: {state.backup_location}")
    if state.backup_collection_name:
        print(f"  previous collection: {state.backup_collection_name}")
    if outcome.report_path:
        print(f"  report: {outcome.report_path}")
    if state.error:
        failed = state.failed_phase.value if state.failed_phase else "-"
        print(f"  error ({failed}): {state.error}")

    if state.phase == MigrationPhase.ROLLBACK_FAILED:
        banner = "!" * 72
        print(
            f"\n{banner}\n"
            f"ROLLBACK FAILED - MANUAL RECOVERY REQUIRED\n"
            f"Collection: {state.source_collection}\n"
            f"Backup location: {state.backup_location}\n"
            f"Backup collection: {state.backup_collection_name or '-'}\n"
            f"Rollback error: {state.rollback_error}\n"
            f"{banner}",
            file=sys.stderr,
        )


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command and return its exit code."""
    args = build_parser().parse_args(argv)

    try:
        settings = resolve_settings(args)
    except MigrationConfigError as e:
        print(f"shadowmigrate: {e.message}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(settings.log_level)

    try:
        definition = load_definition(settings.definition or "")
        config = settings.to_migration_config()
    except MigrationConfigError as e:
        logger.error("Invalid configuration: %s", e.message)
        return EXIT_USAGE

    try:
        outcome = asyncio.run(run_migration(settings, definition, config))
    except StoreError as e:
        logger.error("Cannot reach the database; nothing was changed: %s", e)
        return EXIT_FAILED

    print_summary(outcome)
    return outcome.exit_code


__all__ = ["EXIT_USAGE", "build_parser", "main", "resolve_settings", "run_migration"]
