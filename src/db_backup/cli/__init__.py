"""CLI for database backups.

Backs up the databases declared as profiles in ``db.toml`` with
``pg_dump`` and checks finished archives with ``pg_restore --list``.

Usage:
    db-backup backup
    db-backup backup -t main -t analytics --backup-dir /var/backups -v
    db-backup backup -t main -o /tmp/main.db
    db-backup targets
    db-backup validate /var/backups/main.db --table users --table orders
    db-backup --config ./ops/db.toml backup

Commands:
    backup    - Back up the given targets (default: all default targets)
    targets   - List backup targets from the config file
    validate  - Check an archive contains the expected tables
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TaskID, TextColumn
from rich.table import Table

from db_backup.backup.models import BackupResult
from db_backup.backup.orchestrator import backup_targets
from db_backup.config.loader import load_backup_config, resolve_config_path
from db_backup.engines.postgres import validate_archive
from db_backup.errors import ConfigError
from db_backup.events import (
    BackupEvent,
    BatchFinished,
    BatchStarted,
    EventBus,
    MessageEvent,
    ProgressEvent,
    TargetFailed,
    TargetFinished,
    TargetStarted,
)
from db_backup.factory import build_resolver

console = Console()


# ============================================================================
# Formatting helpers
# ============================================================================


def format_duration(seconds: float) -> str:
    """Human-readable duration.

    Example:
        >>> format_duration(3723.5)
        '1h 2m 3.5s'
        >>> format_duration(0.25)
        '250ms'
    """
    return _format_ms(int(round(seconds * 1000)))


def _format_ms(ms: int) -> str:
    if ms > 60 * 60 * 1000:
        return f"{ms // (60 * 60 * 1000)}h {_format_ms(ms % (60 * 60 * 1000))}"
    if ms > 60 * 1000:
        return f"{ms // (60 * 1000)}m {_format_ms(ms % (60 * 1000))}"
    if ms > 1000:
        return f"{round(ms / 1000, 2)}s"
    return f"{ms}ms"


def _timestamp() -> str:
    """Local time as ``HH:MM:SS.mmm``."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def format_results_summary(results: list[BackupResult]) -> Table:
    """Summary table with one row per target."""
    table = Table(title="Backup Summary", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Target")
    table.add_column("Result")

    for result in results:
        if result.success:
            table.add_row(
                "[bold green]✔[/bold green]",
                f"[cyan]{result.target}[/cyan]",
                escape(result.backup_file),
            )
        else:
            table.add_row(
                "[bold red]✘[/bold red]",
                f"[cyan]{result.target}[/cyan]",
                escape(str(result.error)),
            )

    return table


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Send library logs to stderr through rich."""
    level = logging.ERROR if quiet else logging.INFO if verbose else logging.WARNING
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)


# ============================================================================
# Event rendering
# ============================================================================


class BackupRenderer:
    """Renders backup events on the console.

    Info-level dump output is shown only when ``verbose``.  With ``quiet``
    only errors are shown.  Table progress drives one progress bar per
    target.
    """

    def __init__(
        self,
        console: Console,
        progress: Progress | None = None,
        verbose: bool = False,
        quiet: bool = False,
    ) -> None:
        self.console = console
        self.progress = progress
        self.verbose = verbose
        self.quiet = quiet
        self._tasks: dict[str, TaskID] = {}

    def __call__(self, event: BackupEvent) -> None:
        if isinstance(event, MessageEvent):
            self._message(event)
        elif isinstance(event, ProgressEvent):
            self._progress(event)
        elif isinstance(event, TargetStarted):
            self._target_started(event)
        elif isinstance(event, TargetFinished):
            self._finish_task(event.target)
            if event.result.success:
                self._info(
                    f"[cyan]\\[{event.target}][/cyan] Backup completed in "
                    f"{format_duration(event.duration)}"
                )
            else:
                self._error(f"[cyan]\\[{event.target}][/cyan] {escape(str(event.result.error))}")
        elif isinstance(event, TargetFailed):
            self._finish_task(event.target)
        elif isinstance(event, BatchStarted) and len(event.targets) > 1:
            self._info(
                f"Starting backups for {len(event.targets)} targets: "
                f"[cyan]{', '.join(event.targets)}[/cyan]"
            )
        elif isinstance(event, BatchFinished) and len(event.targets) > 1:
            self._info(f"All backups completed in {format_duration(event.duration)}")

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _print(self, text: str, style: str | None = None) -> None:
        # Printing through the progress console keeps the bar below the log
        target_console = self.progress.console if self.progress is not None else self.console
        target_console.print(text, style=style, highlight=False)

    def _info(self, text: str) -> None:
        if not self.quiet:
            self._print(text)

    def _error(self, text: str) -> None:
        self._print(text, style="red")

    def _message(self, event: MessageEvent) -> None:
        prefix = f"[cyan]\\[{event.target}][/cyan] "
        if event.level == "error":
            self._error(prefix + escape(event.message))
        elif event.level == "warning":
            if not self.quiet:
                self._print(f"[yellow]Warning:[/yellow] {prefix}{escape(event.message)}")
        elif self.verbose:
            self._info(prefix + escape(event.message))

    def _target_started(self, event: TargetStarted) -> None:
        config = event.config
        lines = [
            f"[cyan]\\[{event.target}][/cyan] Starting backup at {_timestamp()}",
            f'  Database:    "{escape(str(config.get("database")))}"',
        ]
        for label, key in (("Username", "username"), ("Hostname", "hostname"), ("Port", "port")):
            if config.get(key):
                lines.append(f'  {label + ":":<12} "{escape(str(config[key]))}"')
        lines.append(f'  Backup File: "{escape(event.backup_file)}"')
        self._info("\n".join(lines))

        if self.progress is not None and not self.quiet:
            self._tasks[event.target] = self.progress.add_task(event.target, total=None)

    def _progress(self, event: ProgressEvent) -> None:
        task = self._tasks.get(event.target)
        if self.progress is None or task is None:
            return
        description = f"Table: {escape(event.subject)}" if event.subject else event.target
        self.progress.update(
            task, completed=event.completed, total=event.total, description=description
        )

    def _finish_task(self, target: str) -> None:
        task = self._tasks.pop(target, None)
        if self.progress is not None and task is not None:
            self.progress.remove_task(task)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Args:
        args: Parsed arguments with config, target, backup_dir,
            backup_file, verbose, quiet.

    Returns:
        0 if every target succeeded, 1 otherwise.
    """
    # One exact output path can only hold one target's dump
    if args.backup_file and len(args.target) != 1:
        console.print(
            "[red]Configuration Error: --backup-file requires exactly one --target[/red]"
        )
        return 1

    try:
        config = load_backup_config(
            resolve_config_path(args.config, getattr(args, "env_prefix", ""))
        )
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    resolver = build_resolver(config)

    options: dict[str, Any] = {}
    if args.backup_dir:
        options["backup_dir"] = args.backup_dir
    if args.backup_file:
        options["backup_file"] = args.backup_file

    progress = Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
        transient=True,
        disable=args.quiet,
    )
    events = EventBus()
    events.subscribe(BackupRenderer(console, progress, verbose=args.verbose, quiet=args.quiet))

    try:
        with progress:
            results = await backup_targets(
                args.target or None, resolver=resolver, options=options, events=events
            )
    except ConfigError as e:
        console.print(f"[red]Configuration Error: {escape(str(e))}[/red]")
        return 1

    if not args.quiet:
        console.print()
        console.print(format_results_summary(results))

    return 0 if all(result.success for result in results) else 1


# ============================================================================
# Command handlers
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Back up targets.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        Exit code from async implementation.
    """
    configure_logging(verbose=args.verbose, quiet=args.quiet)
    return asyncio.run(_async_backup(args))


def cmd_targets(args: argparse.Namespace) -> int:
    """List backup targets from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_backup_config(
            resolve_config_path(args.config, getattr(args, "env_prefix", ""))
        )
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    defaults = config.settings.default_targets or list(config.profiles)

    table = Table(title="Backup Targets", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Target")
    table.add_column("Driver")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        is_default = name in defaults
        table.add_row(
            "[bold green]*[/bold green]" if is_default else " ",
            f"[bold cyan]{name}[/bold cyan]" if is_default else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)
    console.print("\n[bold green]*[/bold green] = backed up by default")

    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Check an archive lists cleanly and contains the expected tables.

    Returns:
        0 if the archive is valid, 1 otherwise.
    """
    report = validate_archive(args.file, args.table or [], pg_restore_cmd=args.pg_restore_cmd)

    if report.valid:
        console.print(f"[bold green]v[/bold green] {report.format_report()}")
        return 0

    console.print(f"[bold red]x[/bold red] {report.format_report()}")
    return 1


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for ``db-backup``."""
    parser = argparse.ArgumentParser(
        prog="db-backup",
        description="Back up PostgreSQL databases with pg_dump",
    )

    # Global options
    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: $DB_BACKUP_CONFIG or ./db.toml)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_BACKUP_CONFIG)"
        ),
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # backup command
    p_backup = subparsers.add_parser(
        "backup",
        help="Back up databases",
    )
    p_backup.add_argument(
        "--target",
        "-t",
        action="append",
        default=[],
        help="Target (profile) to back up; repeatable (default: all default targets)",
    )
    p_backup.add_argument(
        "--backup-dir",
        "-d",
        default=None,
        help="Directory for generated backup file names",
    )
    p_backup.add_argument(
        "--backup-file",
        "-o",
        default=None,
        help="Exact output file path (requires exactly one --target)",
    )
    p_backup.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show all pg_dump output",
    )
    p_backup.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Only show errors",
    )
    p_backup.set_defaults(func=cmd_backup)

    # targets command
    p_targets = subparsers.add_parser(
        "targets",
        help="List backup targets",
    )
    p_targets.set_defaults(func=cmd_targets)

    # validate command
    p_validate = subparsers.add_parser(
        "validate",
        help="Check an archive contains the expected tables",
    )
    p_validate.add_argument("file", help="Archive created by pg_dump --format=c")
    p_validate.add_argument(
        "--table",
        action="append",
        default=[],
        help="Table that must be present; repeatable",
    )
    p_validate.add_argument(
        "--pg-restore-cmd",
        default="pg_restore",
        help="pg_restore executable (default: pg_restore)",
    )
    p_validate.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
