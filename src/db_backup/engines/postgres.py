"""PostgreSQL backup engine built on ``pg_dump``.

``PgDumpEngine`` runs ``pg_dump`` as a supervised subprocess.  Connection
settings reach the child through libpq environment variables:

- ``PGDATABASE`` from ``database`` (required, non-empty).
- ``PGHOST`` from ``socket``, ``socket_dir`` or ``hostname``, first set wins.
- ``PGPORT`` from ``port``, defaulting to ``5432``.
- ``PGUSER`` from ``username``.
- ``PGOPTIONS`` from ``options``.
- ``PGPASSFILE`` pointing at an ephemeral credentials file when
  ``password`` is set.  The file is removed when the dump finishes.

Engine-specific config keys:

- ``pg_dump_cmd``: Executable to run.  Defaults to ``"pg_dump"``.
- ``pg_dump_args``: Extra arguments.  Defaults to
  ``["--verbose", "--format=c", "--no-owner"]``.  ``--verbose`` is what
  makes per-table progress visible.

Also provides ``list_archive_tables()`` and ``validate_archive()`` for
checking a finished custom-format archive with ``pg_restore --list``.

Usage:
    from db_backup.engines.postgres import PgDumpEngine, validate_archive

    engine = PgDumpEngine(events=bus)
    result = await engine.backup(target, config, "/backups/main.db", {})

    report = validate_archive("/backups/main.db", ["users", "orders"])
    print(report.format_report())
"""

import asyncio
import logging
import os
import re
import shutil
import subprocess
import tempfile
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from typing import Any

from db_backup.adapters.base import BackupTarget
from db_backup.backup.models import ArchiveValidationResult, BackupResult, target_name
from db_backup.errors import (
    BackupError,
    CredentialsFileError,
    DumpFailedError,
    ExecutableNotFoundError,
    InvalidArgumentsError,
    InvalidPasswordError,
    TargetNotSpecifiedError,
)
from db_backup.events import EventBus, MessageEvent, ProgressEvent, classify_line
from db_backup.runner import ProcessRunner

logger = logging.getLogger(__name__)

DEFAULT_PG_DUMP_ARGS = ["--verbose", "--format=c", "--no-owner"]
DEFAULT_PORT = "5432"

# User tables only; system schemas are excluded
TABLE_COUNT_SQL = (
    "SELECT count(tablename) FROM pg_tables "
    "WHERE schemaname != 'information_schema' AND schemaname NOT LIKE 'pg_%'"
)

PROGRESS_MARKER = "pg_dump: dumping contents of table"
_TABLE_NAME_RE = re.compile(r'pg_dump: dumping contents of table "([^"]+)"')

# "215; 1259 16386 TABLE public users postgres"
_ARCHIVE_TABLE_RE = re.compile(r"^\d+;\s+(?:\d+\s+)?\d+\s+TABLE\s(?:(\S+)\s)?(\S+)\s(\S+)$")

_FILE_FLAGS = ("-f", "--file")


# ============================================================================
# Helpers
# ============================================================================


def trim_table_name(name: str) -> str:
    """Strip whitespace, quotes and a leading ``public.`` schema."""
    return name.strip().strip('"').removeprefix("public.")


def _escape_pgpass(value: str) -> str:
    return value.replace("\\", "\\\\").replace(":", "\\:")


@contextmanager
def pgpass_file(password: str, *, target: Any = None) -> Iterator[str]:
    """Write a ``*:*:*:*:<password>`` credentials file and yield its path.

    The file is created with mode 0600 and removed when the block exits,
    however it exits.

    Raises:
        CredentialsFileError: If the file cannot be created or written.
    """
    try:
        fd, path = tempfile.mkstemp(prefix="db_backup_", suffix=".pgpass")
    except OSError as e:
        raise CredentialsFileError(target=target, term=e) from e

    try:
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(f"*:*:*:*:{_escape_pgpass(password)}\n")
            os.chmod(path, 0o600)
        except OSError as e:
            raise CredentialsFileError(target=target, term=e) from e
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


def _has_file_flag(args: Iterable[str]) -> bool:
    return any(arg in _FILE_FLAGS or arg.startswith("--file=") for arg in args)


# ============================================================================
# Engine
# ============================================================================


class PgDumpEngine:
    """Backs up PostgreSQL targets with ``pg_dump``.

    Args:
        events: Bus receiving ``MessageEvent`` and ``ProgressEvent``.  A
            private bus is used when omitted.
        runner: Subprocess runner; a default ``ProcessRunner`` when omitted.
        table_count_timeout: Seconds allowed for the table count query.
    """

    def __init__(
        self,
        events: EventBus | None = None,
        runner: ProcessRunner | None = None,
        table_count_timeout: float = 10.0,
    ) -> None:
        self.events = events or EventBus()
        self.runner = runner or ProcessRunner()
        self.table_count_timeout = table_count_timeout

    async def backup(
        self,
        target: BackupTarget,
        config: dict[str, Any],
        backup_file: str,
        options: dict[str, Any],
    ) -> BackupResult:
        """Dump ``target`` into ``backup_file``.

        Operation errors (missing executable, bad arguments, missing
        database, bad password, credentials file failure, non-zero exit)
        come back as a failed result.  Exceptions raised by event handlers
        propagate.
        """
        try:
            executable = self._executable(target, config)
            args = self._args(target, config, backup_file)
            env = self._env(target, config)
            password = self._password(target, config)

            with ExitStack() as stack:
                if password is not None:
                    env["PGPASSFILE"] = stack.enter_context(pgpass_file(password, target=target))

                total = await self._table_count(target)
                status = await self.runner.run(
                    executable, args, env, self._line_handler(target, total)
                )
        except BackupError as e:
            logger.debug("Backup of %s failed before completion: %s", target_name(target), e)
            return BackupResult.failed(target, e)

        if status != 0:
            return BackupResult.failed(target, DumpFailedError(status, target=target))
        return BackupResult.ok(target, backup_file)

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    @staticmethod
    def _executable(target: BackupTarget, config: dict[str, Any]) -> str:
        cmd = config.get("pg_dump_cmd") or "pg_dump"
        executable = shutil.which(cmd)
        if executable is None:
            raise ExecutableNotFoundError(target=target, term=cmd)
        return executable

    @staticmethod
    def _args(target: BackupTarget, config: dict[str, Any], backup_file: str) -> list[str]:
        args = config.get("pg_dump_args")
        args = list(DEFAULT_PG_DUMP_ARGS if args is None else args)
        if _has_file_flag(args):
            raise InvalidArgumentsError(target=target)
        # --no-password keeps pg_dump from ever prompting
        return [*args, "--no-password", "--file", backup_file]

    @staticmethod
    def _env(target: BackupTarget, config: dict[str, Any]) -> dict[str, str | None]:
        database = config.get("database")
        if not isinstance(database, str) or not database:
            raise TargetNotSpecifiedError(target=target)

        host = config.get("socket") or config.get("socket_dir") or config.get("hostname")
        port = config.get("port") or DEFAULT_PORT
        username = config.get("username")
        pg_options = config.get("options")

        return {
            "PGDATABASE": database,
            "PGHOST": str(host) if host else None,
            "PGPORT": str(port),
            "PGUSER": str(username) if username else None,
            "PGOPTIONS": str(pg_options) if pg_options else None,
        }

    @staticmethod
    def _password(target: BackupTarget, config: dict[str, Any]) -> str | None:
        password = config.get("password")
        if password is None or password == "":
            return None
        if not isinstance(password, str):
            raise InvalidPasswordError(target=target)
        # pgpass is line-based and has no escape for line breaks
        if "\n" in password or "\r" in password:
            raise InvalidPasswordError(
                target=target, message="password cannot contain line breaks"
            )
        return password

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def _table_count(self, target: BackupTarget) -> int | None:
        """Number of user tables, or ``None`` if it cannot be determined."""
        try:
            count = await asyncio.wait_for(
                target.scalar(TABLE_COUNT_SQL), self.table_count_timeout
            )
        except Exception as e:
            logger.warning(
                "Could not count tables for %s, progress will not be reported: %s",
                target_name(target),
                e,
            )
            return None
        return None if count is None else int(count)

    def _line_handler(self, target: BackupTarget, total: int | None):
        name = target_name(target)
        completed = 0

        def on_line(line: str) -> None:
            nonlocal completed
            self.events.emit(MessageEvent(target=name, level=classify_line(line), message=line))

            if total is not None and line.startswith(PROGRESS_MARKER):
                match = _TABLE_NAME_RE.search(line)
                completed += 1
                self.events.emit(
                    ProgressEvent(
                        target=name,
                        completed=completed,
                        total=total,
                        subject=trim_table_name(match.group(1)) if match else None,
                    )
                )

        return on_line


# ============================================================================
# Archive inspection
# ============================================================================


def list_archive_tables(path: str | os.PathLike, *, pg_restore_cmd: str = "pg_restore") -> list[str]:
    """List the table names in a custom-format archive.

    Runs ``pg_restore --list`` and parses its TABLE entries.  Schema names
    are dropped.

    Raises:
        ExecutableNotFoundError: If ``pg_restore_cmd`` is not on the PATH.
        BackupError: If ``pg_restore`` exits with a non-zero status.
    """
    executable = shutil.which(pg_restore_cmd)
    if executable is None:
        raise ExecutableNotFoundError(
            term=pg_restore_cmd,
            reason="pg_restore_cmd_not_found",
            message=f"pg_restore command {pg_restore_cmd!r} not found in system PATH",
        )

    completed = subprocess.run(
        [executable, "--list", os.fspath(path)],
        capture_output=True,
        text=True,
        check=False,
    )
    if completed.returncode != 0:
        raise BackupError(
            f"pg_restore --list failed with exit status {completed.returncode}: "
            f"{completed.stderr.strip()}",
            term=completed.returncode,
            reason="pg_restore_failed",
        )

    tables: list[str] = []
    for line in completed.stdout.splitlines():
        match = _ARCHIVE_TABLE_RE.match(line.strip())
        if match:
            tables.append(match.group(2))
    return tables


def validate_archive(
    path: str | os.PathLike,
    expected_tables: Iterable[str],
    *,
    pg_restore_cmd: str = "pg_restore",
) -> ArchiveValidationResult:
    """Check that an archive exists, is non-empty, and contains ``expected_tables``.

    This function is sync; it only reads a local file and runs
    ``pg_restore --list``.

    Example:
        report = validate_archive("backups/main.db", ["users"])
        if not report.valid:
            print(report.format_report())
    """
    path_str = os.fspath(path)
    expected = list(expected_tables)

    if not os.path.isfile(path_str):
        return ArchiveValidationResult(
            path=path_str, valid=False, errors=[f"Archive not found: {path_str}"]
        )
    if os.path.getsize(path_str) == 0:
        return ArchiveValidationResult(
            path=path_str, valid=False, errors=[f"Archive is empty: {path_str}"]
        )

    try:
        tables = list_archive_tables(path_str, pg_restore_cmd=pg_restore_cmd)
    except BackupError as e:
        return ArchiveValidationResult(path=path_str, valid=False, errors=[str(e)])

    present = set(tables)
    missing = [table for table in expected if table not in present]
    return ArchiveValidationResult(
        path=path_str,
        valid=not missing,
        tables=tables,
        missing_tables=missing,
    )
