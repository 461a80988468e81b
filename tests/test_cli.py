"""Tests for the db-backup CLI.

Console output is captured by swapping the module-level rich console for
one that writes to a ``StringIO``.  ``pg_dump`` and ``pg_restore`` are
shell scripts written to ``tmp_path``.
"""

import io
from unittest.mock import AsyncMock

import pytest
from rich.console import Console

import db_backup.cli as cli
from db_backup.adapters.postgres import PostgresTarget
from db_backup.backup.models import BackupResult
from db_backup.cli import BackupRenderer, build_parser, format_duration, format_results_summary, main
from db_backup.errors import DumpFailedError
from db_backup.events import (
    BatchFinished,
    BatchStarted,
    MessageEvent,
    TargetFinished,
    TargetStarted,
)


def _console() -> Console:
    return Console(file=io.StringIO(), width=200, color_system=None)


def _output(console: Console) -> str:
    return console.file.getvalue()


@pytest.fixture
def out(monkeypatch):
    """Captured CLI console; logging setup is left alone."""
    console = _console()
    monkeypatch.setattr(cli, "console", console)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    monkeypatch.delenv("DB_BACKUP_CONFIG", raising=False)
    return console


def _script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return str(path)


def _fake_pg_dump(tmp_path, exit_code=0):
    return _script(
        tmp_path,
        "pg_dump",
        "echo 'pg_dump: dumping contents of table \"public.users\"' >&2\n"
        "echo 'pg_dump: warning: odd [thing]' >&2\n"
        "for last; do :; done\n"
        'echo data > "$last"\n'
        f"exit {exit_code}\n",
    )


def _write_config(tmp_path, pg_dump_cmd):
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir(exist_ok=True)
    path = tmp_path / "db.toml"
    path.write_text(
        "[profiles.main]\n"
        'url = "postgresql://app@localhost:5432/app"\n'
        'description = "Local dev"\n'
        "\n"
        "[profiles.main.settings]\n"
        f'pg_dump_cmd = "{pg_dump_cmd}"\n'
        "\n"
        "[profiles.analytics]\n"
        'url = "postgresql://reporter@db.internal/analytics"\n'
        'provider = "supabase"\n'
        "\n"
        "[backup]\n"
        f'backup_dir = "{backup_dir}"\n'
        'default_targets = ["main"]\n'
    )
    return path


# ============================================================================
# Formatting
# ============================================================================


class TestFormatDuration:
    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (0, "0ms"),
            (0.25, "250ms"),
            (1.0, "1000ms"),
            (1.5, "1.5s"),
            (1.234, "1.23s"),
            (90, "1m 30.0s"),
            (3723.5, "1h 2m 3.5s"),
        ],
    )
    def test_format(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestResultsSummary:
    def test_rows(self):
        console = _console()
        table = format_results_summary(
            [
                BackupResult.ok("main", "/backups/main.db"),
                BackupResult.failed("other", DumpFailedError(2)),
            ]
        )

        console.print(table)
        text = _output(console)

        assert "Backup Summary" in text
        assert "✔" in text and "✘" in text
        assert "/backups/main.db" in text
        assert "pg_dump failed with exit status 2" in text


# ============================================================================
# Renderer
# ============================================================================


class TestBackupRenderer:
    def test_target_started_details(self):
        console = _console()
        renderer = BackupRenderer(console)

        renderer(
            TargetStarted(
                target="main",
                config={"database": "app", "username": "backup_user", "port": "5432"},
                backup_file="/backups/main.db",
            )
        )

        text = _output(console)
        assert "[main] Starting backup at" in text
        assert 'Database:    "app"' in text
        assert 'Username:    "backup_user"' in text
        assert 'Port:        "5432"' in text
        assert "Hostname" not in text
        assert 'Backup File: "/backups/main.db"' in text

    def test_message_levels(self):
        console = _console()
        renderer = BackupRenderer(console)

        renderer(MessageEvent(target="main", level="info", message="chatty"))
        renderer(MessageEvent(target="main", level="warning", message="careful [x]"))
        renderer(MessageEvent(target="main", level="error", message="broken"))

        text = _output(console)
        assert "chatty" not in text
        assert "Warning: [main] careful [x]" in text
        assert "[main] broken" in text

    def test_verbose_shows_info(self):
        console = _console()
        BackupRenderer(console, verbose=True)(
            MessageEvent(target="main", level="info", message="chatty")
        )
        assert "[main] chatty" in _output(console)

    def test_quiet_shows_only_errors(self):
        console = _console()
        renderer = BackupRenderer(console, quiet=True)

        renderer(MessageEvent(target="main", level="warning", message="careful"))
        renderer(TargetStarted(target="main", config={}, backup_file="/b.db"))
        renderer(
            TargetFinished(
                target="main", duration=1.0, result=BackupResult.failed("main", DumpFailedError(1))
            )
        )

        text = _output(console)
        assert "careful" not in text
        assert "Starting backup" not in text
        assert "pg_dump failed with exit status 1" in text

    def test_finished(self):
        console = _console()
        BackupRenderer(console)(
            TargetFinished(
                target="main",
                backup_file="/b.db",
                duration=1.5,
                result=BackupResult.ok("main", "/b.db"),
            )
        )
        assert "[main] Backup completed in 1.5s" in _output(console)

    def test_batch_lines_only_for_multiple_targets(self):
        console = _console()
        renderer = BackupRenderer(console)

        renderer(BatchStarted(targets=["main"]))
        renderer(BatchFinished(targets=["main"], duration=1.0, results=[]))
        assert _output(console) == ""

        renderer(BatchStarted(targets=["main", "other"]))
        renderer(BatchFinished(targets=["main", "other"], duration=2.0, results=[]))
        text = _output(console)
        assert "Starting backups for 2 targets: main, other" in text
        assert "All backups completed in 2.0s" in text


# ============================================================================
# Parser
# ============================================================================


class TestParser:
    def test_backup_defaults(self):
        args = build_parser().parse_args(["backup"])

        assert args.func is cli.cmd_backup
        assert args.target == []
        assert args.backup_dir is None
        assert args.backup_file is None
        assert not args.verbose and not args.quiet

    def test_backup_options(self):
        args = build_parser().parse_args(
            ["--config", "x.toml", "backup", "-t", "main", "-t", "other", "-d", "/b", "-v"]
        )

        assert args.config == "x.toml"
        assert args.target == ["main", "other"]
        assert args.backup_dir == "/b"
        assert args.verbose

    def test_validate(self):
        args = build_parser().parse_args(["validate", "main.db", "--table", "users"])

        assert args.func is cli.cmd_validate
        assert args.file == "main.db"
        assert args.table == ["users"]
        assert args.pg_restore_cmd == "pg_restore"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


# ============================================================================
# Commands
# ============================================================================


class TestBackupCommand:
    @pytest.fixture(autouse=True)
    def no_database(self, monkeypatch):
        monkeypatch.setattr(PostgresTarget, "scalar", AsyncMock(return_value=1))

    def test_success(self, tmp_path, out):
        config = _write_config(tmp_path, _fake_pg_dump(tmp_path))

        assert main(["--config", str(config), "backup"]) == 0

        text = _output(out)
        assert "[main] Starting backup" in text
        assert "Warning: [main] pg_dump: warning: odd [thing]" in text
        assert "Backup Summary" in text
        files = list((tmp_path / "backups").iterdir())
        assert len(files) == 1
        assert files[0].name.startswith("main_backup_")

    def test_backup_file_option(self, tmp_path, out):
        config = _write_config(tmp_path, _fake_pg_dump(tmp_path))
        target_file = tmp_path / "exact.db"

        assert main(["--config", str(config), "backup", "-t", "main", "-o", str(target_file)]) == 0
        assert target_file.read_text() == "data\n"

    @pytest.mark.parametrize(
        "targets", [[], ["-t", "main", "-t", "analytics"]], ids=["default-targets", "two-targets"]
    )
    def test_backup_file_needs_single_target(self, tmp_path, out, targets):
        config = _write_config(tmp_path, _fake_pg_dump(tmp_path))
        target_file = tmp_path / "exact.db"

        code = main(["--config", str(config), "backup", *targets, "-o", str(target_file)])

        assert code == 1
        assert "Configuration Error: --backup-file requires exactly one --target" in _output(out)
        assert not target_file.exists()
        assert list((tmp_path / "backups").iterdir()) == []

    def test_dump_failure(self, tmp_path, out):
        config = _write_config(tmp_path, _fake_pg_dump(tmp_path, exit_code=1))

        assert main(["--config", str(config), "backup"]) == 1
        assert "pg_dump failed with exit status 1" in _output(out)

    def test_quiet_skips_summary(self, tmp_path, out):
        config = _write_config(tmp_path, _fake_pg_dump(tmp_path))

        assert main(["--config", str(config), "backup", "-q"]) == 0
        assert "Backup Summary" not in _output(out)

    def test_unknown_target(self, tmp_path, out):
        config = _write_config(tmp_path, _fake_pg_dump(tmp_path))

        assert main(["--config", str(config), "backup", "-t", "nope"]) == 1
        assert "Configuration Error: 'nope' is not a known backup target" in _output(out)

    def test_missing_config(self, tmp_path, out):
        assert main(["--config", str(tmp_path / "missing.toml"), "backup"]) == 1

        text = _output(out)
        assert "Error: Backup config not found" in text
        assert "[profiles.<name>]" in text

    def test_env_prefix(self, tmp_path, out, monkeypatch):
        config = _write_config(tmp_path, _fake_pg_dump(tmp_path))
        monkeypatch.setenv("APP_DB_BACKUP_CONFIG", str(config))

        assert main(["--env-prefix", "APP_", "backup"]) == 0


class TestTargetsCommand:
    def test_lists_profiles(self, tmp_path, out):
        config = _write_config(tmp_path, "pg_dump")

        assert main(["--config", str(config), "targets"]) == 0

        text = _output(out)
        assert "Backup Targets" in text
        assert "main" in text and "Local dev" in text
        assert "analytics" in text and "supabase" in text
        assert "= backed up by default" in text

    def test_missing_config(self, tmp_path, out):
        assert main(["--config", str(tmp_path / "missing.toml"), "targets"]) == 1


class TestValidateCommand:
    @pytest.fixture
    def pg_restore(self, tmp_path):
        return _script(
            tmp_path,
            "pg_restore",
            "echo '215; 1259 16386 TABLE public users postgres'\n"
            "echo '216; 1259 16390 TABLE public orders postgres'\n",
        )

    def test_valid(self, tmp_path, out, pg_restore):
        archive = tmp_path / "main.db"
        archive.write_bytes(b"PGDMP")

        code = main(["validate", str(archive), "--table", "users", "--pg-restore-cmd", pg_restore])

        assert code == 0
        assert "Archive valid (2 tables)" in _output(out)

    def test_missing_table(self, tmp_path, out, pg_restore):
        archive = tmp_path / "main.db"
        archive.write_bytes(b"PGDMP")

        code = main(
            ["validate", str(archive), "--table", "payments", "--pg-restore-cmd", pg_restore]
        )

        assert code == 1
        assert "payments" in _output(out)

    def test_missing_archive(self, tmp_path, out, pg_restore):
        code = main(["validate", str(tmp_path / "none.db"), "--pg-restore-cmd", pg_restore])

        assert code == 1
        assert "Archive not found" in _output(out)
