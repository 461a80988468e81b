"""Error types for backup configuration and backup operations.

Two disjoint families:

- ``ConfigError`` -- caller misconfiguration detected before any subprocess
  starts (no default targets, bad target specs, bad output paths, missing
  keys).  Raised from ``ConfigResolver``.
- ``BackupError`` -- per-target operation failures (unsupported driver,
  missing executable, bad arguments, failed dump).  Engines return these
  inside a failed ``BackupResult`` instead of raising them.

Every error accepts an explicit ``message=`` which wins over the generated
message.

Usage:
    from db_backup.errors import ConfigError, DumpFailedError

    try:
        results = await backup_targets(resolver=resolver)
    except ConfigError as e:
        print(f"Configuration error: {e}")
"""

from typing import Any


def _name(target: Any) -> str:
    """Display name for a target object, name string, or ``None``."""
    return getattr(target, "name", None) or repr(target)


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigError(Exception):
    """Base class for backup configuration errors.

    Attributes:
        reason: Short machine-readable reason (e.g. ``"invalid_backup_dir"``).
        target: Target the error relates to, if any.
        value: Offending value, if any.
    """

    reason: str = "config_error"

    def __init__(
        self,
        message: str | None = None,
        *,
        target: Any = None,
        value: Any = None,
        reason: str | None = None,
    ) -> None:
        if reason is not None:
            self.reason = reason
        self.target = target
        self.value = value
        super().__init__(message if message is not None else self.default_message())

    def default_message(self) -> str:
        return f"configuration error ({self.reason})"


class NoDefaultTargetsError(ConfigError):
    """No target list given and none could be discovered."""

    reason = "no_default_targets"

    def default_message(self) -> str:
        if self.reason == "no_default_targets_in_project":
            return (
                "no default targets found, please configure default_targets in the [backup] "
                "section or declare profiles in the config file. Example:\n\n"
                "    [backup]\n"
                '    default_targets = ["main"]\n'
            )
        return (
            "no default targets found, please configure default_targets in the [backup] "
            "section. This is required when no target discovery is available. Example:\n\n"
            "    [backup]\n"
            '    default_targets = ["main"]\n'
        )


class InvalidTargetSpecError(ConfigError):
    """A target list entry is neither a target nor a (target, overrides) pair."""

    reason = "invalid_target_spec"

    def default_message(self) -> str:
        return (
            "invalid target specification, expected a target or (target, overrides), "
            f"got: {self.value!r}"
        )


class InvalidTargetError(ConfigError):
    """The target does not implement the target contract (or is unknown)."""

    reason = "invalid_target"

    def default_message(self) -> str:
        return f"{_name(self.target)} is not a valid backup target"


class InvalidTargetConfigError(ConfigError):
    """The target's ``config()`` returned something other than a mapping or pair list."""

    reason = "invalid_target_config"

    def default_message(self) -> str:
        return (
            f"invalid target config returned from {_name(self.target)}.config(), "
            f"got: {self.value!r}"
        )


class InvalidBackupFileError(ConfigError):
    """``backup_file`` resolved to something other than a string."""

    reason = "invalid_backup_file"

    def default_message(self) -> str:
        return f"invalid backup file path, expected a string, got {self.value!r}"


class InvalidBackupDirError(ConfigError):
    """``backup_dir`` resolved to something other than a string."""

    reason = "invalid_backup_dir"

    def default_message(self) -> str:
        return f"invalid backup directory path, expected a string, got {self.value!r}"


class NoOutputDirSetError(ConfigError):
    """Neither ``backup_file`` nor ``backup_dir`` is configured anywhere."""

    reason = "no_backup_dir_set"

    def default_message(self) -> str:
        return (
            "no backup directory is set, so a backup file cannot be generated, please set "
            "the backup_dir option or specify a backup_file in the target configuration. "
            "Example:\n\n"
            "    [backup]\n"
            '    backup_dir = "/path/to/backup/dir"\n'
        )


class MissingKeyError(ConfigError):
    """A required key is absent from options, config, and settings defaults."""

    reason = "missing_key"

    def __init__(
        self,
        key: str,
        *,
        options: dict | None = None,
        config: dict | None = None,
        defaults: dict | None = None,
        message: str | None = None,
    ) -> None:
        self.key = key
        self.options = dict(options or {})
        self.config = dict(config or {})
        self.defaults = dict(defaults or {})
        super().__init__(message, value=key)

    def default_message(self) -> str:
        return (
            f"missing required configuration key {self.key!r} "
            f"(options: {sorted(self.options)}, config: {sorted(self.config)}, "
            f"defaults: {sorted(self.defaults)})"
        )


# ============================================================================
# Operation Errors
# ============================================================================


class BackupError(Exception):
    """Base class for per-target backup failures.

    Attributes:
        reason: Short machine-readable reason (e.g. ``"pg_dump_failed"``).
        target: Target the error relates to, if any.
        term: Extra diagnostic value (exit status, command name, ...).
    """

    reason: str = "backup_error"

    def __init__(
        self,
        message: str | None = None,
        *,
        target: Any = None,
        term: Any = None,
        reason: str | None = None,
    ) -> None:
        if reason is not None:
            self.reason = reason
        self.target = target
        self.term = term
        super().__init__(message if message is not None else self.default_message())

    def default_message(self) -> str:
        if self.target is None:
            return f"error {self.reason!r}"
        return f"error ({self.reason!r}) for target {_name(self.target)}"


class UnsupportedDriverError(BackupError):
    """No built-in engine exists for the target's driver kind."""

    reason = "unsupported_driver"

    def __init__(self, target: Any, driver: Any, message: str | None = None) -> None:
        self.driver = driver
        super().__init__(message, target=target, term=driver)

    def default_message(self) -> str:
        return f"unsupported driver {self.driver!r} for target {_name(self.target)}"


class ExecutableNotFoundError(BackupError):
    """The dump executable is not on the search path."""

    reason = "pg_dump_cmd_not_found"

    def default_message(self) -> str:
        return f"pg_dump command {self.term!r} not found in system PATH"


class InvalidArgumentsError(BackupError):
    """Caller-supplied dump arguments collide with the output file flag."""

    reason = "pg_dump_args_invalid"

    def default_message(self) -> str:
        return "pg_dump_args cannot contain -f or --file argument"


class TargetNotSpecifiedError(BackupError):
    """The ``database`` setting is missing or empty."""

    reason = "database_not_specified"

    def default_message(self) -> str:
        return "database is not specified in target config"


class InvalidPasswordError(BackupError):
    """``password`` is set but is not a string."""

    reason = "invalid_password_value"

    def default_message(self) -> str:
        return "password must be a string if provided"


class CredentialsFileError(BackupError):
    """The ephemeral credentials file could not be created."""

    reason = "credentials_file_failed"

    def default_message(self) -> str:
        return f"could not create credentials file: {self.term}"


class DumpFailedError(BackupError):
    """The dump process exited with a non-zero status."""

    reason = "pg_dump_failed"

    def __init__(self, exit_status: int, *, target: Any = None, message: str | None = None) -> None:
        self.exit_status = exit_status
        super().__init__(message, target=target, term=exit_status)

    def default_message(self) -> str:
        return f"pg_dump failed with exit status {self.exit_status}"
