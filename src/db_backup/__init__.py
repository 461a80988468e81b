"""db-backup: Layered-config PostgreSQL backups with streamed pg_dump progress.

Resolves per-target backup configuration from the target's own settings,
environment-level overrides, and call-site overrides, then runs ``pg_dump``
as a supervised subprocess and publishes its output as message and
progress events.

Usage:
    from db_backup import backup_targets, build_resolver, load_backup_config
    from db_backup import EventBus, LoggingSink, ProgressEvent
    from db_backup import ConfigError, BackupError, validate_archive
"""

__version__ = "0.1.0"

# Config
from db_backup.config.loader import load_backup_config
from db_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile
from db_backup.config.resolver import ConfigResolver, IndirectCall

# Targets
from db_backup.adapters.base import BackupTarget, DefaultTargetProvider
from db_backup.adapters.postgres import PostgresTarget

# Factory
from db_backup.factory import build_resolver

# Backup
from db_backup.backup.models import BackupResult, ResolvedJob
from db_backup.backup.orchestrator import backup_targets

# Engines
from db_backup.engines.dispatch import select_engine
from db_backup.engines.postgres import PgDumpEngine, list_archive_tables, validate_archive
from db_backup.runner import ProcessRunner

# Events
from db_backup.events import EventBus, LoggingSink, MessageEvent, ProgressEvent

# Errors
from db_backup.errors import BackupError, ConfigError

__all__ = [
    # Config
    "load_backup_config",
    "BackupConfig",
    "BackupSettings",
    "DatabaseProfile",
    "ConfigResolver",
    "IndirectCall",
    # Targets
    "BackupTarget",
    "DefaultTargetProvider",
    "PostgresTarget",
    # Factory
    "build_resolver",
    # Backup
    "BackupResult",
    "ResolvedJob",
    "backup_targets",
    # Engines
    "select_engine",
    "PgDumpEngine",
    "list_archive_tables",
    "validate_archive",
    "ProcessRunner",
    # Events
    "EventBus",
    "LoggingSink",
    "MessageEvent",
    "ProgressEvent",
    # Errors
    "BackupError",
    "ConfigError",
]
