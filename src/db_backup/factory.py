"""Backup target and resolver factory.

Turns the profiles in ``db.toml`` into ``PostgresTarget`` objects and wires
them into a ``ConfigResolver``:

- ``build_registry()``: one target per profile, keyed by profile name.
- ``ProfileTargetProvider``: discovers every profile as a default target
  when ``[backup] default_targets`` is not set.
- ``build_resolver()``: the resolver the CLI and library callers use.

Usage:
    from db_backup.config import load_backup_config
    from db_backup.factory import build_resolver

    resolver = build_resolver(load_backup_config())
    results = await backup_targets(["main"], resolver=resolver)
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from db_backup.adapters.postgres import PostgresTarget
from db_backup.config.loader import load_backup_config
from db_backup.config.models import BackupConfig
from db_backup.config.resolver import ConfigResolver


# ============================================================================
# Targets
# ============================================================================


def build_registry(config: BackupConfig, **engine_kwargs: Any) -> dict[str, PostgresTarget]:
    """Create one ``PostgresTarget`` per profile.

    Args:
        config: Loaded backup configuration.
        **engine_kwargs: Forwarded to each target's SQLAlchemy engine.

    Returns:
        Dict mapping profile name to target.
    """
    return {
        name: PostgresTarget(name, profile, **engine_kwargs)
        for name, profile in config.profiles.items()
    }


class ProfileTargetProvider:
    """Default targets discovered from the config file's profiles.

    Returns profile names in file order.  An empty list when the file
    declares no profiles.
    """

    def __init__(self, config: BackupConfig) -> None:
        self._config = config

    def default_targets(self) -> list[str]:
        return list(self._config.profiles)


# ============================================================================
# Resolver
# ============================================================================


def build_resolver(
    config: BackupConfig | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
    **engine_kwargs: Any,
) -> ConfigResolver:
    """Build a ``ConfigResolver`` over the profiles in ``config``.

    Args:
        config: Loaded backup configuration.  Loaded from the default
            location when ``None``.
        clock: Time source for default backup file names.
        **engine_kwargs: Forwarded to each target's SQLAlchemy engine.

    Returns:
        Resolver with a registry of all profiles and profile discovery as
        the default target provider.

    Raises:
        FileNotFoundError: If ``config`` is ``None`` and no config file exists.
    """
    if config is None:
        config = load_backup_config()

    return ConfigResolver(
        config.settings,
        registry=build_registry(config, **engine_kwargs),
        provider=ProfileTargetProvider(config),
        clock=clock,
    )
