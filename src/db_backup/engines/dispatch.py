"""Engine selection for backup targets.

An explicit ``engine`` key in the target's config always wins.  It may be:

- an engine instance (anything with an async ``backup()`` method),
- an engine class, instantiated with ``events=``,
- an import string ``"package.module:ClassName"``, so it can be set from
  TOML.

Otherwise the target's ``driver`` selects a built-in engine.

Usage:
    from db_backup.engines.dispatch import select_engine

    engine = select_engine(target, config, events=bus)
    result = await engine.backup(target, config, backup_file, options)
"""

import importlib
from typing import Any

from db_backup.adapters.base import BackupTarget
from db_backup.engines.base import BackupEngine
from db_backup.engines.postgres import PgDumpEngine
from db_backup.errors import UnsupportedDriverError
from db_backup.events import EventBus

# driver kind -> engine class
BUILTIN_ENGINES: dict[str, type] = {
    "postgres": PgDumpEngine,
    "postgresql": PgDumpEngine,
    "supabase": PgDumpEngine,
}


def load_engine_class(path: str) -> type:
    """Import ``"package.module:ClassName"`` and return the class.

    Raises:
        ValueError: If ``path`` is not in ``module:Name`` form.
        ImportError: If the module cannot be imported.
        AttributeError: If the module has no such attribute.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Engine path must look like 'package.module:ClassName', got {path!r}")
    return getattr(importlib.import_module(module_name), attr)


def select_engine(
    target: BackupTarget, config: dict[str, Any], *, events: EventBus | None = None
) -> BackupEngine:
    """Return the engine that should back up ``target``.

    Raises:
        UnsupportedDriverError: If no ``engine`` is configured and the
            target's driver has no built-in engine.
    """
    override = config.get("engine")
    if override is not None:
        if isinstance(override, str):
            override = load_engine_class(override)
        if isinstance(override, type):
            return override(events=events)
        return override

    driver = getattr(target, "driver", None)
    engine_cls = BUILTIN_ENGINES.get(driver) if isinstance(driver, str) else None
    if engine_cls is None:
        raise UnsupportedDriverError(target, driver)
    return engine_cls(events=events)
