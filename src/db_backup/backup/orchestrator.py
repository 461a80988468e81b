"""Batch backup of one or more targets.

``backup_targets()`` resolves the target list, then backs up each target in
order, one subprocess at a time.  It always returns one ``BackupResult`` per
target; only an invalid target list raises.

Usage:
    from db_backup.backup.orchestrator import backup_targets
    from db_backup.factory import build_resolver

    resolver = build_resolver(load_backup_config())

    # All default targets
    results = await backup_targets(resolver=resolver)

    # Specific targets with call-site overrides
    results = await backup_targets(
        ["main", ("analytics", {"backup_file": "/tmp/analytics.db"})],
        resolver=resolver,
        options={"backup_dir": "/var/backups"},
    )
"""

import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

from db_backup.adapters.base import BackupTarget
from db_backup.backup.models import BackupResult, ResolvedJob, target_name
from db_backup.config.resolver import ConfigResolver
from db_backup.engines.dispatch import select_engine
from db_backup.errors import ConfigError, UnsupportedDriverError
from db_backup.events import (
    BatchFailed,
    BatchFinished,
    BatchStarted,
    EventBus,
    TargetFailed,
    TargetFinished,
    TargetStarted,
)

logger = logging.getLogger(__name__)


async def backup_targets(
    targets: Sequence[Any] | None = None,
    *,
    resolver: ConfigResolver,
    options: Mapping[str, Any] | None = None,
    events: EventBus | None = None,
) -> list[BackupResult]:
    """Back up every target in ``targets`` (or the default targets).

    Args:
        targets: Target specs: names, target objects, or
            ``(target, overrides)`` pairs.  Empty or ``None`` means the
            default targets.
        resolver: Resolves the target list, configs, and output paths.
        options: Call-level options, consulted before target config for
            single-key lookups such as ``backup_dir``.
        events: Bus receiving lifecycle, message, and progress events.

    Returns:
        One ``BackupResult`` per target, in input order.

    Raises:
        ConfigError: If the target list cannot be resolved.  No backup is
            attempted in that case.
    """
    options = dict(options or {})
    events = events or EventBus()

    resolved = resolver.resolve_target_list(targets)
    names = [target_name(target) for target, _ in resolved]

    events.emit(BatchStarted(targets=names, options=options))
    started = time.monotonic()

    results: list[BackupResult] = []
    try:
        for target, config in resolved:
            result = await backup_target(
                target, config, resolver=resolver, options=options, events=events
            )
            results.append(result)
    except Exception as e:
        events.emit(BatchFailed(targets=names, duration=time.monotonic() - started, error=e))
        raise

    events.emit(
        BatchFinished(targets=names, duration=time.monotonic() - started, results=results)
    )
    return results


async def backup_target(
    target: BackupTarget,
    config: dict[str, Any],
    *,
    resolver: ConfigResolver,
    options: dict[str, Any],
    events: EventBus,
) -> BackupResult:
    """Back up one already-resolved target.

    Output path errors and unsupported drivers become a failed result.
    Exceptions from caller-supplied callables (path functions, event
    handlers, custom engines) propagate unchanged.  Once ``TargetStarted``
    has been emitted, a ``TargetFailed`` event precedes the exception.
    """
    name = target_name(target)

    try:
        backup_file = resolver.resolve_output_path(target, config, options)
    except ConfigError as e:
        logger.warning("Skipping %s: %s", name, e)
        return BackupResult.failed(target, e)

    job = ResolvedJob(target=target, config=config, backup_file=backup_file, options=options)
    events.emit(TargetStarted(target=name, config=job.config, backup_file=job.backup_file))
    started = time.monotonic()

    try:
        try:
            engine = select_engine(job.target, job.config, events=events)
        except UnsupportedDriverError as e:
            result = BackupResult.failed(job.target, e)
        else:
            result = await engine.backup(job.target, job.config, job.backup_file, job.options)
    except Exception as e:
        events.emit(TargetFailed(target=name, duration=time.monotonic() - started, error=e))
        raise

    events.emit(
        TargetFinished(
            target=name,
            backup_file=result.backup_file,
            duration=time.monotonic() - started,
            result=result,
        )
    )
    return result
