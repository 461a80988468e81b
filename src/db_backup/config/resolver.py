"""Layered configuration resolution for backup targets.

Configuration for one target is merged from three sources, each overriding
the previous one key-for-key (shallow merge):

1. The target's own ``config()``.
2. Environment-level overrides for that target
   (``BackupSettings.overrides[target.name]``).
3. Call-site overrides from a ``(target, overrides)`` spec.

Single-key lookups (``fetch``) consult call options, then the merged
config, then the process-wide ``BackupSettings.defaults``.

Path settings (``backup_file``, ``backup_dir``) may be a literal string, a
callable taking ``(target, config)``, or an ``IndirectCall`` naming a
module-level function.  Exceptions raised by such callables propagate
unchanged.

Usage:
    from db_backup.config.resolver import ConfigResolver

    resolver = ConfigResolver(settings, registry={"main": target})
    for target, config in resolver.resolve_target_list(["main"]):
        path = resolver.resolve_output_path(target, config, {"backup_dir": "/tmp"})
"""

import importlib
import os
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from db_backup.adapters.base import BackupTarget, DefaultTargetProvider
from db_backup.config.models import BackupSettings
from db_backup.errors import (
    ConfigError,
    InvalidBackupDirError,
    InvalidBackupFileError,
    InvalidTargetConfigError,
    InvalidTargetError,
    InvalidTargetSpecError,
    MissingKeyError,
    NoDefaultTargetsError,
    NoOutputDirSetError,
)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()
"""Returned by ``ConfigResolver.fetch`` when no source defines the key."""


# ============================================================================
# Path value variants
# ============================================================================


@dataclass(frozen=True)
class LiteralPath:
    """A path given directly in configuration."""

    value: Any

    def resolve(self, target: BackupTarget, config: dict[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class CallbackPath:
    """A callable invoked as ``func(target, config)``."""

    func: Callable[..., Any]

    def resolve(self, target: BackupTarget, config: dict[str, Any]) -> Any:
        return self.func(target, config)


@dataclass(frozen=True)
class IndirectCall:
    """A module-level function named by import path.

    Invoked as ``module.function(target, config, *args)``.  Can be written
    in TOML as ``{module = "...", function = "...", args = [...]}``.
    """

    module: str
    function: str
    args: tuple = ()

    def resolve(self, target: BackupTarget, config: dict[str, Any]) -> Any:
        func = getattr(importlib.import_module(self.module), self.function)
        return func(target, config, *self.args)


PathValue = LiteralPath | CallbackPath | IndirectCall


def path_value(raw: Any) -> PathValue:
    """Classify a raw configuration value into a path variant."""
    if isinstance(raw, (LiteralPath, CallbackPath, IndirectCall)):
        return raw
    if isinstance(raw, Mapping) and {"module", "function"} <= set(raw):
        return IndirectCall(raw["module"], raw["function"], tuple(raw.get("args", ())))
    if (
        isinstance(raw, tuple)
        and len(raw) == 3
        and isinstance(raw[0], str)
        and isinstance(raw[1], str)
        and isinstance(raw[2], (list, tuple))
    ):
        return IndirectCall(raw[0], raw[1], tuple(raw[2]))
    if callable(raw):
        return CallbackPath(raw)
    return LiteralPath(raw)


def _path_string(value: Any, error: type[ConfigError], target: BackupTarget) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    raise error(target=target, value=value)


# ============================================================================
# Naming helpers
# ============================================================================


def slugify(name: str) -> str:
    """Lower-case a dotted identifier and join its segments with ``_``.

    Example:
        >>> slugify("My.App.Repo")
        'my_app_repo'
    """
    segments = [re.sub(r"[^a-z0-9]+", "_", seg.lower()).strip("_") for seg in name.split(".")]
    return "_".join(seg for seg in segments if seg)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Resolver
# ============================================================================


class ConfigResolver:
    """Merges configuration sources and resolves backup output paths.

    All methods are pure over the resolver's inputs: the settings snapshot
    is frozen and nothing is cached between calls.

    Args:
        settings: Process-wide settings snapshot.
        registry: Named targets, used to look up string target specs
            (including ``settings.default_targets``).
        provider: Discovers targets when none are requested and
            ``settings.default_targets`` is not set.
        clock: Returns the current time for default backup file names.
    """

    def __init__(
        self,
        settings: BackupSettings | None = None,
        *,
        registry: Mapping[str, BackupTarget] | None = None,
        provider: DefaultTargetProvider | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or BackupSettings()
        self.registry = dict(registry or {})
        self.provider = provider
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Key lookups
    # ------------------------------------------------------------------

    def fetch(self, config: Mapping[str, Any], options: Mapping[str, Any], key: str) -> Any:
        """Return the first value for ``key`` in options, config, then defaults.

        Returns ``MISSING`` when no source defines the key.
        """
        for source in (options, config, self.settings.defaults):
            if key in source:
                return source[key]
        return MISSING

    def fetch_required(
        self, config: Mapping[str, Any], options: Mapping[str, Any], key: str
    ) -> Any:
        """Like ``fetch``, but raises ``MissingKeyError`` if the key is not found."""
        value = self.fetch(config, options, key)
        if value is MISSING:
            raise MissingKeyError(
                key,
                options=dict(options),
                config=dict(config),
                defaults=self.settings.defaults,
            )
        return value

    def get(
        self, config: Mapping[str, Any], options: Mapping[str, Any], key: str, default: Any = None
    ) -> Any:
        """Like ``fetch``, but returns ``default`` if the key is not found."""
        value = self.fetch(config, options, key)
        return default if value is MISSING else value

    # ------------------------------------------------------------------
    # Target list
    # ------------------------------------------------------------------

    def resolve_target_list(
        self, specs: Sequence[Any] | None = None
    ) -> list[tuple[BackupTarget, dict[str, Any]]]:
        """Resolve target specs into ``(target, merged_config)`` pairs.

        An empty or missing ``specs`` falls back to the default targets.
        Stops at the first invalid entry.

        Raises:
            NoDefaultTargetsError: If no specs are given and none can be found.
            InvalidTargetSpecError: If ``specs`` is a string or an entry has an
                unsupported shape.
            InvalidTargetError: If a target is unknown or lacks ``config()``/``driver``.
            InvalidTargetConfigError: If ``config()`` returns an unsupported shape.
        """
        if isinstance(specs, str):
            raise InvalidTargetSpecError(
                value=specs,
                message=f"target list must be a list of target specs, got a string: {specs!r}",
            )
        if not specs:
            specs = self.default_target_specs()
        return [self._merge_target_config(spec) for spec in specs]

    def default_target_specs(self) -> list[Any]:
        """Default targets from settings, else from the provider."""
        if self.settings.default_targets:
            return list(self.settings.default_targets)

        if self.provider is None:
            raise NoDefaultTargetsError()

        discovered = list(self.provider.default_targets())
        if not discovered:
            raise NoDefaultTargetsError(reason="no_default_targets_in_project")
        return discovered

    def _merge_target_config(self, spec: Any) -> tuple[BackupTarget, dict[str, Any]]:
        ref, call_overrides = self._normalize_spec(spec)
        target = self._lookup(ref)
        base = self._target_config(target)
        env_overrides = self.settings.overrides.get(target.name, {})
        return target, {**base, **env_overrides, **call_overrides}

    @staticmethod
    def _normalize_spec(spec: Any) -> tuple[Any, dict[str, Any]]:
        if isinstance(spec, tuple) and len(spec) == 2:
            ref, overrides = spec
            if not (isinstance(ref, str) or hasattr(ref, "name")):
                raise InvalidTargetSpecError(value=spec)
            if isinstance(overrides, Mapping):
                return ref, dict(overrides)
            if isinstance(overrides, (list, tuple)):
                try:
                    return ref, dict(overrides)
                except (TypeError, ValueError):
                    raise InvalidTargetSpecError(value=spec) from None
            raise InvalidTargetSpecError(value=spec)
        if isinstance(spec, str) or hasattr(spec, "name"):
            return spec, {}
        raise InvalidTargetSpecError(value=spec)

    def _lookup(self, ref: Any) -> BackupTarget:
        if isinstance(ref, str):
            if ref not in self.registry:
                raise InvalidTargetError(
                    target=ref, message=f"{ref!r} is not a known backup target"
                )
            return self.registry[ref]
        return ref

    @staticmethod
    def _target_config(target: Any) -> dict[str, Any]:
        accessor = getattr(target, "config", None)
        if not callable(accessor) or not isinstance(getattr(target, "driver", None), str):
            raise InvalidTargetError(target=target)

        raw = accessor()
        if isinstance(raw, Mapping):
            return dict(raw)
        if isinstance(raw, (list, tuple)):
            try:
                return dict(raw)
            except (TypeError, ValueError):
                raise InvalidTargetConfigError(target=target, value=raw) from None
        raise InvalidTargetConfigError(target=target, value=raw)

    # ------------------------------------------------------------------
    # Output paths
    # ------------------------------------------------------------------

    def resolve_output_path(
        self, target: BackupTarget, config: Mapping[str, Any], options: Mapping[str, Any]
    ) -> str:
        """Resolve the backup file path for one target.

        Uses ``backup_file`` if set, otherwise
        ``{backup_dir}/{slug}_backup_{timestamp}.db``.

        Raises:
            InvalidBackupFileError: If ``backup_file`` resolves to a non-string.
            InvalidBackupDirError: If ``backup_dir`` resolves to a non-string.
            NoOutputDirSetError: If neither is configured.
        """
        raw = self.fetch(config, options, "backup_file")
        if raw is MISSING:
            backup_dir = self.resolve_output_dir(target, config, options)
            return os.path.join(backup_dir, self.default_backup_name(target))

        value = path_value(raw).resolve(target, dict(config))
        return _path_string(value, InvalidBackupFileError, target)

    def resolve_output_dir(
        self, target: BackupTarget, config: Mapping[str, Any], options: Mapping[str, Any]
    ) -> str:
        """Resolve the ``backup_dir`` setting for one target.

        Raises:
            InvalidBackupDirError: If ``backup_dir`` resolves to a non-string.
            NoOutputDirSetError: If ``backup_dir`` is not configured.
        """
        raw = self.fetch(config, options, "backup_dir")
        if raw is MISSING:
            raise NoOutputDirSetError(target=target)

        value = path_value(raw).resolve(target, dict(config))
        return _path_string(value, InvalidBackupDirError, target)

    def default_backup_name(self, target: BackupTarget) -> str:
        """``{slug}_backup_{ISO8601 UTC}.db`` for ``target``."""
        timestamp = self.clock().astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        return f"{slugify(target.name)}_backup_{timestamp}.db"
