"""PostgreSQL backup target.

Provides ``PostgresTarget``, an implementation of the ``BackupTarget``
protocol built from a ``DatabaseProfile``.  Connection fields are parsed
from the profile URL with ``psycopg.conninfo``; the scalar query used for
progress totals runs on a short-lived SQLAlchemy async engine with the
``asyncpg`` driver.

Usage:
    from db_backup.adapters.postgres import PostgresTarget
    from db_backup.config.models import DatabaseProfile

    target = PostgresTarget(
        "main",
        DatabaseProfile(url="postgresql://app@localhost:5432/app_dev"),
    )
    target.config()
    # {'hostname': 'localhost', 'port': '5432', 'username': 'app', 'database': 'app_dev'}
    tables = await target.scalar("SELECT count(*) FROM pg_tables")
"""

from typing import Any
from urllib.parse import quote

from psycopg.conninfo import conninfo_to_dict
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from db_backup.config.models import DatabaseProfile

# libpq conninfo key -> target config key
_CONNINFO_KEYS = {
    "host": "hostname",
    "port": "port",
    "user": "username",
    "password": "password",
    "dbname": "database",
}


def create_async_engine_oneshot(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine for a single short query.

    Default settings:

    - ``poolclass=NullPool``: Connections close as soon as they are released.
    - ``connect_args={"timeout": 5}``: asyncpg connect timeout in seconds.

    Args:
        database_url: PostgreSQL connection URL with ``postgresql+asyncpg://``
            scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "poolclass": NullPool,
        "connect_args": {"timeout": 5},
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def _libpq_url(url: str) -> str:
    """Strip a SQLAlchemy ``+driver`` suffix so libpq can parse the URL."""
    scheme, sep, rest = url.partition("://")
    if sep and "+" in scheme:
        scheme = scheme.split("+", 1)[0]
    return f"{scheme}{sep}{rest}"


def _asyncpg_url(url: str) -> str:
    """Normalize a PostgreSQL URL to the ``postgresql+asyncpg://`` scheme."""
    url = _libpq_url(url)
    # postgres:// -> postgresql:// (Heroku, Railway, Supabase alias)
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


class PostgresTarget:
    """A PostgreSQL database described by a ``DatabaseProfile``.

    Args:
        name: Target identifier (the profile name).
        profile: Profile with the connection URL, optional
            ``db_password``, driver kind (``provider``) and extra
            backup ``settings``.
        **engine_kwargs: Forwarded to ``create_async_engine_oneshot``.
    """

    def __init__(self, name: str, profile: DatabaseProfile, **engine_kwargs: Any) -> None:
        self.name = name
        self.driver = profile.provider
        self._profile = profile
        self._engine_kwargs = engine_kwargs

    def __repr__(self) -> str:
        return f"PostgresTarget({self.name!r})"

    def config(self) -> dict[str, Any]:
        """Connection fields parsed from the profile URL plus extra settings."""
        url = resolve_url(self._profile)
        parsed = conninfo_to_dict(_libpq_url(url))

        config: dict[str, Any] = {}
        for conninfo_key, config_key in _CONNINFO_KEYS.items():
            if parsed.get(conninfo_key):
                config[config_key] = parsed[conninfo_key]

        # db_password without a placeholder is still the password to use
        if self._profile.db_password and "password" not in config:
            config["password"] = self._profile.db_password

        config.update(self._profile.settings)
        return config

    async def scalar(self, sql: str) -> Any:
        """Run ``sql`` on a fresh engine and return the first column of the first row.

        The engine is disposed before returning, on success or failure.
        """
        engine = create_async_engine_oneshot(
            _asyncpg_url(resolve_url(self._profile)), **self._engine_kwargs
        )
        try:
            async with engine.connect() as conn:
                result = await conn.execute(text(sql))
                return result.scalar()
        finally:
            await engine.dispose()
