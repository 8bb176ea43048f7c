"""
Connection to a tenant-owned relational source.

One :class:`SourceConnection` is opened per run. Queries go through a
:class:`~b2bsync.sync.resilience.ResilientExecutor` that disposes the engine
pool between attempts so a dropped connection is replaced transparently.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Iterable, Mapping

from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import ArgumentError

from .errors import ConfigurationError
from .resilience import SOURCE_RETRY_POLICY, ResilientExecutor, RetryPolicy

DEFAULT_DRIVER = "postgresql+psycopg"
DEFAULT_PORT = 5432
DEFAULT_DATABASE = "postgres"
DEFAULT_STATEMENT_TIMEOUT_MS = 300_000
_LOCAL_HOST_RE = re.compile(r"^(localhost|127\.0\.0\.1)$", re.IGNORECASE)


def build_source_url(settings: Mapping[str, Any]) -> URL:
    """Build the SQLAlchemy URL for a tenant source from its settings entry."""

    if not settings:
        raise ConfigurationError("Tenant sync configuration has no 'source' entry.", config_key="source")

    raw_url = settings.get("url")
    if raw_url:
        try:
            return make_url(str(raw_url))
        except ArgumentError as exc:
            raise ConfigurationError(f"Invalid source URL: {exc}", config_key="source.url") from exc

    host = str(settings.get("host") or "").strip()
    if not host:
        raise ConfigurationError("'source.host' is not configured.", config_key="source.host")
    user = settings.get("user")
    if not user:
        raise ConfigurationError("'source.user' is not configured.", config_key="source.user")

    try:
        port = int(settings.get("port") or DEFAULT_PORT)
    except (TypeError, ValueError):
        port = DEFAULT_PORT

    ssl = settings.get("ssl")
    wants_ssl = ssl is True or (ssl is not False and not _LOCAL_HOST_RE.match(host))
    query = {"sslmode": "require"} if wants_ssl else {}

    return URL.create(
        str(settings.get("driver") or DEFAULT_DRIVER),
        username=str(user),
        password=settings.get("password"),
        host=host,
        port=port,
        database=str(settings.get("database") or DEFAULT_DATABASE),
        query=query,
    )


class SourceConnection:
    """Lazily-created engine plus resilient query helpers for one tenant source."""

    def __init__(
        self,
        settings: Mapping[str, Any],
        *,
        statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS,
        policy: RetryPolicy = SOURCE_RETRY_POLICY,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.url = build_source_url(settings)
        self.statement_timeout_ms = statement_timeout_ms
        self.logger = logger or logging.getLogger(__name__)
        self._engine: Engine | None = None
        self.executor = ResilientExecutor(
            policy,
            name="source query",
            target="source",
            reconnect=self.reconnect,
            sleep=sleep,
            logger=self.logger,
        )

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            connect_args: dict[str, Any] = {}
            if self.url.get_backend_name() == "postgresql":
                connect_args = {
                    "connect_timeout": 10,
                    "options": f"-c statement_timeout={int(self.statement_timeout_ms)}",
                }
            self._engine = create_engine(self.url, pool_pre_ping=True, connect_args=connect_args)
        return self._engine

    def reconnect(self) -> None:
        if self._engine is not None:
            self.logger.info("Reconnecting to tenant source", extra={"sync_source_host": self.url.host})
            self._engine.dispose()

    def _run(self, sql: str, params: Mapping[str, Any], expanding: Iterable[str]) -> list[dict[str, Any]]:
        statement = text(sql)
        expanding = tuple(expanding)
        if expanding:
            statement = statement.bindparams(*(bindparam(name, expanding=True) for name in expanding))
        with self.engine.connect() as connection:
            result = connection.execute(statement, dict(params))
            return [dict(row) for row in result.mappings()]

    def fetch_all(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        expanding: Iterable[str] = (),
    ) -> list[dict[str, Any]]:
        """Run ``sql`` with bound parameters and return the rows as dicts."""

        return self.executor.call(self._run, sql, params or {}, expanding)

    def fetch_scalar(self, sql: str, params: Mapping[str, Any] | None = None) -> Any:
        rows = self.fetch_all(sql, params)
        if not rows:
            return None
        return next(iter(rows[0].values()), None)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
