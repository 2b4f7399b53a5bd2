"""Registry of configured data sources and their engines.

The registry resolves source ids to connection details and lazily creates
one SQLAlchemy engine per source. Access control is consumed as a pass/fail
gate: callers may supply an `authorize` callable; the default lets a user use
a source when the source lists no owners or lists that user.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
import threading

from fastmcp.utilities.logging import get_logger
import sqlalchemy as sa

from sqlmodeler_mcp.exceptions import UnknownSourceError
from sqlmodeler_mcp.services.config_service import ConfigService, DataSourceConfig

_logger = get_logger(__name__)

AuthorizeFn = Callable[[str, DataSourceConfig], bool]


def owners_authorize(user_id: str, source: DataSourceConfig) -> bool:
    """Default access gate based on the source's owner list."""
    return not source.owners or user_id in source.owners


class SourceRegistry:
    """Resolve data sources by id and hand out their engines."""

    def __init__(
        self,
        sources: Iterable[DataSourceConfig],
        *,
        authorize: AuthorizeFn | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        self._sources = {s.id: s for s in sources}
        self._authorize = authorize or owners_authorize
        self._connect_timeout = connect_timeout
        self._engines: dict[str, sa.Engine] = {}
        self._lock = threading.Lock()

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._sources

    @property
    def source_ids(self) -> list[str]:
        return sorted(self._sources)

    def resolve(self, source_id: str, user_id: str | None = None) -> DataSourceConfig:
        """Return the configuration for `source_id`.

        Raises:
            UnknownSourceError: If the id is not configured, or `user_id` is
                given and the access gate refuses it
        """
        source = self._sources.get(source_id)
        if source is None:
            raise UnknownSourceError(source_id)
        if user_id is not None and not self._authorize(user_id, source):
            _logger.warning("Access to source %s denied for user %s", source_id, user_id)
            raise UnknownSourceError(source_id)
        return source

    def engine(self, source_id: str) -> sa.Engine:
        """Return the cached engine for a source, creating it on first use."""
        source = self.resolve(source_id)
        with self._lock:
            engine = self._engines.get(source_id)
            if engine is None:
                timeout = int(self._connect_timeout) if self._connect_timeout else None
                engine = ConfigService.create_database_engine(source.url, connect_timeout=timeout)
                self._engines[source_id] = engine
                _logger.debug("Created engine for source %s (%s)", source_id, engine.dialect.name)
            return engine

    def register_engine(self, source_id: str, engine: sa.Engine) -> None:
        """Use an existing engine for a source instead of creating one from its URL."""
        self.resolve(source_id)
        with self._lock:
            self._engines[source_id] = engine

    def dispose(self) -> None:
        """Dispose every engine created so far."""
        with self._lock:
            for source_id, engine in self._engines.items():
                engine.dispose()
                _logger.debug("Disposed engine for source %s", source_id)
            self._engines.clear()
