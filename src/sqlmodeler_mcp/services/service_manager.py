"""Modeler service manager for sqlmodeler-mcp.

Provides a singleton `ModelerService` built from environment configuration,
plus the background sweeper that reclaims expired sessions. The FastMCP
lifespan starts the manager and shuts it down; tools only ask for the
service.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from typing import ClassVar

from fastmcp.utilities.logging import get_logger

from sqlmodeler_mcp.conversation.engine import AIEngine, PydanticAIEngine
from sqlmodeler_mcp.conversation.gateway import ConversationGateway
from sqlmodeler_mcp.execute.models import ExecutionLimits
from sqlmodeler_mcp.execute.runner import QueryExecutor
from sqlmodeler_mcp.persistence.transfer import DurableStore
from sqlmodeler_mcp.schema.collector import SchemaCollector
from sqlmodeler_mcp.services.config_service import ConfigService
from sqlmodeler_mcp.services.modeler_service import ModelerService
from sqlmodeler_mcp.services.sources import SourceRegistry
from sqlmodeler_mcp.session.store import SessionStore
from sqlmodeler_mcp.sqlglot_tools import SqlglotService


def build_modeler_service(*, engine: AIEngine | None = None) -> ModelerService:
    """Wire a `ModelerService` from environment configuration.

    Raises:
        ValueError: If the data source configuration is missing or invalid
    """
    connect_timeout = ConfigService.connect_timeout_sec()
    registry = SourceRegistry(ConfigService.get_data_sources(), connect_timeout=connect_timeout)
    store = SessionStore()
    gateway = ConversationGateway(
        store,
        engine or PydanticAIEngine(ConfigService.llm_model()),
        timeout_sec=ConfigService.ai_timeout_sec(),
    )
    executor = QueryExecutor(
        ExecutionLimits(
            row_limit=ConfigService.result_row_limit(),
            max_cell_chars=ConfigService.result_max_cell_chars(),
            timeout_sec=ConfigService.query_timeout_sec(),
        ),
        glot=SqlglotService(),
        federation_max_rows=ConfigService.federation_max_rows(),
    )
    durable = DurableStore(ConfigService.create_database_engine(ConfigService.get_store_url()))
    durable.create_schema()
    return ModelerService(
        registry,
        SchemaCollector(registry, timeout_sec=connect_timeout),
        store,
        gateway,
        executor,
        durable,
    )


class ModelerServiceManager:
    """Singleton manager for the ModelerService instance.

    The service is created lazily on first use so that configuration errors
    surface as tool errors instead of preventing the server from starting.
    """

    _instance: ClassVar[ModelerServiceManager | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self._service: ModelerService | None = None
        self._service_lock = threading.Lock()
        self._sweeper: asyncio.Task[None] | None = None
        self._logger = get_logger(__name__)

    @classmethod
    def get_instance(cls) -> ModelerServiceManager:
        """Get the singleton instance of ModelerServiceManager."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (primarily for testing)."""
        with cls._lock:
            cls._instance = None

    def set_service(self, service: ModelerService) -> None:
        """Install a pre-built service (tests and embedding applications)."""
        with self._service_lock:
            self._service = service

    def get_service(self) -> ModelerService:
        """Return the service, building it from the environment on first use.

        Raises:
            ValueError: If the configuration is missing or invalid
        """
        if self._service is None:
            with self._service_lock:
                if self._service is None:
                    self._logger.info("Building ModelerService from environment configuration")
                    self._service = build_modeler_service()
        return self._service

    # ---- background sweeper ----------------------------------------------
    def start_sweeper(self, interval_sec: float | None = None) -> None:
        """Start the periodic TTL sweep on the running loop (exactly once)."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        interval = interval_sec or ConfigService.sweep_interval_sec()
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_forever(interval), name="session-sweeper"
        )
        self._logger.debug("Session sweeper started (interval=%.0fs)", interval)

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            service = self._service
            if service is not None:
                removed = service.store.purge_expired()
                self._logger.debug("Sweep removed %d expired sessions", removed)

    async def shutdown(self) -> None:
        """Stop the sweeper and release engines."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        if self._service is not None:
            self._logger.info("Shutting down ModelerService")
            await self._service.shutdown()
            self._service = None
