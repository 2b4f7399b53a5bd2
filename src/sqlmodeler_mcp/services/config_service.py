"""Configuration service for sqlmodeler-mcp.

This module centralizes environment variable handling and database engine
creation. Data sources arrive with already-decrypted connection URLs; the
engine never stores or decrypts credentials itself.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import os
from pathlib import Path
from typing import Any

import sqlalchemy as sa

DEFAULT_LLM_MODEL = "google-gla:gemini-2.0-flash"
DEFAULT_STORE_URL = "sqlite:///sqlmodeler.db"


@dataclass(frozen=True)
class DataSourceConfig:
    """Connection details for one external data source.

    Attributes:
        id: Stable identifier used in session keys
        label: Human-readable name used to namespace tables across sources
        url: SQLAlchemy connection URL (credentials already decrypted)
        schema: Optional schema to collect; the dialect default when None
        owners: User ids allowed to use the source; empty means everyone
    """

    id: str
    label: str
    url: str
    schema: str | None = None
    owners: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataSourceConfig:
        try:
            source_id = str(data["id"])
            url = str(data["url"])
        except KeyError as exc:
            msg = f"Data source entry is missing required key {exc}"
            raise ValueError(msg) from exc
        owners = data.get("owners") or ()
        return cls(
            id=source_id,
            label=str(data.get("label") or source_id),
            url=url,
            schema=data.get("schema"),
            owners=tuple(str(o) for o in owners),
        )


def _int_env(name: str, default: int, minimum: int) -> int:
    val = os.getenv(name, str(default))
    try:
        n = int(val)
    except ValueError:
        n = default
    return max(minimum, n)


def _float_env(name: str, default: float, minimum: float) -> float:
    val = os.getenv(name, str(default))
    try:
        n = float(val)
    except ValueError:
        n = default
    return max(minimum, n)


class ConfigService:
    """Service for managing configuration and database connections."""

    @staticmethod
    def get_data_sources() -> list[DataSourceConfig]:
        """Load configured data sources.

        Reads ``SQLMODELER_MCP_SOURCES`` (a JSON list) or, when unset, the JSON
        file named by ``SQLMODELER_MCP_SOURCES_FILE``.

        Returns:
            List of data source configurations

        Raises:
            ValueError: If neither variable is set or the payload is invalid
        """
        raw = os.getenv("SQLMODELER_MCP_SOURCES")
        if not raw:
            path = os.getenv("SQLMODELER_MCP_SOURCES_FILE")
            if not path:
                error_msg = (
                    "SQLMODELER_MCP_SOURCES or SQLMODELER_MCP_SOURCES_FILE environment "
                    "variable not set"
                )
                raise ValueError(error_msg)
            raw = Path(path).read_text(encoding="utf-8")
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            error_msg = f"Data source configuration is not valid JSON: {exc}"
            raise ValueError(error_msg) from exc
        if not isinstance(payload, list):
            error_msg = "Data source configuration must be a JSON list"
            raise ValueError(error_msg)
        sources = [DataSourceConfig.from_dict(item) for item in payload]
        ids = [s.id for s in sources]
        if len(ids) != len(set(ids)):
            error_msg = "Data source ids must be unique"
            raise ValueError(error_msg)
        return sources

    @staticmethod
    def get_store_url() -> str:
        """Durable store URL (conversations and data models)."""
        return os.getenv("SQLMODELER_MCP_STORE_URL", DEFAULT_STORE_URL)

    @staticmethod
    def create_database_engine(url: str, *, connect_timeout: int | None = None) -> sa.Engine:
        """Create a SQLAlchemy engine, passing a connect timeout where the driver takes one.

        Args:
            url: Database connection URL
            connect_timeout: Seconds to wait for a new connection

        Returns:
            SQLAlchemy Engine instance
        """
        create_kwargs: dict[str, Any] = {"pool_pre_ping": True}
        backend = sa.make_url(url).get_backend_name()
        if connect_timeout and backend in {"postgresql", "mysql", "mariadb"}:
            create_kwargs["connect_args"] = {"connect_timeout": int(connect_timeout)}
        elif connect_timeout and backend == "mssql":
            create_kwargs["connect_args"] = {"timeout": int(connect_timeout)}
        return sa.create_engine(url, **create_kwargs)

    # ---- LLM configuration -----------------------------------------------
    @staticmethod
    def llm_model() -> str:
        """pydantic-ai model identifier (``provider:model``)."""
        return os.getenv("SQLMODELER_MCP_LLM_MODEL", DEFAULT_LLM_MODEL)

    @staticmethod
    def ai_timeout_sec() -> float:
        """Deadline for a single AI engine round-trip."""
        return _float_env("SQLMODELER_MCP_AI_TIMEOUT", 60.0, 1.0)

    # ---- Execution budgets -----------------------------------------------
    @staticmethod
    def result_row_limit() -> int:
        """Default row cap for query results."""
        return _int_env("SQLMODELER_MCP_ROW_LIMIT", 200, 1)

    @staticmethod
    def result_max_cell_chars() -> int:
        """Maximum characters per cell value in results."""
        return _int_env("SQLMODELER_MCP_MAX_CELL_CHARS", 200, 10)

    @staticmethod
    def query_timeout_sec() -> float:
        """Deadline for a single query execution."""
        return _float_env("SQLMODELER_MCP_QUERY_TIMEOUT", 30.0, 1.0)

    @staticmethod
    def connect_timeout_sec() -> float:
        """Deadline for connecting to and reflecting one data source."""
        return _float_env("SQLMODELER_MCP_CONNECT_TIMEOUT", 10.0, 1.0)

    @staticmethod
    def federation_max_rows() -> int:
        """Largest table a federated query may pull into the local join."""
        return _int_env("SQLMODELER_MCP_FEDERATION_MAX_ROWS", 50000, 1)

    @staticmethod
    def sweep_interval_sec() -> float:
        """Seconds between background sweeps of expired sessions."""
        return _float_env("SQLMODELER_MCP_SWEEP_INTERVAL", 600.0, 1.0)
