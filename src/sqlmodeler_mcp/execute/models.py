"""Models for query execution.

`QueryResult` is the payload returned by the execute_query tool and by
validation-by-execution during save. `SourceBinding` ties a collected source
schema to the engine its queries run on.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field
import sqlalchemy as sa

from sqlmodeler_mcp.schema.models import SourceSchema

CellValue = str | int | float | bool | None


@dataclass(slots=True)
class ExecutionLimits:
    """Execution limits used to bound row count, cell size and run time."""

    row_limit: int
    max_cell_chars: int
    timeout_sec: float


@dataclass(frozen=True)
class SourceBinding:
    """A collected source together with the engine that executes against it."""

    schema: SourceSchema
    engine: sa.Engine

    @property
    def source_id(self) -> str:
        return self.schema.source_id

    @property
    def label(self) -> str:
        return self.schema.source_label

    @property
    def dialect(self) -> str:
        return self.schema.dialect


class QueryResult(BaseModel):
    """Structured response from query execution."""

    sql: str = Field(description="SQL that was executed")
    dialect: str = Field(
        description="SQLAlchemy dialect the query ran on ('federated' across sources)"
    )
    columns: list[str] = Field(description="Result column names in order")
    rows: list[dict[str, CellValue]] = Field(
        description="Result rows with cell values made JSON-safe and truncated as needed"
    )
    row_cap: int = Field(description="Maximum number of rows returned")
    row_cap_applied: bool = Field(description="True iff the query produced more rows than row_cap")
    elapsed_ms: float = Field(description="Wall-clock execution time in milliseconds")
    federated: bool = Field(default=False, description="True when rows were joined across sources")
    notes: list[str] = Field(default_factory=list, description="Validation and execution notes")
    timestamp: str = Field(
        default_factory=lambda: datetime.now(UTC).isoformat(),
        description="UTC ISO8601 timestamp of completion",
    )
