from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
import json
from pathlib import Path

import pytest
import sqlalchemy as sa
from sqlalchemy import text

from sqlmodeler_mcp.conversation.gateway import ConversationGateway
from sqlmodeler_mcp.execute.models import ExecutionLimits
from sqlmodeler_mcp.execute.runner import QueryExecutor
from sqlmodeler_mcp.persistence.transfer import DurableStore
from sqlmodeler_mcp.schema.collector import SchemaCollector
from sqlmodeler_mcp.services.config_service import DataSourceConfig
from sqlmodeler_mcp.services.modeler_service import ModelerService
from sqlmodeler_mcp.services.sources import SourceRegistry
from sqlmodeler_mcp.session.models import Message
from sqlmodeler_mcp.session.store import SessionStore

SHOP_DDL = (
    "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT NOT NULL, email TEXT)",
    "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER NOT NULL "
    "REFERENCES customers(id), total NUMERIC(10, 2), placed_on DATE)",
    "INSERT INTO customers (id, name, email) VALUES (1, 'Alice', 'a@x.io'), "
    "(2, 'Bob', 'b@x.io'), (3, 'Carol', NULL)",
    "INSERT INTO orders (id, customer_id, total, placed_on) VALUES "
    "(10, 1, 12.50, '2024-01-02'), (11, 1, 7.25, '2024-02-03'), (12, 2, 99.99, '2024-03-04')",
)

CRM_DDL = (
    "CREATE TABLE accounts (id INTEGER PRIMARY KEY, customer_id INTEGER, segment TEXT, "
    "external_code TEXT)",
    "INSERT INTO accounts (id, customer_id, segment, external_code) VALUES "
    "(100, 1, 'enterprise', 'A1'), (101, 2, 'smb', 'B2')",
)


def make_sqlite(path: Path, statements: Sequence[str]) -> sa.Engine:
    """File-backed SQLite database; worker threads see the same data."""
    engine = sa.create_engine(f"sqlite+pysqlite:///{path}")
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    return engine


@pytest.fixture
def shop_engine(tmp_path: Path) -> sa.Engine:
    return make_sqlite(tmp_path / "shop.db", SHOP_DDL)


@pytest.fixture
def crm_engine(tmp_path: Path) -> sa.Engine:
    return make_sqlite(tmp_path / "crm.db", CRM_DDL)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def envelope(
    analysis: str = "Orders per customer",
    sql: str = "SELECT c.name, COUNT(o.id) AS n FROM main.customers c "
    "JOIN main.orders o ON o.customer_id = c.id GROUP BY c.name",
) -> str:
    return json.dumps(
        {
            "analysis": analysis,
            "models": [
                {
                    "id": "m1",
                    "description": "Order count per customer",
                    "tables": ["main.customers", "main.orders"],
                    "columns": ["main.customers.name"],
                    "joins": [
                        {
                            "left_table": "main.orders",
                            "right_table": "main.customers",
                            "join_type": "INNER",
                            "on_columns": [{"left": "o.customer_id", "right": "c.id"}],
                        }
                    ],
                }
            ],
            "sql": [{"model_id": "m1", "text": sql}],
        }
    )


class ScriptedEngine:
    """AI engine replaying canned replies and recording every call."""

    def __init__(
        self,
        replies: Sequence[str | BaseException] = (),
        *,
        delay: float = 0.0,
        default: Callable[[str], str] | None = None,
    ) -> None:
        self.replies = list(replies)
        self.delay = delay
        self.default = default or (lambda _text: envelope())
        self.calls: list[tuple[str, list[Message], str]] = []

    async def complete(
        self, *, schema_markdown: str, history: Sequence[Message], user_text: str
    ) -> str:
        self.calls.append((schema_markdown, list(history), user_text))
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if self.replies else self.default(user_text)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def registry(tmp_path: Path, shop_engine: sa.Engine, crm_engine: sa.Engine) -> SourceRegistry:
    """Registry with two live SQLite sources and one that cannot be opened."""
    reg = SourceRegistry(
        [
            DataSourceConfig(id="shop", label="Shop", url="sqlite://"),
            DataSourceConfig(id="crm", label="CRM", url="sqlite://", owners=("u1",)),
            DataSourceConfig(
                id="down", label="Down", url=f"sqlite:///{tmp_path / 'missing' / 'x.db'}"
            ),
        ]
    )
    reg.register_engine("shop", shop_engine)
    reg.register_engine("crm", crm_engine)
    return reg


def make_service(
    registry: SourceRegistry, store_path: Path, engine: ScriptedEngine | None = None
) -> ModelerService:
    """Service wired like production, with a scripted AI engine and a file-backed store."""
    store = SessionStore()
    durable = DurableStore(sa.create_engine(f"sqlite+pysqlite:///{store_path}"))
    durable.create_schema()
    return ModelerService(
        registry,
        SchemaCollector(registry, timeout_sec=5.0),
        store,
        ConversationGateway(store, engine or ScriptedEngine(), timeout_sec=5.0),
        QueryExecutor(ExecutionLimits(row_limit=100, max_cell_chars=200, timeout_sec=10.0)),
        durable,
    )


@pytest.fixture
def service(registry: SourceRegistry, tmp_path: Path) -> ModelerService:
    return make_service(registry, tmp_path / "store.db")
