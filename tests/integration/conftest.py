"""Integration test fixtures.

Applies migrations 0001–0003 against an ephemeral PostgreSQL database
provided by pytest-postgresql before any integration test runs.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

from order_etl.store import OrderStore

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_extensions.sql",
    PROJECT_ROOT / "migrations" / "0002_core_tables.sql",
    PROJECT_ROOT / "migrations" / "0003_indexes.sql",
]

HEADER = (
    "Id,Email,Name,Financial Status,Currency,Subtotal,Shipping,Taxes,Total,"
    "Created at,Lineitem name,Lineitem quantity,Lineitem price,"
    "Billing Name,Billing Address1,Billing City,Billing Country"
)

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture: applies all migrations per test
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (psycopg connection, dsn) with the schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            sql = migration.read_text(encoding="utf-8")
            conn.execute(sql)
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


@pytest.fixture
def store(db_conn):
    conn, _ = db_conn
    return OrderStore(conn)


# ---------------------------------------------------------------------------
# CSV helpers
# ---------------------------------------------------------------------------

def _order_line(
    order_id: str,
    total: str = "48.20",
    email: str = "ada@example.com",
    name: str = "Ada Lovelace",
    item: str = "Widget",
) -> str:
    return (
        f"{order_id},{email},{name},paid,USD,40.00,5.00,3.20,{total},"
        f"2025-01-15 10:30:00 +0000,{item},2,20.00,"
        f"{name},1 Main St,London,GB"
    )


@pytest.fixture
def order_line():
    """Build one CSV data line matching HEADER."""
    return _order_line


@pytest.fixture
def csv_header():
    return HEADER


@pytest.fixture
def export_factory(tmp_path):
    """Write HEADER plus the given lines to tmp_path/filename."""
    def _make(filename: str, lines: list[str]) -> Path:
        path = tmp_path / filename
        path.write_text(HEADER + "\n" + "\n".join(lines) + "\n", encoding="utf-8")
        return path
    return _make
