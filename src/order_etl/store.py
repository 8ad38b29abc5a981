"""order_etl.store

PostgreSQL persistence port for the order pipeline.

OrderStore wraps one psycopg connection (autocommit off); the caller that
constructs it owns the transaction and the connection's lifetime.  Writes
that can collide with a natural key return a WriteResult instead of raising,
so the pipeline and the merge engine never look at driver error codes:

    CREATED   row inserted
    UPDATED   existing row (same natural key) updated
    CONFLICT  a unique constraint rejected the write; conflict_on names it

Lost or unreachable connections surface as PersistenceUnavailable; any other
driver error propagates unchanged.
"""

from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any

import psycopg

from order_etl.shared import PersistenceUnavailable
from order_etl.transform import (
    AddressFields,
    CustomerFields,
    LineItemFields,
    OrderFields,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FILE_STATUS_PROCESSING = "processing"
FILE_STATUS_COMPLETED = "completed"
FILE_STATUS_FAILED = "failed"

_ORDER_COLUMNS = tuple(f.name for f in fields(OrderFields))
_LINE_ITEM_COLUMNS = tuple(f.name for f in fields(LineItemFields))
_ADDRESS_COLUMNS = tuple(f.name for f in fields(AddressFields))

# Child collections owned by a shop, in merge order.
CHILD_TABLES = {
    "order": "orders",
    "customer": "customer",
    "csv_file": "csv_file",
}


# ---------------------------------------------------------------------------
# Write results
# ---------------------------------------------------------------------------

class WriteOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class WriteResult:
    outcome: WriteOutcome
    row_id: str | None = None
    conflict_on: str | None = None

    @property
    def created(self) -> bool:
        return self.outcome is WriteOutcome.CREATED

    @property
    def conflicted(self) -> bool:
        return self.outcome is WriteOutcome.CONFLICT


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ShopRecord:
    id: str
    name: str
    display_name: str | None
    created_at: datetime | None = None


@dataclass(frozen=True)
class CsvFileRecord:
    id: str
    status: str
    records_total: int
    records_inserted: int
    records_updated: int
    records_errors: int
    error_message: str | None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

def connect_store(dsn: str) -> "OrderStore":
    """Open a non-autocommit connection and wrap it."""
    try:
        conn = psycopg.connect(dsn, autocommit=False)
    except psycopg.OperationalError as exc:
        raise PersistenceUnavailable(f"cannot connect to database: {exc}") from exc
    return OrderStore(conn)


class OrderStore:
    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn
        self._sp_seq = itertools.count()

    # -- connection plumbing ------------------------------------------------

    def _lost(self, exc: psycopg.OperationalError) -> bool:
        # Statement-level failures such as size limits or deadlocks also
        # subclass OperationalError but leave the connection usable.
        if self.conn.broken or self.conn.closed:
            return True
        return isinstance(exc, (psycopg.errors.ConnectionException, psycopg.errors.AdminShutdown))

    def execute(self, sql: str, params: tuple | None = None) -> psycopg.Cursor:
        try:
            return self.conn.execute(sql, params)
        except psycopg.OperationalError as exc:
            if not self._lost(exc):
                raise
            raise PersistenceUnavailable(f"database unavailable: {exc}") from exc

    def commit(self) -> None:
        try:
            self.conn.commit()
        except psycopg.OperationalError as exc:
            if not self._lost(exc):
                raise
            raise PersistenceUnavailable(f"database unavailable: {exc}") from exc

    def rollback(self) -> None:
        try:
            self.conn.rollback()
        except psycopg.OperationalError as exc:
            if not self._lost(exc):
                raise
            raise PersistenceUnavailable(f"database unavailable: {exc}") from exc

    def close(self) -> None:
        self.conn.close()

    def savepoint(self, name: str) -> None:
        self.execute(f"SAVEPOINT {name}")

    def release_savepoint(self, name: str) -> None:
        self.execute(f"RELEASE SAVEPOINT {name}")

    def rollback_to_savepoint(self, name: str) -> None:
        self.execute(f"ROLLBACK TO SAVEPOINT {name}")

    def _guarded_write(
        self, sql: str, params: tuple
    ) -> tuple[tuple | None, str | None]:
        """Run one write inside its own savepoint.

        Returns (row, None) on success or (None, constraint_name) when a
        unique constraint rejected it; the transaction stays usable.
        """
        sp = f"write_{next(self._sp_seq)}"
        self.savepoint(sp)
        try:
            row = self.execute(sql, params).fetchone()
        except psycopg.errors.UniqueViolation as exc:
            self.rollback_to_savepoint(sp)
            return None, exc.diag.constraint_name
        self.release_savepoint(sp)
        return row, None

    def _upsert_result(self, row: tuple | None, conflict_on: str | None) -> WriteResult:
        if row is None:
            return WriteResult(WriteOutcome.CONFLICT, conflict_on=conflict_on)
        outcome = WriteOutcome.CREATED if row[1] else WriteOutcome.UPDATED
        return WriteResult(outcome, row_id=str(row[0]))

    # -- shop ---------------------------------------------------------------

    def find_or_create_shop(self, name: str) -> tuple[ShopRecord, bool]:
        """Return (shop, created).  An existing shop gets updated_at refreshed."""
        row = self.execute(
            """
            INSERT INTO shop (name, display_name)
            VALUES (%s, %s)
            ON CONFLICT (name) DO UPDATE SET updated_at = now()
            RETURNING id, name, display_name, created_at, (xmax = 0) AS inserted
            """,
            (name, name),
        ).fetchone()
        return ShopRecord(str(row[0]), row[1], row[2], row[3]), bool(row[4])

    def find_shop_by_name(self, name: str) -> ShopRecord | None:
        row = self.execute(
            "SELECT id, name, display_name, created_at FROM shop WHERE name = %s",
            (name,),
        ).fetchone()
        return ShopRecord(str(row[0]), row[1], row[2], row[3]) if row else None

    def list_shops(self) -> list[ShopRecord]:
        rows = self.execute(
            "SELECT id, name, display_name, created_at FROM shop ORDER BY created_at ASC, id ASC"
        ).fetchall()
        return [ShopRecord(str(r[0]), r[1], r[2], r[3]) for r in rows]

    def mark_shop_synced(self, shop_id: str) -> None:
        self.execute(
            "UPDATE shop SET last_sync = now(), updated_at = now() WHERE id = %s",
            (shop_id,),
        )

    def rename_shop(self, shop_id: str, name: str) -> None:
        self.execute(
            """
            UPDATE shop SET name = %s, display_name = %s, updated_at = now()
            WHERE id = %s
            """,
            (name, name, shop_id),
        )

    def delete_shop(self, shop_id: str) -> None:
        self.execute("DELETE FROM shop WHERE id = %s", (shop_id,))

    # -- csv_file -----------------------------------------------------------

    def get_csv_file(self, shop_id: str, file_hash: str) -> CsvFileRecord | None:
        row = self.execute(
            """
            SELECT id, status, records_total, records_inserted,
                   records_updated, records_errors, error_message
            FROM csv_file
            WHERE shop_id = %s AND file_hash = %s
            """,
            (shop_id, file_hash),
        ).fetchone()
        if row is None:
            return None
        return CsvFileRecord(str(row[0]), *row[1:])

    def claim_csv_file(
        self,
        shop_id: str,
        filename: str,
        file_path: str,
        file_size: int,
        file_hash: str,
    ) -> WriteResult:
        """Create the csv_file row in 'processing', or move an existing one back to it."""
        row, conflict_on = self._guarded_write(
            """
            INSERT INTO csv_file
              (shop_id, filename, file_path, file_size, file_hash, status)
            VALUES (%s, %s, %s, %s, %s, 'processing')
            ON CONFLICT (shop_id, file_hash) DO UPDATE SET
              status = 'processing',
              error_message = NULL,
              filename = EXCLUDED.filename,
              file_path = EXCLUDED.file_path,
              updated_at = now()
            RETURNING id, (xmax = 0) AS inserted
            """,
            (shop_id, filename, file_path, file_size, file_hash),
        )
        return self._upsert_result(row, conflict_on)

    def complete_csv_file(
        self,
        file_id: str,
        total: int,
        inserted: int,
        updated: int,
        errors: int,
        error_message: str | None,
    ) -> None:
        self.execute(
            """
            UPDATE csv_file SET
              status = 'completed',
              processed_at = now(),
              records_total = %s,
              records_inserted = %s,
              records_updated = %s,
              records_errors = %s,
              error_message = %s,
              updated_at = now()
            WHERE id = %s
            """,
            (total, inserted, updated, errors, error_message, file_id),
        )

    def fail_csv_file(self, file_id: str, error_message: str) -> None:
        self.execute(
            """
            UPDATE csv_file SET status = 'failed', error_message = %s, updated_at = now()
            WHERE id = %s
            """,
            (error_message, file_id),
        )

    # -- customer / address -------------------------------------------------

    def upsert_customer(
        self, shop_id: str, external_id: str, customer: CustomerFields
    ) -> WriteResult:
        row, conflict_on = self._guarded_write(
            """
            INSERT INTO customer
              (shop_id, external_id, email, first_name, last_name, phone, accepts_marketing)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (shop_id, external_id) DO UPDATE SET
              email = COALESCE(EXCLUDED.email, customer.email),
              first_name = COALESCE(EXCLUDED.first_name, customer.first_name),
              last_name = COALESCE(EXCLUDED.last_name, customer.last_name),
              phone = COALESCE(EXCLUDED.phone, customer.phone),
              accepts_marketing = EXCLUDED.accepts_marketing,
              updated_at = now()
            RETURNING id, (xmax = 0) AS inserted
            """,
            (shop_id, external_id, customer.email, customer.first_name,
             customer.last_name, customer.phone, customer.accepts_marketing),
        )
        return self._upsert_result(row, conflict_on)

    def insert_address(
        self, customer_id: str, address_type: str, address: AddressFields
    ) -> WriteResult:
        cols = ", ".join(_ADDRESS_COLUMNS)
        marks = ", ".join(["%s"] * len(_ADDRESS_COLUMNS))
        row = self.execute(
            f"""
            INSERT INTO customer_address (customer_id, address_type, {cols})
            VALUES (%s, %s, {marks})
            RETURNING id
            """,
            (customer_id, address_type,
             *(getattr(address, c) for c in _ADDRESS_COLUMNS)),
        ).fetchone()
        return WriteResult(WriteOutcome.CREATED, row_id=str(row[0]))

    def find_customer_id(self, shop_id: str, external_id: str) -> str | None:
        row = self.execute(
            "SELECT id FROM customer WHERE shop_id = %s AND external_id = %s",
            (shop_id, external_id),
        ).fetchone()
        return str(row[0]) if row else None

    # -- order / line item --------------------------------------------------

    def upsert_order(
        self,
        shop_id: str,
        external_id: str,
        order_number: str,
        customer_id: str | None,
        order: OrderFields,
    ) -> WriteResult:
        """Insert or update by (shop_id, external_id).

        On update, absent (NULL) values keep what is stored, including the
        customer link.
        """
        cols = ", ".join(_ORDER_COLUMNS)
        marks = ", ".join(["%s"] * len(_ORDER_COLUMNS))
        updates = ",\n              ".join(
            f"{c} = COALESCE(EXCLUDED.{c}, orders.{c})" for c in _ORDER_COLUMNS
        )
        row, conflict_on = self._guarded_write(
            f"""
            INSERT INTO orders (shop_id, external_id, order_number, customer_id, {cols})
            VALUES (%s, %s, %s, %s, {marks})
            ON CONFLICT (shop_id, external_id) DO UPDATE SET
              order_number = EXCLUDED.order_number,
              customer_id = COALESCE(EXCLUDED.customer_id, orders.customer_id),
              {updates},
              updated_at = now()
            RETURNING id, (xmax = 0) AS inserted
            """,
            (shop_id, external_id, order_number, customer_id,
             *(getattr(order, c) for c in _ORDER_COLUMNS)),
        )
        return self._upsert_result(row, conflict_on)

    def insert_line_item(self, order_id: str, item: LineItemFields) -> WriteResult:
        cols = ", ".join(_LINE_ITEM_COLUMNS)
        marks = ", ".join(["%s"] * len(_LINE_ITEM_COLUMNS))
        row = self.execute(
            f"""
            INSERT INTO order_line_item (order_id, {cols})
            VALUES (%s, {marks})
            RETURNING id
            """,
            (order_id, *(getattr(item, c) for c in _LINE_ITEM_COLUMNS)),
        ).fetchone()
        return WriteResult(WriteOutcome.CREATED, row_id=str(row[0]))

    # -- processing_log -----------------------------------------------------

    def log_processing(
        self,
        shop_id: str | None,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.execute(
            """
            INSERT INTO processing_log (shop_id, level, message, context)
            VALUES (%s, %s, %s, %s::jsonb)
            """,
            (shop_id, level, message,
             json.dumps(context, default=str) if context is not None else None),
        )

    def move_processing_logs(self, from_shop_id: str, to_shop_id: str) -> int:
        cur = self.execute(
            "UPDATE processing_log SET shop_id = %s WHERE shop_id = %s",
            (to_shop_id, from_shop_id),
        )
        return cur.rowcount

    # -- merge support ------------------------------------------------------

    def list_child_ids(self, kind: str, shop_id: str) -> list[tuple[str, str]]:
        """Return (id, natural_key) for every child of `kind` under the shop."""
        table = CHILD_TABLES[kind]
        key = "file_hash" if kind == "csv_file" else "external_id"
        rows = self.execute(
            f"SELECT id, {key} FROM {table} WHERE shop_id = %s ORDER BY created_at ASC, id ASC",
            (shop_id,),
        ).fetchall()
        return [(str(r[0]), r[1]) for r in rows]

    def move_child(self, kind: str, child_id: str, to_shop_id: str) -> WriteResult:
        table = CHILD_TABLES[kind]
        row, conflict_on = self._guarded_write(
            f"UPDATE {table} SET shop_id = %s, updated_at = now() WHERE id = %s RETURNING id",
            (to_shop_id, child_id),
        )
        if row is None:
            return WriteResult(WriteOutcome.CONFLICT, row_id=child_id, conflict_on=conflict_on)
        return WriteResult(WriteOutcome.UPDATED, row_id=str(row[0]))

    def delete_child(self, kind: str, child_id: str) -> None:
        table = CHILD_TABLES[kind]
        self.execute(f"DELETE FROM {table} WHERE id = %s", (child_id,))

    def relink_customer_orders(self, from_customer_id: str, to_customer_id: str) -> int:
        cur = self.execute(
            "UPDATE orders SET customer_id = %s WHERE customer_id = %s",
            (to_customer_id, from_customer_id),
        )
        return cur.rowcount

    # -- reporting ----------------------------------------------------------

    def shop_counts(self) -> list[tuple]:
        """(id, name, display_name, last_sync, order_count, customer_count) per shop."""
        return self.execute(
            """
            SELECT s.id, s.name, s.display_name, s.last_sync,
                   (SELECT count(*) FROM orders o WHERE o.shop_id = s.id),
                   (SELECT count(*) FROM customer c WHERE c.shop_id = s.id)
            FROM shop s
            ORDER BY s.name ASC
            """
        ).fetchall()

    def recent_files(self, shop_id: str, limit: int) -> list[tuple]:
        return self.execute(
            """
            SELECT filename, status, processed_at, records_total,
                   records_inserted, records_updated, records_errors
            FROM csv_file
            WHERE shop_id = %s
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """,
            (shop_id, limit),
        ).fetchall()
