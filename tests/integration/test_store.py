"""Integration tests: OrderStore write semantics and the stats projection."""

from __future__ import annotations

from decimal import Decimal

import psycopg
import pytest

from order_etl.shared import PersistenceUnavailable
from order_etl.stats import get_processing_stats
from order_etl.store import WriteOutcome, connect_store
from order_etl.transform import CustomerFields, OrderFields


class TestShop:
    def test_find_or_create(self, store):
        shop, created = store.find_or_create_shop("Acme")
        again, created_again = store.find_or_create_shop("Acme")
        assert created is True
        assert created_again is False
        assert again.id == shop.id
        assert shop.display_name == "Acme"

    def test_list_in_creation_order(self, store):
        store.find_or_create_shop("Beta")
        store.commit()
        store.find_or_create_shop("Acme")
        store.commit()
        assert [s.name for s in store.list_shops()] == ["Beta", "Acme"]


class TestOrderUpsert:
    def test_created_then_updated(self, store):
        shop, _ = store.find_or_create_shop("Acme")
        first = store.upsert_order(shop.id, "1", "#1", None, OrderFields(total_price=Decimal("10")))
        second = store.upsert_order(shop.id, "1", "#1", None, OrderFields(total_price=Decimal("12")))
        assert first.outcome is WriteOutcome.CREATED
        assert second.outcome is WriteOutcome.UPDATED
        assert second.row_id == first.row_id

    def test_absent_values_keep_stored(self, db_conn, store):
        conn, _ = db_conn
        shop, _ = store.find_or_create_shop("Acme")
        cust = store.upsert_customer(shop.id, "1", CustomerFields(email="a@example.com"))
        store.upsert_order(
            shop.id, "1", "#1", cust.row_id,
            OrderFields(total_price=Decimal("10"), notes="gift", tags="vip"),
        )
        store.upsert_order(shop.id, "1", "#1", None, OrderFields(total_price=Decimal("11")))
        row = conn.execute(
            "SELECT total_price, notes, tags, customer_id::text FROM orders"
        ).fetchone()
        assert row == (Decimal("11.00"), "gift", "vip", cust.row_id)

    def test_missing_total_raises(self, store):
        shop, _ = store.find_or_create_shop("Acme")
        with pytest.raises(psycopg.errors.NotNullViolation):
            store.upsert_order(shop.id, "1", "#1", None, OrderFields())


class TestCustomerUpsert:
    def test_coalesce_on_update(self, db_conn, store):
        conn, _ = db_conn
        shop, _ = store.find_or_create_shop("Acme")
        store.upsert_customer(shop.id, "1", CustomerFields(email="a@example.com", phone="555"))
        result = store.upsert_customer(shop.id, "1", CustomerFields(email="b@example.com"))
        assert result.outcome is WriteOutcome.UPDATED
        assert conn.execute("SELECT email, phone FROM customer").fetchone() == ("b@example.com", "555")


class TestCsvFile:
    def test_claim_complete_and_reclaim(self, store):
        shop, _ = store.find_or_create_shop("Acme")
        claim = store.claim_csv_file(shop.id, "Acme.csv", "/ftp/Acme.csv", 10, "h1")
        assert claim.created
        store.complete_csv_file(claim.row_id, 3, 2, 1, 0, None)
        record = store.get_csv_file(shop.id, "h1")
        assert (record.status, record.records_total, record.records_inserted) == ("completed", 3, 2)

        store.fail_csv_file(claim.row_id, "boom")
        again = store.claim_csv_file(shop.id, "Acme.csv", "/ftp/Acme.csv", 10, "h1")
        assert again.outcome is WriteOutcome.UPDATED
        assert again.row_id == claim.row_id
        record = store.get_csv_file(shop.id, "h1")
        assert (record.status, record.error_message) == ("processing", None)


class TestMoveChild:
    def test_conflict_reports_constraint(self, store):
        a, _ = store.find_or_create_shop("Acme")
        b, _ = store.find_or_create_shop("Beta")
        store.claim_csv_file(a.id, "x.csv", "/x.csv", 1, "h1")
        other = store.claim_csv_file(b.id, "x.csv", "/x.csv", 1, "h1")

        result = store.move_child("csv_file", other.row_id, a.id)

        assert result.conflicted
        assert result.conflict_on == "uq_csv_file_shop_hash"
        # transaction still usable after the absorbed conflict
        assert len(store.list_child_ids("csv_file", b.id)) == 1


class TestConnection:
    def test_unreachable_database(self):
        with pytest.raises(PersistenceUnavailable):
            connect_store("host=127.0.0.1 port=1 dbname=nope user=nope connect_timeout=1")


class TestProcessingStats:
    def test_counts_and_recent_files(self, store):
        acme, _ = store.find_or_create_shop("Acme")
        store.find_or_create_shop("Beta")
        for ext in ("1", "2"):
            cust = store.upsert_customer(acme.id, ext, CustomerFields(email=f"{ext}@example.com"))
            store.upsert_order(acme.id, ext, f"#{ext}", cust.row_id, OrderFields(total_price=Decimal("1")))
        for i in range(7):
            store.claim_csv_file(acme.id, f"f{i}.csv", f"/f{i}.csv", 1, f"h{i}")
        store.commit()

        stats = {s.name: s for s in get_processing_stats(store, recent_limit=5)}

        assert stats["Acme"].order_count == 2
        assert stats["Acme"].customer_count == 2
        assert len(stats["Acme"].recent_files) == 5
        assert stats["Beta"].order_count == 0
        assert stats["Beta"].recent_files == []
        assert stats["Acme"].to_dict()["recent_files"][0]["status"] == "processing"
