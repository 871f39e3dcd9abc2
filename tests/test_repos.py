from __future__ import annotations

import unittest
from datetime import date, datetime
from decimal import Decimal

from retail_ingest.core.models import CanonicalRecord, DuplicateSignal, ImportBatch, RowError
from retail_ingest.data.db.db_helper import SCHEMA_VERSION, DbHelper
from retail_ingest.data.db.record_repo import to_db_value
from tests.support import TempDbTestCase


def _product(code: str, name: str, stock: int = 0, row_number: int = 2) -> CanonicalRecord:
    values = {
        "product_code": code,
        "product_name": name,
        "category": "Atasan",
        "brand": "D'Busana",
        "size": None,
        "color": None,
        "price": Decimal("250000"),
        "cost": Decimal("120000.50"),
        "stock_quantity": stock,
        "min_stock": 5,
        "description": None,
    }
    return CanonicalRecord(import_type="products", row_number=row_number, key=(code,), values=values)


class DbHelperTests(TempDbTestCase):
    def test_schema_version_recorded(self):
        row = self.conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
        self.assertEqual(int(row["value"]), SCHEMA_VERSION)

    def test_init_is_idempotent(self):
        other = DbHelper(self.db_path)
        other.init_schema_if_needed()
        other.init_schema_if_needed()
        other.close()

    def test_outdated_schema_is_rejected(self):
        with self.conn:
            self.conn.execute("UPDATE meta SET value = '1' WHERE key = 'schema_version'")
        other = DbHelper(self.db_path)
        with self.assertRaisesRegex(RuntimeError, "Schema 版本过旧"):
            other.init_schema_if_needed()
        other.close()


class RecordRepoTests(TempDbTestCase):
    def test_insert_then_update(self):
        repo = self.record_repo("products")
        first = repo.upsert_chunk([_product("P-1", "Kemeja")], "batch-1")
        self.assertEqual([r.outcome for r in first], ["inserted"])

        second = repo.upsert_chunk([_product("P-1", "Kemeja Linen"), _product("P-2", "Rok", row_number=3)], "batch-2")
        self.assertEqual([r.outcome for r in second], ["updated", "inserted"])

        row = repo.get(("P-1",))
        self.assertEqual(row["product_name"], "Kemeja Linen")
        self.assertEqual(row["cost"], "120000.50")
        self.assertEqual(row["import_count"], 2)
        self.assertEqual(row["import_batch_id"], "batch-2")
        self.assertEqual(repo.count(), 2)

    def test_on_inserted_runs_only_for_new_keys(self):
        repo = self.record_repo("products")
        seen: list[str] = []
        repo.upsert_chunk([_product("P-1", "Kemeja")], "b1", on_inserted=lambda r: seen.append(r.key[0]))
        repo.upsert_chunk([_product("P-1", "Kemeja"), _product("P-3", "Celana")], "b2",
                          on_inserted=lambda r: seen.append(r.key[0]))
        self.assertEqual(seen, ["P-1", "P-3"])

    def test_to_db_value(self):
        self.assertEqual(to_db_value(Decimal("1.50")), "1.50")
        self.assertEqual(to_db_value(date(2024, 3, 1)), "2024-03-01")
        self.assertEqual(to_db_value(True), 1)
        self.assertIsNone(to_db_value(None))
        self.assertEqual(to_db_value("x"), "x")


class ProductStockRepoTests(TempDbTestCase):
    def setUp(self):
        super().setUp()
        self.record_repo("products").upsert_chunk([_product("P-1", "Kemeja", stock=10)], "b0")

    def test_movements(self):
        with self.conn:
            self.assertEqual(self.stock_repo.apply_movement("P-1", "in", 5), 15)
            self.assertEqual(self.stock_repo.apply_movement("P-1", "out", 20), 0)
            self.assertEqual(self.stock_repo.apply_movement("P-1", "adjustment", 8), 8)
        self.assertEqual(self.stock_repo.get_quantity("P-1"), 8)

    def test_unknown_product_is_skipped(self):
        self.assertIsNone(self.stock_repo.apply_movement("P-404", "in", 5))
        self.assertIsNone(self.stock_repo.get_quantity("P-404"))

    def test_unknown_movement_type(self):
        with self.assertRaises(ValueError):
            self.stock_repo.apply_movement("P-1", "transfer", 5)


class ImportBatchRepoTests(TempDbTestCase):
    def _batch(self, batch_id: str, created_at: datetime, import_type: str = "sales") -> ImportBatch:
        return ImportBatch(
            id=batch_id,
            import_type=import_type,
            label=f"label {batch_id}",
            file_name=f"{batch_id}.csv",
            file_kind="csv",
            created_at=created_at,
            file_size=100,
            file_hash="f" * 64,
        )

    def test_finish_round_trips_counts_and_errors(self):
        batch = self.batch_repo.create(self._batch("b1", datetime(2024, 3, 1, 9, 0)))
        batch.status = "partial"
        batch.total_rows, batch.valid_rows, batch.invalid_rows = 3, 2, 1
        batch.imported_rows, batch.inserted_rows, batch.updated_rows = 2, 1, 1
        batch.error_details = [RowError(row=4, field="created_time", value="besok", message="日期格式无法识别")]
        batch.date_range_start, batch.date_range_end = date(2024, 2, 1), date(2024, 2, 29)
        batch.finished_at = datetime(2024, 3, 1, 9, 1)
        self.batch_repo.finish(batch)

        stored = self.batch_repo.get("b1")
        self.assertEqual(stored.status, "partial")
        self.assertEqual((stored.inserted_rows, stored.updated_rows), (1, 1))
        self.assertEqual(stored.error_details, batch.error_details)
        self.assertEqual(stored.date_range, (date(2024, 2, 1), date(2024, 2, 29)))
        self.assertEqual(stored.finished_at, datetime(2024, 3, 1, 9, 1))

    def test_listing_and_window(self):
        self.batch_repo.create(self._batch("old", datetime(2024, 1, 1)))
        self.batch_repo.create(self._batch("mid", datetime(2024, 3, 1)))
        self.batch_repo.create(self._batch("new", datetime(2024, 3, 20)))
        self.batch_repo.create(self._batch("prod", datetime(2024, 3, 21), import_type="products"))

        self.assertEqual([b.id for b in self.batch_repo.list_recent()], ["prod", "new", "mid", "old"])
        self.assertEqual([b.id for b in self.batch_repo.list_recent("sales", limit=2, offset=1)], ["mid", "old"])
        self.assertEqual(self.batch_repo.count("sales"), 3)
        self.assertEqual(
            [b.id for b in self.batch_repo.list_since("sales", datetime(2024, 2, 15))],
            ["new", "mid"],
        )
        self.assertIsNone(self.batch_repo.get("missing"))


class DuplicateCheckLogRepoTests(TempDbTestCase):
    def test_add_and_list(self):
        signal = DuplicateSignal(is_duplicate=True, risk_level="high", file_hash="a" * 64)
        log_id = self.check_log_repo.add(import_type="sales", file_name="s.csv", file_size=10, signal=signal)
        self.assertGreater(log_id, 0)
        rows = self.check_log_repo.list_recent()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["risk_level"], "high")
        self.assertEqual(rows[0]["is_duplicate"], 1)


if __name__ == "__main__":
    unittest.main()
