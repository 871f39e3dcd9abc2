from __future__ import annotations

import sqlite3
import unittest
from datetime import date

from retail_ingest.core.errors import ColumnError, FileError, InfrastructureError
from retail_ingest.data.db.record_repo import RecordRepo
from retail_ingest.flows.batch_import import import_file
from retail_ingest.flows.duplicate_check import check_duplicates
from tests.support import (
    SALES_HEADER,
    SALES_ROWS_MIXED,
    SALES_ROWS_VALID,
    TempDbTestCase,
    write_csv,
    write_xlsx,
)


class BatchImportTests(TempDbTestCase):
    def _import(self, import_type: str, path, **kwargs):
        spec = self.specs[import_type]
        return import_file(
            path=path,
            spec=spec,
            batch_repo=self.batch_repo,
            record_repo=self.record_repo(import_type),
            stock_repo=self.stock_repo,
            **kwargs,
        )

    def test_mixed_file_imports_valid_rows_and_reports_the_rest(self):
        path = write_csv(self.tmpdir / "sales_march.csv", SALES_HEADER, SALES_ROWS_MIXED)
        result = self._import("sales", path)

        self.assertEqual(result.inserted, 1)
        self.assertEqual(result.updated, 0)
        batch = result.batch
        self.assertEqual(batch.status, "partial")
        self.assertEqual((batch.total_rows, batch.valid_rows, batch.invalid_rows), (3, 1, 2))
        self.assertEqual([(e.row, e.field) for e in batch.error_details], [(3, "seller_sku"), (4, "created_time")])
        self.assertEqual(self.record_repo("sales").count(), 1)

        stored = self.batch_repo.get(batch.id)
        self.assertEqual(stored.status, "partial")
        self.assertEqual(stored.imported_rows, 1)
        self.assertEqual(stored.label, "销售导入 - sales_march.csv")
        self.assertEqual(len(stored.error_details), 2)
        self.assertIsNotNone(stored.finished_at)

    def test_reimport_updates_instead_of_duplicating(self):
        first = self._import("sales", write_csv(self.tmpdir / "a.csv", SALES_HEADER, SALES_ROWS_VALID))
        self.assertEqual((first.inserted, first.updated), (3, 0))
        self.assertEqual(first.batch.status, "completed")

        changed = [list(r) for r in SALES_ROWS_VALID]
        changed[0][6] = "275000"
        second = self._import("sales", write_csv(self.tmpdir / "b.csv", SALES_HEADER, changed))
        self.assertEqual((second.inserted, second.updated), (0, 3))
        self.assertEqual(second.batch.imported_rows, 3)

        repo = self.record_repo("sales")
        self.assertEqual(repo.count(), 3)
        row = repo.get(("ORD-10", "SKU-A", "Putih", "M"))
        self.assertEqual(row["order_amount"], "275000")
        self.assertEqual(row["import_count"], 2)
        self.assertEqual(row["import_batch_id"], second.batch.id)

    def test_duplicate_keys_within_one_file(self):
        rows = [SALES_ROWS_VALID[0], SALES_ROWS_VALID[0]]
        result = self._import("sales", write_csv(self.tmpdir / "dup.csv", SALES_HEADER, rows))
        self.assertEqual((result.inserted, result.updated), (1, 1))
        self.assertEqual(self.record_repo("sales").count(), 1)

    def test_all_rows_invalid_marks_batch_failed(self):
        rows = [["ORD-1", "", "Kemeja", "", "", "1", "0", "2024-03-01"]]
        result = self._import("sales", write_csv(self.tmpdir / "bad.csv", SALES_HEADER, rows))
        self.assertFalse(result.succeeded)
        self.assertEqual(result.batch.status, "failed")
        self.assertEqual(self.batch_repo.get(result.batch.id).status, "failed")

    def test_missing_column_aborts_before_creating_batch(self):
        path = write_csv(self.tmpdir / "no_sku.csv", ["Order ID", "Product Name"], [["ORD-1", "Kemeja"]])
        with self.assertRaises(ColumnError):
            self._import("sales", path)
        self.assertEqual(self.batch_repo.count(), 0)
        self.assertFalse(path.exists())

    def test_unsupported_file_aborts(self):
        path = self.tmpdir / "notes.txt"
        path.write_text("hello", encoding="utf-8")
        with self.assertRaises(FileError):
            self._import("sales", path)
        self.assertFalse(path.exists())

    def test_upload_is_deleted_unless_asked_to_keep(self):
        path = write_csv(self.tmpdir / "keep.csv", SALES_HEADER, SALES_ROWS_VALID)
        self._import("sales", path, delete_after=False)
        self.assertTrue(path.exists())
        self._import("sales", path)
        self.assertFalse(path.exists())

    def test_small_chunks(self):
        path = write_csv(self.tmpdir / "chunks.csv", SALES_HEADER, SALES_ROWS_VALID)
        result = self._import("sales", path, chunk_size=1)
        self.assertEqual(result.inserted, 3)

    def test_batch_date_range_covers_imported_rows(self):
        result = self._import("sales", write_csv(self.tmpdir / "r.csv", SALES_HEADER, SALES_ROWS_VALID))
        self.assertEqual(result.batch.date_range, (date(2024, 3, 1), date(2024, 3, 15)))
        self.assertEqual(self.batch_repo.get(result.batch.id).date_range, (date(2024, 3, 1), date(2024, 3, 15)))

    def test_spreadsheet_upload(self):
        path = write_xlsx(
            self.tmpdir / "products.xlsx",
            ["Product Code", "Product Name", "Price", "Stock Quantity"],
            [["P-1", "Kemeja Linen", 250000, 10], ["P-2", "Rok Plisket", "Rp 180,000", 4]],
        )
        result = self._import("products", path)
        self.assertEqual(result.inserted, 2)
        row = self.record_repo("products").get(("P-2",))
        self.assertEqual(row["price"], "180000")
        self.assertEqual(row["category"], "Uncategorized")
        self.assertEqual(row["min_stock"], 5)

    def test_constraint_failure_is_a_row_error(self):
        self.conn.execute(
            "CREATE TRIGGER reject_blocked BEFORE INSERT ON sales "
            "WHEN NEW.order_id = 'ORD-11' BEGIN SELECT RAISE(ABORT, 'blocked order'); END"
        )
        result = self._import("sales", write_csv(self.tmpdir / "t.csv", SALES_HEADER, SALES_ROWS_VALID))
        self.assertEqual(result.inserted, 2)
        self.assertEqual(result.batch.status, "partial")
        self.assertEqual([(e.row, e.field) for e in result.errors], [(3, "database")])
        self.assertIn("blocked order", result.errors[0].message)

    def test_database_outage_marks_batch_failed(self):
        broken = sqlite3.connect(self.db_path)
        broken.row_factory = sqlite3.Row
        broken.close()
        path = write_csv(self.tmpdir / "outage.csv", SALES_HEADER, SALES_ROWS_VALID)
        with self.assertRaises(InfrastructureError):
            import_file(
                path=path,
                spec=self.specs["sales"],
                batch_repo=self.batch_repo,
                record_repo=RecordRepo(broken, self.specs["sales"]),
            )
        batches = self.batch_repo.list_recent()
        self.assertEqual(len(batches), 1)
        self.assertEqual(batches[0].status, "failed")
        self.assertFalse(path.exists())

    def test_partially_written_failed_batch_is_still_an_exact_duplicate(self):
        class FlakyRecordRepo(RecordRepo):
            calls = 0

            def upsert_chunk(self, records, batch_id, on_inserted=None):
                type(self).calls += 1
                if type(self).calls > 1:
                    raise InfrastructureError("database is locked")
                return super().upsert_chunk(records, batch_id, on_inserted)

        path = write_csv(self.tmpdir / "sales_march.csv", SALES_HEADER, SALES_ROWS_VALID)
        content = path.read_bytes()
        with self.assertRaises(InfrastructureError):
            import_file(
                path=path,
                spec=self.specs["sales"],
                batch_repo=self.batch_repo,
                record_repo=FlakyRecordRepo(self.conn, self.specs["sales"]),
                chunk_size=1,
            )
        self.assertEqual(self.batch_repo.list_recent()[0].status, "failed")
        self.assertEqual(self.record_repo("sales").count(), 1)

        signal = check_duplicates(
            spec=self.specs["sales"],
            file_name="sales_march_again.csv",
            content=content,
            batch_repo=self.batch_repo,
        )
        self.assertTrue(signal.is_duplicate)
        self.assertEqual(signal.risk_level, "high")


class StockMovementTests(TempDbTestCase):
    def setUp(self):
        super().setUp()
        products = write_xlsx(
            self.tmpdir / "products.xlsx",
            ["Product Code", "Product Name", "Stock Quantity"],
            [["P-1", "Kemeja Linen", 10], ["P-2", "Rok Plisket", 3]],
        )
        import_file(
            path=products,
            spec=self.specs["products"],
            batch_repo=self.batch_repo,
            record_repo=self.record_repo("products"),
        )

    def _import_stock(self, rows):
        path = write_csv(
            self.tmpdir / "stock.csv",
            ["Product Code", "Movement Type", "Quantity", "Reference Number", "Movement Date"],
            rows,
        )
        return import_file(
            path=path,
            spec=self.specs["stock"],
            batch_repo=self.batch_repo,
            record_repo=self.record_repo("stock"),
            stock_repo=self.stock_repo,
        )

    def test_new_movements_adjust_product_stock(self):
        rows = [
            ["P-1", "in", "5", "PO-1", "2024-03-01"],
            ["P-2", "out", "7", "SO-1", "2024-03-02"],
            ["P-9", "in", "1", "PO-2", "2024-03-02"],
        ]
        result = self._import_stock(rows)
        self.assertEqual(result.inserted, 3)
        self.assertEqual(self.stock_repo.get_quantity("P-1"), 15)
        # 出库不低于 0
        self.assertEqual(self.stock_repo.get_quantity("P-2"), 0)

        # 同一流水重复导入只更新记录，不再次调整库存
        again = self._import_stock(rows)
        self.assertEqual((again.inserted, again.updated), (0, 3))
        self.assertEqual(self.stock_repo.get_quantity("P-1"), 15)

    def test_adjustment_sets_quantity(self):
        self._import_stock([["P-1", "adjustment", "42", "OPN-1", "2024-03-31"]])
        self.assertEqual(self.stock_repo.get_quantity("P-1"), 42)


if __name__ == "__main__":
    unittest.main()
