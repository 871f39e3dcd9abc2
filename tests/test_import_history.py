from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta

from retail_ingest.core.models import ImportBatch, RowError
from retail_ingest.flows.import_history import batch_to_payload, get_batch, list_batches
from tests.support import TempDbTestCase


class ImportHistoryTests(TempDbTestCase):
    def setUp(self):
        super().setUp()
        start = datetime(2024, 3, 1, 8, 0)
        for i in range(5):
            self.batch_repo.create(ImportBatch(
                id=f"b{i}",
                import_type="sales" if i % 2 == 0 else "advertising",
                label=f"批次 {i}",
                file_name=f"file{i}.csv",
                file_kind="csv",
                created_at=start + timedelta(hours=i),
            ))

    def test_pagination(self):
        page = list_batches(batch_repo=self.batch_repo, limit=2, offset=0)
        self.assertEqual([b.id for b in page.items], ["b4", "b3"])
        self.assertEqual(page.total, 5)
        self.assertTrue(page.has_more)

        last = list_batches(batch_repo=self.batch_repo, limit=2, offset=4)
        self.assertEqual([b.id for b in last.items], ["b0"])
        self.assertFalse(last.has_more)

        payload = page.to_payload()
        self.assertEqual(payload["pagination"], {"total": 5, "limit": 2, "offset": 0, "hasMore": True})
        self.assertNotIn("errorDetails", payload["items"][0])

    def test_type_filter(self):
        page = list_batches(batch_repo=self.batch_repo, import_type="advertising")
        self.assertEqual([b.id for b in page.items], ["b3", "b1"])
        self.assertEqual(page.total, 2)

    def test_limits_are_clamped(self):
        self.assertEqual(list_batches(batch_repo=self.batch_repo, limit=1000).limit, 100)
        self.assertEqual(list_batches(batch_repo=self.batch_repo, limit=0).limit, 1)
        self.assertEqual(list_batches(batch_repo=self.batch_repo, offset=-3).offset, 0)

    def test_get_batch(self):
        batch = self.batch_repo.get("b2")
        batch.status = "partial"
        batch.error_details = [RowError(row=5, field="seller_sku", value=None, message="Seller SKU 不能为空")]
        batch.date_range_start, batch.date_range_end = date(2024, 2, 1), date(2024, 2, 29)
        self.batch_repo.finish(batch)

        found = get_batch(batch_id="b2", batch_repo=self.batch_repo)
        payload = batch_to_payload(found)
        self.assertEqual(payload["status"], "partial")
        self.assertEqual(payload["dateRange"], {"start": "2024-02-01", "end": "2024-02-29"})
        self.assertEqual(payload["errorDetails"][0]["row"], 5)
        self.assertEqual(payload["createdAt"], "2024-03-01T10:00:00")

        with self.assertRaises(LookupError):
            get_batch(batch_id="nope", batch_repo=self.batch_repo)


if __name__ == "__main__":
    unittest.main()
