from __future__ import annotations

import csv
import io
import tempfile
import unittest
from pathlib import Path
from typing import Any, Sequence

from openpyxl import Workbook

from retail_ingest.core.import_types import load_import_specs
from retail_ingest.data.db.db_helper import DbHelper
from retail_ingest.data.db.duplicate_check_repo import DuplicateCheckLogRepo
from retail_ingest.data.db.import_batch_repo import ImportBatchRepo
from retail_ingest.data.db.product_stock_repo import ProductStockRepo
from retail_ingest.data.db.record_repo import RecordRepo

SALES_HEADER = ["Order ID", "Seller SKU", "Product Name", "Color", "Size", "Quantity", "Order Amount", "Created Time"]

# 一行有效、一行缺少 SKU、一行日期无法识别
SALES_ROWS_MIXED = [
    ["ORD-1", "SKU-A", "Kemeja Linen", "Putih", "M", "2", "Rp 250,000", "2024-03-01"],
    ["ORD-2", "", "Kemeja Linen", "Hitam", "L", "1", "125000", "2024-03-02"],
    ["ORD-3", "SKU-B", "Rok Plisket", "Navy", "S", "1", "180000", "tomorrow"],
]

SALES_ROWS_VALID = [
    ["ORD-10", "SKU-A", "Kemeja Linen", "Putih", "M", "2", "250000", "2024-03-01"],
    ["ORD-11", "SKU-B", "Rok Plisket", "Navy", "S", "1", "180000", "2024-03-05"],
    ["ORD-12", "SKU-C", "Blazer Crop", "Krem", "", "1", "320000", "15/03/2024"],
]


def csv_bytes(header: Sequence[str], rows: Sequence[Sequence[Any]], delimiter: str = ",") -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def write_csv(path: Path, header: Sequence[str], rows: Sequence[Sequence[Any]], delimiter: str = ",") -> Path:
    path.write_bytes(csv_bytes(header, rows, delimiter))
    return path


def write_xlsx(path: Path, header: Sequence[str], rows: Sequence[Sequence[Any]]) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.append(list(header))
    for row in rows:
        ws.append(list(row))
    wb.save(path)
    return path


class TempDbTestCase(unittest.TestCase):
    """每个用例一个临时目录 + 独立 SQLite 文件。"""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)
        self.db_path = str(self.tmpdir / "retail.db")
        self.helper = DbHelper(self.db_path)
        self.helper.init_schema_if_needed()
        self.conn = self.helper.get_connection()
        self.specs = load_import_specs()
        self.batch_repo = ImportBatchRepo(self.conn)
        self.stock_repo = ProductStockRepo(self.conn)
        self.check_log_repo = DuplicateCheckLogRepo(self.conn)

    def tearDown(self) -> None:
        self.helper.close()
        self._tmp.cleanup()

    def record_repo(self, import_type: str) -> RecordRepo:
        return RecordRepo(self.conn, self.specs[import_type])
