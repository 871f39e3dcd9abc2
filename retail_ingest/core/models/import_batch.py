"""导入批次数据模型。

用途：
- ImportBatch: 一次文件上传的审计记录（状态、计数、错误明细、文件指纹）。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

from retail_ingest.core.models.record import RowError

# 导入类型（值即外部标签）
ImportType = Literal[
    "sales",
    "products",
    "stock",
    "advertising",
    "advertising-settlement",
    "returns-and-cancellations",
    "marketplace-reimbursements",
    "commission-adjustments",
    "affiliate-samples",
]

IMPORT_TYPES: tuple[str, ...] = (
    "sales",
    "products",
    "stock",
    "advertising",
    "advertising-settlement",
    "returns-and-cancellations",
    "marketplace-reimbursements",
    "commission-adjustments",
    "affiliate-samples",
)

# 批次状态：processing 为中间态，其余为终态
BatchStatus = Literal["processing", "completed", "partial", "failed"]

FileKind = Literal["spreadsheet", "csv"]


@dataclass(slots=True)
class ImportBatch:
    """导入批次记录。

    生命周期：
    - 导入开始时插入（status=processing，计数为 0）；
    - 全部行处理完成后一次性更新计数、状态、错误明细；
    - 从不自动删除。进程崩溃时批次停留在 processing，需要重新导入。

    计数关系：valid_rows == imported_rows == inserted_rows + updated_rows，
    valid_rows + invalid_rows == total_rows。
    """

    id: str
    """批次 ID（UUID4 字符串）。"""

    import_type: str
    label: str
    """人类可读标签，例如 `销售导入 - sales_march.xlsx`。"""

    file_name: str
    file_kind: FileKind
    created_at: datetime

    file_size: int = 0
    file_hash: str | None = None
    """源文件 SHA-256 十六进制摘要。"""

    status: BatchStatus = "processing"
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    imported_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    error_details: list[RowError] = field(default_factory=list)

    date_range_start: date | None = None
    date_range_end: date | None = None
    """文件内业务日期区间（用于重复检测的区间重叠判断）。"""

    finished_at: datetime | None = None

    @property
    def date_range(self) -> tuple[date, date] | None:
        if self.date_range_start is None or self.date_range_end is None:
            return None
        return (self.date_range_start, self.date_range_end)


@dataclass(slots=True)
class BatchImportResult:
    """单次文件导入的结果（批次终态 + 新增 / 更新拆分）。"""

    batch: ImportBatch
    inserted: int = 0
    updated: int = 0

    @property
    def errors(self) -> list[RowError]:
        return self.batch.error_details

    @property
    def succeeded(self) -> bool:
        return self.batch.imported_rows > 0

    def to_payload(self) -> dict[str, Any]:
        """
        HTTP 响应的 data 部分。

        `imported` 为新增记录数，`updated` 为按自然键更新的记录数；
        两者之和等于 validRows。
        """
        payload: dict[str, Any] = {
            "imported": self.inserted,
            "updated": self.updated,
            "errors": self.batch.invalid_rows,
            "batchId": self.batch.id,
            "validRows": self.batch.valid_rows,
            "totalRows": self.batch.total_rows,
            "status": self.batch.status,
            "fileName": self.batch.file_name,
            "fileType": self.batch.import_type,
        }
        if self.batch.error_details:
            payload["errorDetails"] = [e.to_dict() for e in self.batch.error_details]
        return payload
