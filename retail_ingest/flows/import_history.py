"""导入历史查询：批次分页列表与单批次详情。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from retail_ingest.core.models import ImportBatch
from retail_ingest.data.db.import_batch_repo import ImportBatchRepo

MAX_PAGE_SIZE = 100


@dataclass(slots=True)
class BatchPage:
    """批次分页结果。"""

    items: list[ImportBatch]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total

    def to_payload(self) -> dict[str, Any]:
        return {
            "items": [batch_to_payload(b, with_errors=False) for b in self.items],
            "pagination": {
                "total": self.total,
                "limit": self.limit,
                "offset": self.offset,
                "hasMore": self.has_more,
            },
        }


def batch_to_payload(batch: ImportBatch, *, with_errors: bool = True) -> dict[str, Any]:
    """ImportBatch → 接口 JSON。"""
    payload: dict[str, Any] = {
        "id": batch.id,
        "batchName": batch.label,
        "importType": batch.import_type,
        "fileName": batch.file_name,
        "fileType": batch.file_kind,
        "fileSize": batch.file_size,
        "fileHash": batch.file_hash,
        "status": batch.status,
        "totalRecords": batch.total_rows,
        "validRecords": batch.valid_rows,
        "invalidRecords": batch.invalid_rows,
        "importedRecords": batch.imported_rows,
        "insertedRecords": batch.inserted_rows,
        "updatedRecords": batch.updated_rows,
        "dateRange": (
            {"start": batch.date_range_start.isoformat(), "end": batch.date_range_end.isoformat()}
            if batch.date_range_start and batch.date_range_end
            else None
        ),
        "createdAt": batch.created_at.isoformat(timespec="seconds"),
        "finishedAt": batch.finished_at.isoformat(timespec="seconds") if batch.finished_at else None,
    }
    if with_errors:
        payload["errorDetails"] = [e.to_dict() for e in batch.error_details]
    return payload


def list_batches(
    *,
    batch_repo: ImportBatchRepo,
    import_type: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> BatchPage:
    """
    分页列出导入批次（按创建时间倒序）。

    Args:
        batch_repo: 导入批次仓储。
        import_type: 仅列出该类型（None 表示全部）。
        limit: 每页条数（1~100）。
        offset: 偏移量（≥ 0）。
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    items = batch_repo.list_recent(import_type, limit=limit, offset=offset)
    return BatchPage(items=items, total=batch_repo.count(import_type), limit=limit, offset=offset)


def get_batch(*, batch_id: str, batch_repo: ImportBatchRepo) -> ImportBatch:
    """
    查询单个批次。

    Raises:
        LookupError: 批次不存在。
    """
    batch = batch_repo.get(batch_id)
    if batch is None:
        raise LookupError(f"导入批次不存在：{batch_id}")
    return batch
