"""批量导入业务流程。

一个由导入类型配置驱动的参数化流程，覆盖全部导入类型：
文件解析 → 列解析（整文件一次）→ 逐行归一化与校验 → 分块 upsert → 批次终态一次性写回。
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable

from retail_ingest.core.config import ImportConfig
from retail_ingest.core.errors import InfrastructureError
from retail_ingest.core.import_types import ImportTypeSpec
from retail_ingest.core.models import BatchImportResult, CanonicalRecord, ImportBatch, RowError
from retail_ingest.core.rules.columns import ColumnMapping, resolve_columns
from retail_ingest.core.rules.similarity import span_of
from retail_ingest.core.rules.validation import validate_row
from retail_ingest.data.db.import_batch_repo import ImportBatchRepo
from retail_ingest.data.db.product_stock_repo import ProductStockRepo
from retail_ingest.data.db.record_repo import RecordRepo
from retail_ingest.flows.file_loader import LoadedFile, load_upload

logger = logging.getLogger(__name__)


def import_file(
    *,
    path: str | Path,
    spec: ImportTypeSpec,
    batch_repo: ImportBatchRepo,
    record_repo: RecordRepo,
    stock_repo: ProductStockRepo | None = None,
    file_name: str | None = None,
    content_type: str | None = None,
    chunk_size: int | None = None,
    delete_after: bool = True,
) -> BatchImportResult:
    """
    导入单个上传文件。

    流程：
    1. 解析文件、解析列映射（失败即抛出，不创建批次）；
    2. 创建批次（status=processing，计数为 0）；
    3. 逐行归一化 + 校验，失败行记录错误后跳过；
    4. 有效记录按块 upsert（每块一个事务），约束失败按行记录；
    5. 批次终态、计数、错误明细一次性写回；
    6. 无论成功失败都删除上传的临时文件。

    Args:
        path: 上传文件的临时路径。
        spec: 导入类型规格。
        batch_repo: 导入批次仓储。
        record_repo: 目标业务表仓储（与导入类型配置对应）。
        stock_repo: 库存联动仓储（仅 stock 类型使用）。
        file_name: 原始文件名（默认取路径文件名）。
        content_type: 上传时声明的 MIME 类型。
        chunk_size: 每个写入事务的记录数（默认读取 IMPORT_CHUNK_SIZE）。
        delete_after: 结束后是否删除 path。

    Returns:
        BatchImportResult。

    Raises:
        FileError: 文件无法识别或解析。
        ColumnError: 缺少必填列。
        InfrastructureError: 数据库不可用（批次尽量标记为 failed）。
    """
    try:
        loaded = load_upload(path, file_name or Path(path).name, content_type)
        mapping = resolve_columns(loaded.headers, spec)
        batch = _create_batch(loaded, spec, batch_repo)
        logger.info(
            f"[Flow:BatchImport] 开始导入 {spec.import_type}：{loaded.file_name}"
            f"（{loaded.total_rows} 行，批次 {batch.id}）"
        )

        try:
            result = _run_batch(
                loaded,
                mapping,
                spec,
                batch,
                batch_repo=batch_repo,
                record_repo=record_repo,
                stock_repo=stock_repo,
                chunk_size=chunk_size or ImportConfig.get_chunk_size(),
            )
        except InfrastructureError:
            _mark_failed(batch, batch_repo)
            raise

        logger.info(
            f"[Flow:BatchImport] 导入结束 {batch.id}：{batch.status}，"
            f"新增 {result.inserted}，更新 {result.updated}，失败 {batch.invalid_rows}"
        )
        return result
    finally:
        if delete_after:
            Path(path).unlink(missing_ok=True)


def _create_batch(loaded: LoadedFile, spec: ImportTypeSpec, batch_repo: ImportBatchRepo) -> ImportBatch:
    batch = ImportBatch(
        id=str(uuid.uuid4()),
        import_type=spec.import_type,
        label=f"{spec.label} - {loaded.file_name}",
        file_name=loaded.file_name,
        file_kind=loaded.file_kind,
        created_at=datetime.now(),
        file_size=loaded.file_size,
        file_hash=loaded.file_hash,
    )
    return batch_repo.create(batch)


def _run_batch(
    loaded: LoadedFile,
    mapping: ColumnMapping,
    spec: ImportTypeSpec,
    batch: ImportBatch,
    *,
    batch_repo: ImportBatchRepo,
    record_repo: RecordRepo,
    stock_repo: ProductStockRepo | None,
    chunk_size: int,
) -> BatchImportResult:
    records: list[CanonicalRecord] = []
    errors: list[RowError] = []

    for row in loaded.rows:
        record, row_errors = validate_row(row, mapping, spec)
        if record is None:
            errors.extend(row_errors)
        else:
            records.append(record)

    on_inserted = _stock_hook(stock_repo) if spec.import_type == "stock" and stock_repo else None
    inserted = updated = 0
    persisted: list[CanonicalRecord] = []
    for start in range(0, len(records), chunk_size):
        chunk = records[start:start + chunk_size]
        for outcome in record_repo.upsert_chunk(chunk, batch.id, on_inserted=on_inserted):
            if outcome.error is not None:
                errors.append(
                    RowError(
                        row=outcome.record.row_number,
                        field="database",
                        value=None,
                        message=outcome.error.message,
                    )
                )
                continue
            persisted.append(outcome.record)
            if outcome.outcome == "inserted":
                inserted += 1
            else:
                updated += 1

    errors.sort(key=lambda e: e.row)
    invalid_rows = len({e.row for e in errors})
    batch.total_rows = loaded.total_rows
    batch.valid_rows = len(persisted)
    batch.invalid_rows = invalid_rows
    batch.imported_rows = inserted + updated
    batch.inserted_rows = inserted
    batch.updated_rows = updated
    batch.error_details = errors
    batch.status = _final_status(batch.imported_rows, batch.total_rows)
    span = span_of(r.get(name) for r in persisted for name in spec.date_range_fields)
    if span is not None:
        batch.date_range_start, batch.date_range_end = span
    batch.finished_at = datetime.now()
    batch_repo.finish(batch)
    return BatchImportResult(batch=batch, inserted=inserted, updated=updated)


def _final_status(imported: int, total: int) -> str:
    if imported == 0:
        return "failed"
    if imported == total:
        return "completed"
    return "partial"


def _stock_hook(stock_repo: ProductStockRepo) -> Callable[[CanonicalRecord], None]:
    def apply(record: CanonicalRecord) -> None:
        stock_repo.apply_movement(
            str(record.get("product_code")),
            str(record.get("movement_type")),
            int(record.get("quantity") or 0),  # type: ignore[arg-type]
        )

    return apply


def _mark_failed(batch: ImportBatch, batch_repo: ImportBatchRepo) -> None:
    """基础设施故障时尽量把批次标记为 failed；写回失败则保留 processing。"""
    batch.status = "failed"
    batch.finished_at = datetime.now()
    try:
        batch_repo.finish(batch)
    except InfrastructureError as err:
        logger.error(f"[Flow:BatchImport] 批次 {batch.id} 无法标记为 failed，保持 processing：{err}")
