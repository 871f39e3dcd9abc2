from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime

from retail_ingest.core.models.import_batch import ImportBatch
from retail_ingest.core.models.record import RowError
from retail_ingest.data.db.db_helper import db_errors


class ImportBatchRepo:
    """
    导入批次仓储。

    职责：
    - 导入开始时创建批次（status=processing）；
    - 导入结束时一次性写回计数、状态、错误明细（finish）；
    - 按 ID / 类型 / 时间窗口查询批次（导入历史与重复检测）。

    设计说明：
    - 批次从不自动删除，崩溃时停留在 processing；
    - error_details 以 JSON 数组存储，保持行顺序。
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def create(self, batch: ImportBatch) -> ImportBatch:
        """
        创建导入批次记录。

        Args:
            batch: 待写入的批次（计数通常为 0）。

        Returns:
            原样返回的批次对象。

        副作用:
            向 import_batches 表插入一条记录。
        """
        with db_errors("创建导入批次"), self.conn:
            self.conn.execute(
                """
                INSERT INTO import_batches (
                    id, import_type, label, file_name, file_kind, file_size, file_hash,
                    status, date_range_start, date_range_end, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    batch.id,
                    batch.import_type,
                    batch.label,
                    batch.file_name,
                    batch.file_kind,
                    batch.file_size,
                    batch.file_hash,
                    batch.status,
                    _date_text(batch.date_range_start),
                    _date_text(batch.date_range_end),
                    batch.created_at.isoformat(timespec="seconds"),
                ),
            )
        return batch

    def finish(self, batch: ImportBatch) -> None:
        """
        写回批次终态（单条 UPDATE）。

        副作用:
            更新 import_batches 中该批次的状态、计数、错误明细与结束时间。
        """
        with db_errors("更新导入批次"), self.conn:
            self.conn.execute(
                """
                UPDATE import_batches
                SET status = ?, total_rows = ?, valid_rows = ?, invalid_rows = ?,
                    imported_rows = ?, inserted_rows = ?, updated_rows = ?,
                    error_details = ?, date_range_start = ?, date_range_end = ?,
                    finished_at = ?
                WHERE id = ?
                """,
                (
                    batch.status,
                    batch.total_rows,
                    batch.valid_rows,
                    batch.invalid_rows,
                    batch.imported_rows,
                    batch.inserted_rows,
                    batch.updated_rows,
                    json.dumps([e.to_dict() for e in batch.error_details], ensure_ascii=False),
                    _date_text(batch.date_range_start),
                    _date_text(batch.date_range_end),
                    batch.finished_at.isoformat(timespec="seconds") if batch.finished_at else None,
                    batch.id,
                ),
            )

    def get(self, batch_id: str) -> ImportBatch | None:
        """
        按 ID 查询批次记录。

        Returns:
            ImportBatch 对象，未找到返回 None。
        """
        with db_errors("查询导入批次"):
            row = self.conn.execute(
                "SELECT * FROM import_batches WHERE id = ?",
                (batch_id,),
            ).fetchone()
        if not row:
            return None
        return _row_to_batch(row)

    def list_recent(self, import_type: str | None = None, limit: int = 20, offset: int = 0) -> list[ImportBatch]:
        """按创建时间倒序分页列出批次（可按类型过滤）。"""
        sql = "SELECT * FROM import_batches"
        params: list[object] = []
        if import_type:
            sql += " WHERE import_type = ?"
            params.append(import_type)
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with db_errors("查询导入历史"):
            rows = self.conn.execute(sql, params).fetchall()
        return [_row_to_batch(r) for r in rows]

    def count(self, import_type: str | None = None) -> int:
        with db_errors("统计导入批次"):
            if import_type:
                row = self.conn.execute(
                    "SELECT COUNT(*) AS n FROM import_batches WHERE import_type = ?",
                    (import_type,),
                ).fetchone()
            else:
                row = self.conn.execute("SELECT COUNT(*) AS n FROM import_batches").fetchone()
        return int(row["n"])

    def list_since(self, import_type: str, since: datetime) -> list[ImportBatch]:
        """
        列出某类型在指定时间之后创建的批次（重复检测回看窗口）。

        按创建时间倒序；包含仍处于 processing 的批次。
        """
        with db_errors("查询回看窗口内的批次"):
            rows = self.conn.execute(
                """
                SELECT * FROM import_batches
                WHERE import_type = ? AND created_at >= ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (import_type, since.isoformat(timespec="seconds")),
            ).fetchall()
        return [_row_to_batch(r) for r in rows]


def _date_text(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _row_to_batch(row: sqlite3.Row) -> ImportBatch:
    """将 SQLite Row 转换为 ImportBatch 对象。"""
    errors = [RowError.from_dict(item) for item in json.loads(row["error_details"] or "[]")]
    return ImportBatch(
        id=row["id"],
        import_type=row["import_type"],
        label=row["label"],
        file_name=row["file_name"],
        file_kind=row["file_kind"],
        created_at=datetime.fromisoformat(row["created_at"]),
        file_size=int(row["file_size"]),
        file_hash=row["file_hash"],
        status=row["status"],
        total_rows=int(row["total_rows"]),
        valid_rows=int(row["valid_rows"]),
        invalid_rows=int(row["invalid_rows"]),
        imported_rows=int(row["imported_rows"]),
        inserted_rows=int(row["inserted_rows"]),
        updated_rows=int(row["updated_rows"]),
        error_details=errors,
        date_range_start=date.fromisoformat(row["date_range_start"]) if row["date_range_start"] else None,
        date_range_end=date.fromisoformat(row["date_range_end"]) if row["date_range_end"] else None,
        finished_at=datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None,
    )
