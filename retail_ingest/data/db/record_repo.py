from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Literal, Sequence

from retail_ingest.core.errors import PersistenceError
from retail_ingest.core.import_types import ImportTypeSpec
from retail_ingest.core.models.record import CanonicalRecord, FieldValue
from retail_ingest.data.db.db_helper import db_errors

logger = logging.getLogger(__name__)

UpsertOutcome = Literal["inserted", "updated"]


@dataclass(slots=True)
class UpsertResult:
    """单条记录的写入结果（outcome 与 error 二选一）。"""

    record: CanonicalRecord
    outcome: UpsertOutcome | None = None
    error: PersistenceError | None = None


def to_db_value(value: FieldValue) -> Any:
    """领域值 → SQLite 存储值（Decimal/日期以文本存储，布尔以 0/1 存储）。"""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class RecordRepo:
    """
    业务记录仓储（按导入类型配置参数化，一种类型一张表）。

    职责：
    - 以自然键 upsert 记录：同一键重复导入 → 更新，不插入第二行；
    - 维护 import_batch_id（最后触达该记录的批次）与 import_count（被导入次数）。

    设计说明：
    - 每条 upsert 是单条 `INSERT … ON CONFLICT DO UPDATE … RETURNING` 语句，
      同一键并发写入时后写者胜，不存在先查后写的竞争窗口；
    - 约束失败只回滚该语句，按行转换为 PersistenceError，不影响同块其他记录。
    """

    def __init__(self, conn: sqlite3.Connection, spec: ImportTypeSpec) -> None:
        self.conn = conn
        self.spec = spec
        self._upsert_sql = _build_upsert_sql(spec)

    def upsert_chunk(
        self,
        records: Sequence[CanonicalRecord],
        batch_id: str,
        on_inserted: Callable[[CanonicalRecord], None] | None = None,
    ) -> list[UpsertResult]:
        """
        在单个事务内写入一组记录。

        Args:
            records: 已校验的规范记录。
            batch_id: 当前导入批次 ID。
            on_inserted: 新插入记录的回调（在同一事务内执行，用于联动更新）。

        Returns:
            与 records 一一对应的 UpsertResult 列表。

        Raises:
            InfrastructureError: 数据库不可用（整个块回滚）。
        """
        results: list[UpsertResult] = []
        now = datetime.now().isoformat(timespec="seconds")
        with db_errors(f"写入{self.spec.label}"), self.conn:
            for record in records:
                params = [to_db_value(record.get(name)) for name in self.spec.column_names]
                params.extend([batch_id, now, now])
                try:
                    row = self.conn.execute(self._upsert_sql, params).fetchall()[0]
                except sqlite3.IntegrityError as err:
                    logger.warning(
                        f"[RecordRepo:{self.spec.import_type}] 第 {record.row_number} 行写入失败：{err}"
                    )
                    results.append(UpsertResult(record, error=PersistenceError(f"数据库约束校验失败：{err}")))
                    continue
                outcome: UpsertOutcome = "inserted" if int(row["import_count"]) == 1 else "updated"
                if outcome == "inserted" and on_inserted is not None:
                    on_inserted(record)
                results.append(UpsertResult(record, outcome=outcome))
        return results

    def get(self, key: Sequence[FieldValue]) -> dict[str, Any] | None:
        """按自然键查询记录（返回列名 → 存储值）。"""
        where = " AND ".join(f"{name} = ?" for name in self.spec.key_fields)
        with db_errors(f"查询{self.spec.label}"):
            row = self.conn.execute(
                f"SELECT * FROM {self.spec.table} WHERE {where}",
                [to_db_value(v) for v in key],
            ).fetchone()
        return dict(row) if row else None

    def count(self) -> int:
        with db_errors(f"统计{self.spec.label}"):
            row = self.conn.execute(f"SELECT COUNT(*) AS n FROM {self.spec.table}").fetchone()
        return int(row["n"])


def _build_upsert_sql(spec: ImportTypeSpec) -> str:
    columns = [*spec.column_names, "import_batch_id", "created_at", "updated_at"]
    placeholders = ", ".join("?" for _ in columns)
    updates = [f"{name} = excluded.{name}" for name in spec.column_names if name not in spec.key_fields]
    updates.extend([
        "import_batch_id = excluded.import_batch_id",
        f"import_count = {spec.table}.import_count + 1",
        "updated_at = excluded.updated_at",
    ])
    return (
        f"INSERT INTO {spec.table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT({', '.join(spec.key_fields)}) DO UPDATE SET {', '.join(updates)} "
        f"RETURNING import_count"
    )
