from __future__ import annotations

import sqlite3
from datetime import datetime

from retail_ingest.core.models.duplicate import DuplicateSignal
from retail_ingest.data.db.db_helper import db_errors


class DuplicateCheckLogRepo:
    """
    重复检测审计日志仓储。

    每次预检写入一行（文件指纹、风险等级、命中数），仅用于事后追溯。
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(
        self,
        *,
        import_type: str,
        file_name: str,
        file_size: int,
        signal: DuplicateSignal,
        checked_at: datetime | None = None,
    ) -> int:
        """
        写入一条检测日志。

        Returns:
            新日志 ID。
        """
        checked = (checked_at or datetime.now()).isoformat(timespec="seconds")
        with db_errors("写入重复检测日志"), self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO duplicate_check_logs (
                    import_type, file_name, file_size, file_hash,
                    risk_level, is_duplicate, matched_count, checked_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    import_type,
                    file_name,
                    file_size,
                    signal.file_hash,
                    signal.risk_level,
                    int(signal.is_duplicate),
                    len(signal.matched_batches),
                    checked,
                ),
            )
        return int(cursor.lastrowid or 0)

    def list_recent(self, limit: int = 20) -> list[dict[str, object]]:
        with db_errors("查询重复检测日志"):
            rows = self.conn.execute(
                "SELECT * FROM duplicate_check_logs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(r) for r in rows]
