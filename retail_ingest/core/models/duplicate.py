"""重复导入检测数据模型。

DuplicateSignal 每次请求重新计算，返回后不可变，不持久化
（审计用途的检测日志另见 DuplicateCheckLogRepo）。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

RiskLevel = Literal["none", "low", "medium", "high"]

RISK_ORDER: dict[str, int] = {"none": 0, "low": 1, "medium": 2, "high": 3}

# 命中方式（可组合）
MatchKind = Literal["exact_hash", "similar_name", "similar_size", "date_overlap"]


def max_risk(a: RiskLevel, b: RiskLevel) -> RiskLevel:
    """返回两个风险等级中较高者。"""
    return a if RISK_ORDER[a] >= RISK_ORDER[b] else b


@dataclass(frozen=True, slots=True)
class PreviousImport:
    """命中的历史批次。"""

    batch_id: str
    file_name: str
    label: str
    imported_at: datetime
    total_rows: int
    imported_rows: int
    file_size: int
    matches: tuple[MatchKind, ...]
    name_similarity: float = 0.0
    date_range: tuple[date, date] | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.batch_id,
            "fileName": self.file_name,
            "batchName": self.label,
            "importedAt": self.imported_at.isoformat(timespec="seconds"),
            "totalRecords": self.total_rows,
            "importedRecords": self.imported_rows,
            "fileSize": self.file_size,
            "duplicateType": list(self.matches),
            "similarityScore": round(self.name_similarity, 4),
            "dateRange": (
                {"start": self.date_range[0].isoformat(), "end": self.date_range[1].isoformat()}
                if self.date_range
                else None
            ),
        }


@dataclass(frozen=True, slots=True)
class DuplicateSignal:
    """重复风险评估结果。

    `is_duplicate` 仅在内容哈希完全一致时为 True；
    名称相似 / 日期重叠只抬高 `risk_level`，不代表内容相同。
    """

    is_duplicate: bool
    risk_level: RiskLevel
    file_hash: str
    matched_batches: tuple[PreviousImport, ...] = ()
    warnings: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    summary: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "isDuplicate": self.is_duplicate,
            "riskLevel": self.risk_level,
            "previousImports": [p.to_payload() for p in self.matched_batches],
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
            "fileHash": self.file_hash,
            "checkSummary": dict(self.summary),
        }
