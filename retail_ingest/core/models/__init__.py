from .duplicate import (
    RISK_ORDER,
    DuplicateSignal,
    MatchKind,
    PreviousImport,
    RiskLevel,
    max_risk,
)
from .import_batch import (
    IMPORT_TYPES,
    BatchImportResult,
    BatchStatus,
    FileKind,
    ImportBatch,
    ImportType,
)
from .record import CanonicalRecord, FieldValue, RawRow, RowError

"""
领域模型聚合导出。

说明：
- 仅做名称聚合，不引入额外逻辑，便于上层模块统一引用；
- 也可以从各子模块直接导入。
"""

__all__ = [
    # 导入批次
    "ImportBatch",
    "BatchImportResult",
    "ImportType",
    "IMPORT_TYPES",
    "BatchStatus",
    "FileKind",
    # 行级管道
    "RawRow",
    "CanonicalRecord",
    "FieldValue",
    "RowError",
    # 重复检测
    "DuplicateSignal",
    "PreviousImport",
    "RiskLevel",
    "MatchKind",
    "RISK_ORDER",
    "max_risk",
]
