"""导入管道的行级数据模型。

两阶段类型化：
- RawRow：解析边界上的非类型化行（表头 → 原始单元格）；
- CanonicalRecord：按字段规格归一化后的记录，可直接写库。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Union

FieldValue = Union[str, Decimal, int, date, bool, None]


@dataclass(slots=True)
class RawRow:
    """解析后的原始行。"""

    row_number: int  # 电子表格行号（表头为第 1 行）
    values: dict[str, Any]  # 表头 → 单元格原值


@dataclass(slots=True)
class RowError:
    """行级错误（用于批次 error_details 与接口返回）。"""

    row: int  # 电子表格行号
    field: str  # 规范字段名
    value: Any  # 原始值（展示用）
    message: str

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        return {"row": self.row, "field": self.field, "value": value, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RowError":
        return cls(
            row=int(data.get("row", 0)),
            field=str(data.get("field", "")),
            value=data.get("value"),
            message=str(data.get("message", "")),
        )


@dataclass(slots=True)
class CanonicalRecord:
    """规范记录。

    `key` 为自然键取值（顺序与导入类型配置一致），决定 upsert 身份；
    `values` 包含全部业务字段（含自然键字段与派生字段）。
    """

    import_type: str
    row_number: int
    key: tuple[FieldValue, ...]
    values: dict[str, FieldValue] = field(default_factory=dict)

    def get(self, name: str, default: FieldValue = None) -> FieldValue:
        return self.values.get(name, default)
