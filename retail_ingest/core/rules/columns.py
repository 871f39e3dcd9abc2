"""列解析：把文件表头映射到规范字段。

规则：
- 每个规范字段按别名优先级取第一个在表头中精确出现（区分大小写）的列；
- 不做模糊匹配；
- 必填字段（识别字段 + 类型特定必填字段）缺列时整次导入失败。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from retail_ingest.core.errors import ColumnError
from retail_ingest.core.import_types import ImportTypeSpec
from retail_ingest.core.models.record import RawRow


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    """规范字段 → 实际表头。未出现的可选字段不在映射中。"""

    import_type: str
    columns: dict[str, str]
    headers: tuple[str, ...]

    def column_for(self, field: str) -> str | None:
        return self.columns.get(field)

    def get(self, row: RawRow, field: str) -> Any:
        """从原始行取规范字段的值；缺列返回 None。"""
        column = self.columns.get(field)
        if column is None:
            return None
        return row.values.get(column)


def resolve_columns(headers: Iterable[str], spec: ImportTypeSpec) -> ColumnMapping:
    """
    解析列映射。

    Args:
        headers: 文件表头（已去首尾空白）。
        spec: 导入类型规格。

    Returns:
        ColumnMapping。

    Raises:
        ColumnError: 必填字段在表头中找不到任何别名。
    """
    header_list = [str(h) for h in headers]
    present = set(header_list)

    columns: dict[str, str] = {}
    for field_spec in spec.fields:
        for alias in field_spec.aliases:
            if alias in present:
                columns[field_spec.name] = alias
                break

    missing = [f for f in spec.required_fields if f.name not in columns]
    if missing:
        raise ColumnError(
            missing=[f.name for f in missing],
            found=header_list,
            expected=[f.display_name for f in missing],
        )
    return ColumnMapping(import_type=spec.import_type, columns=columns, headers=tuple(header_list))
