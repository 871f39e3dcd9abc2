"""行校验：RawRow → CanonicalRecord 或字段级错误列表。

每行独立校验；一行的错误不影响其他行。
"""

from __future__ import annotations

from typing import Any

from retail_ingest.core.errors import RowValidationError
from retail_ingest.core.import_types import FieldSpec, ImportTypeSpec
from retail_ingest.core.models.record import CanonicalRecord, FieldValue, RawRow, RowError
from retail_ingest.core.rules.columns import ColumnMapping
from retail_ingest.core.rules.normalize import (
    DATE_FORMAT_HINT,
    clean_text,
    is_blank,
    parse_amount,
    parse_date,
    parse_flag,
    parse_integer,
)

# 运营表格中表示“无”的占位值，按空值处理（再套用字段默认值）
SENTINELS = frozenset({"-"})


def _is_empty(raw: Any) -> bool:
    return is_blank(raw) or (isinstance(raw, str) and raw.strip() in SENTINELS)


def normalize_field(field: FieldSpec, raw: Any, *, required: bool) -> FieldValue:
    """
    按字段规格归一化单个值。

    Raises:
        RowValidationError: 必填字段为空、日期无法识别或枚举取值不合法。
    """
    if _is_empty(raw):
        if required:
            raise RowValidationError(field.name, raw, f"{field.display_name} 不能为空")
        return field.default

    if field.kind == "text":
        text = clean_text(raw)
        if field.choices is not None and text is not None:
            lowered = text.lower()
            if lowered not in field.choices:
                raise RowValidationError(
                    field.name, raw,
                    f"{field.display_name} 取值无效：'{text}'，可选值：{', '.join(field.choices)}",
                )
            return lowered
        return text
    if field.kind == "amount":
        return parse_amount(raw)
    if field.kind == "integer":
        return parse_integer(raw)
    if field.kind == "flag":
        return parse_flag(raw)

    parsed = parse_date(raw)
    if parsed is None:
        raise RowValidationError(
            field.name, raw,
            f"{field.display_name} 日期格式无法识别：'{raw}'，支持的格式：{DATE_FORMAT_HINT}",
        )
    return parsed


def validate_row(
    row: RawRow,
    mapping: ColumnMapping,
    spec: ImportTypeSpec,
) -> tuple[CanonicalRecord | None, list[RowError]]:
    """
    校验并归一化单行。

    规则：
    - 识别字段与配置的必填字段为空 → 错误；
    - 可选数值字段为空 → 字段默认值（通常为 0）；
    - 日期非空但无法识别 → 错误（提示支持的格式）；
    - 文本去空白，空值与 `-` 替换为字段默认标签（无默认标签则为 None）；
    - 自然键中的空值统一存为 ""。

    Args:
        row: 原始行。
        mapping: 列映射。
        spec: 导入类型规格。

    Returns:
        (record, errors)：校验通过时 errors 为空；否则 record 为 None。
    """
    required = {f.name for f in spec.required_fields}
    values: dict[str, FieldValue] = {}
    errors: list[RowError] = []

    for field in spec.fields:
        raw = mapping.get(row, field.name)
        try:
            values[field.name] = normalize_field(field, raw, required=field.name in required)
        except RowValidationError as err:
            value = None if is_blank(raw) else raw
            errors.append(RowError(row=row.row_number, field=err.field, value=value, message=err.message))

    if errors:
        return None, errors

    if spec.derive is not None:
        spec.derive(values)

    for name in spec.key_fields:
        if values.get(name) is None:
            values[name] = ""

    record = CanonicalRecord(
        import_type=spec.import_type,
        row_number=row.row_number,
        key=tuple(values[name] for name in spec.key_fields),
        values=values,
    )
    return record, []
