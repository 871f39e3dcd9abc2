"""单元格值归一化规则（纯函数，无副作用）。

覆盖：
- 日期：原生日期 → 电子表格序列日 → 文本格式候选（严格匹配）；
- 金额 / 整数：去货币符号与千分位后解析，失败回落为 0；
- 文本：去空白，空值统一为 None；
- 布尔：常见真值字面量。
"""

from __future__ import annotations

import math
import numbers
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

import pandas as pd

# 文本日期候选格式（按优先级；日在前的格式优先于月在前的格式）
DEFAULT_DATE_PATTERNS: tuple[str, ...] = (
    "%d/%m/%y",
    "%d/%m/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%d/%m/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%Y/%m/%d",
)

# 展示给运营人员的格式说明（与 DEFAULT_DATE_PATTERNS 对应）
DATE_FORMAT_HINT = (
    "DD/MM/YY, DD/MM/YYYY, YYYY-MM-DD, YYYY-MM-DD HH:mm:ss, "
    "DD/MM/YYYY HH:mm:ss, MM/DD/YYYY, MM/DD/YYYY HH:mm:ss, YYYY/MM/DD"
)

# 电子表格序列日的基准：1900-01-01 为第 1 天，且 1900 被错误地视为闰年
_SERIAL_EPOCH = date(1900, 1, 1)
_SERIAL_OFFSET = 2

# 两位年份分界：< 50 → 20xx，否则 19xx
_TWO_DIGIT_YEAR_PIVOT = 50

_CURRENCY_PATTERN = re.compile(r"Rp|IDR|[$€£¥₹]", re.IGNORECASE)
_NUMERIC_TEXT = re.compile(r"^\d+(\.\d+)?$")

_TRUE_LITERALS = frozenset({"true", "1", "yes", "y", "ya", "t"})

_ZERO = Decimal("0")


def is_blank(value: Any) -> bool:
    """
    判断单元格是否为空。

    None、NaN、NaT、空串（含纯空白）均视为空。
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def serial_to_date(serial: float) -> date | None:
    """
    电子表格序列日 → 日期。

    Args:
        serial: 序列日（小数部分为一天内时间，忽略）。

    Returns:
        对应日期；非有限数、非正数或越界返回 None。
    """
    if not math.isfinite(serial) or serial < 1:
        return None
    try:
        return _SERIAL_EPOCH + timedelta(days=int(serial) - _SERIAL_OFFSET)
    except OverflowError:
        return None


def _pivot_two_digit_year(parsed: datetime) -> datetime:
    yy = parsed.year % 100
    year = 2000 + yy if yy < _TWO_DIGIT_YEAR_PIVOT else 1900 + yy
    return parsed.replace(year=year)


def parse_date(value: Any, patterns: Sequence[str] = DEFAULT_DATE_PATTERNS) -> date | None:
    """
    将单元格值解析为日历日期。

    优先级：
    1. 原生日期值（datetime / date / pandas.Timestamp）直接取日期部分；
    2. 数值（或纯数字文本）按电子表格序列日换算；
    3. 文本依次尝试 `patterns`，首个严格匹配的格式胜出。

    Args:
        value: 原始单元格值。
        patterns: strptime 格式候选（按优先级）。

    Returns:
        解析出的日期；空值或全部候选失败时返回 None。
    """
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return serial_to_date(float(value)) if value.is_finite() else None
    if isinstance(value, numbers.Real):
        return serial_to_date(float(value))

    text = str(value).strip()
    if _NUMERIC_TEXT.match(text):
        return serial_to_date(float(text))

    for pattern in patterns:
        try:
            parsed = datetime.strptime(text, pattern)
        except ValueError:
            continue
        if "%y" in pattern:
            try:
                parsed = _pivot_two_digit_year(parsed)
            except ValueError:
                continue
        return parsed.date()
    return None


def format_date(value: date | None) -> str | None:
    """规范日期输出（YYYY-MM-DD）。"""
    return value.isoformat() if value is not None else None


def parse_amount(value: Any) -> Decimal:
    """
    解析金额。

    去除货币符号（Rp / IDR / $ / € / £ / ¥ / ₹）、千分位逗号与空白后转 Decimal。

    Returns:
        Decimal 金额；空值或无法解析时返回 Decimal("0")。
    """
    if is_blank(value) or isinstance(value, bool):
        return _ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else _ZERO
    if isinstance(value, numbers.Real):
        number = float(value)
        if not math.isfinite(number):
            return _ZERO
        if isinstance(value, numbers.Integral):
            return Decimal(int(value))
        return Decimal(repr(number))

    text = _CURRENCY_PATTERN.sub("", str(value))
    text = re.sub(r"[,\s]", "", text)
    if not text:
        return _ZERO
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return _ZERO
    return amount if amount.is_finite() else _ZERO


def parse_integer(value: Any) -> int:
    """解析整数（先按金额规则清理，再向零截断）；失败返回 0。"""
    return int(parse_amount(value))


def clean_text(value: Any) -> str | None:
    """
    文本清理。

    - 空值返回 None；
    - 整数值的浮点（电子表格中的数字编号，如 `123.0`）还原为 `123`；
    - 其余转字符串并去首尾空白。
    """
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat(sep=" ", timespec="seconds")
    text = str(value).strip()
    return text or None


def parse_flag(value: Any) -> bool:
    """布尔解析：true / 1 / yes / y / ya / t（大小写不敏感）为真。"""
    if is_blank(value):
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, numbers.Real):
        return float(value) != 0
    return str(value).strip().lower() in _TRUE_LITERALS
