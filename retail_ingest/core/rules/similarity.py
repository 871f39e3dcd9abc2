"""重复检测用的相似度规则（纯函数）。"""

from __future__ import annotations

from datetime import date
from typing import Iterable

from rapidfuzz.distance import Levenshtein

DateRange = tuple[date, date]


def name_similarity(a: str, b: str) -> float:
    """
    文件名相似度：1 - 编辑距离 / 较长字符串长度（忽略大小写与首尾空白）。

    Returns:
        0~1；两者都为空时返回 1.0。
    """
    return float(Levenshtein.normalized_similarity(a.strip().lower(), b.strip().lower()))


def size_similarity(a: int, b: int) -> float:
    """文件大小相似度：较小 / 较大；任一为 0 时返回 0。"""
    if a <= 0 or b <= 0:
        return 0.0
    return min(a, b) / max(a, b)


def span_of(days: Iterable[object]) -> DateRange | None:
    """日期集合的最小 / 最大值（忽略非日期值）；没有任何日期时返回 None。"""
    present = [d for d in days if isinstance(d, date)]
    if not present:
        return None
    return (min(present), max(present))


def ranges_overlap(a: DateRange, b: DateRange) -> bool:
    """闭区间重叠判断。"""
    return a[0] <= b[1] and b[0] <= a[1]
