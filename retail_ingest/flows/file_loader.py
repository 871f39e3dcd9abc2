"""上传文件解析：扩展名 / MIME 嗅探 → pandas 读取 → RawRow 列表。

文件级错误（格式不支持、文件损坏、没有表头或数据行）统一抛出 FileError，
调用方在处理任何数据行之前中止导入。
"""

from __future__ import annotations

import hashlib
import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import BinaryIO, Union

import chardet
import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException
from xlrd import XLRDError

from retail_ingest.core.errors import ColumnError, FileError
from retail_ingest.core.import_types import ImportTypeSpec
from retail_ingest.core.models.import_batch import FileKind
from retail_ingest.core.models.record import RawRow
from retail_ingest.core.rules.columns import resolve_columns
from retail_ingest.core.rules.normalize import is_blank, parse_date
from retail_ingest.core.rules.similarity import DateRange, span_of

logger = logging.getLogger(__name__)

Source = Union[str, Path, bytes]

# 扩展名 → (文件类别, pandas 引擎)
_EXTENSION_KINDS: dict[str, tuple[FileKind, str | None]] = {
    ".xlsx": ("spreadsheet", "openpyxl"),
    ".xlsm": ("spreadsheet", "openpyxl"),
    ".xls": ("spreadsheet", "xlrd"),
    ".csv": ("csv", None),
}

_CSV_DELIMITERS = (",", ";", "\t", "|")
_SNIFF_BYTES = 64 * 1024
_HASH_CHUNK = 1024 * 1024

_READ_ERRORS = (
    ValueError,
    KeyError,
    OSError,
    UnicodeDecodeError,
    zipfile.BadZipFile,
    InvalidFileException,
    XLRDError,
    pd.errors.ParserError,
    pd.errors.EmptyDataError,
)

HEADER_ROW_NUMBER = 1


@dataclass(slots=True)
class LoadedFile:
    """解析后的上传文件。"""

    file_name: str
    file_kind: FileKind
    file_size: int
    file_hash: str
    headers: list[str]
    rows: list[RawRow] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def file_sha256(source: Source) -> str:
    """
    计算文件内容 SHA-256（十六进制）。

    Args:
        source: 文件路径或内存中的字节。
    """
    digest = hashlib.sha256()
    if isinstance(source, bytes):
        digest.update(source)
        return digest.hexdigest()
    with open(source, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def detect_file_kind(file_name: str, content_type: str | None = None) -> tuple[FileKind, str | None]:
    """
    识别文件类别。

    扩展名优先；扩展名无法识别时参考 MIME 类型。

    Returns:
        (file_kind, pandas 引擎)；CSV 的引擎为 None。

    Raises:
        FileError: 既不是电子表格也不是 CSV。
    """
    suffix = Path(file_name).suffix.lower()
    if suffix in _EXTENSION_KINDS:
        return _EXTENSION_KINDS[suffix]

    mime = (content_type or "").lower()
    if "csv" in mime:
        return ("csv", None)
    if "spreadsheetml" in mime:
        return ("spreadsheet", "openpyxl")
    if "excel" in mime or "spreadsheet" in mime:
        return ("spreadsheet", "xlrd" if "ms-excel" in mime else "openpyxl")

    raise FileError(f"不支持的文件格式：{file_name}（仅支持 .xlsx / .xls / .csv）")


def _detect_encoding(sample: bytes) -> str:
    if sample.startswith(b"\xef\xbb\xbf"):
        return "utf-8-sig"
    guess = chardet.detect(sample).get("encoding") or "utf-8"
    if guess.lower() in ("ascii", "utf-8"):
        return "utf-8"
    return guess


def _detect_delimiter(first_line: str) -> str:
    counts = {d: first_line.count(d) for d in _CSV_DELIMITERS}
    best = max(counts, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def _read_frame(stream: BinaryIO, kind: FileKind, engine: str | None) -> pd.DataFrame:
    if kind == "spreadsheet":
        return pd.read_excel(stream, sheet_name=0, dtype=object, engine=engine)

    sample = stream.read(_SNIFF_BYTES)
    stream.seek(0)
    encoding = _detect_encoding(sample)
    first_line = sample.decode(encoding, errors="ignore").splitlines()[0] if sample else ""
    return pd.read_csv(
        stream,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=False,
        encoding=encoding,
        sep=_detect_delimiter(first_line),
    )


def _frame_to_rows(frame: pd.DataFrame) -> tuple[list[str], list[RawRow]]:
    headers = [str(col).strip() for col in frame.columns]
    rows: list[RawRow] = []
    for index, record in enumerate(frame.itertuples(index=False, name=None)):
        values = dict(zip(headers, record))
        if all(is_blank(v) for v in values.values()):
            continue
        rows.append(RawRow(row_number=index + HEADER_ROW_NUMBER + 1, values=values))
    return headers, rows


def load_upload(
    source: Source,
    file_name: str | None = None,
    content_type: str | None = None,
) -> LoadedFile:
    """
    解析上传文件。

    Args:
        source: 临时文件路径，或内存中的文件内容。
        file_name: 原始文件名（用于嗅探格式）；传路径时可省略。
        content_type: 上传时声明的 MIME 类型（可选）。

    Returns:
        LoadedFile：表头已去首尾空白，完全空白的行已丢弃，行号保持电子表格位置。

    Raises:
        FileError: 格式不支持、解析失败、没有表头或没有数据行。
    """
    if file_name is None:
        if isinstance(source, bytes):
            raise FileError("缺少文件名，无法识别文件格式")
        file_name = Path(source).name
    kind, engine = detect_file_kind(file_name, content_type)

    content = source if isinstance(source, bytes) else Path(source).read_bytes()
    if not content:
        raise FileError(f"文件为空：{file_name}")

    try:
        frame = _read_frame(io.BytesIO(content), kind, engine)
    except _READ_ERRORS as err:
        logger.warning(f"[FileLoader] 解析失败：{file_name}，{err!r}")
        raise FileError(f"文件无法解析：{file_name}（{err}）") from err

    headers, rows = _frame_to_rows(frame)
    if not any(headers):
        raise FileError(f"文件没有表头：{file_name}")
    if not rows:
        raise FileError(f"文件中没有数据行：{file_name}")

    logger.info(f"[FileLoader] 解析完成：{file_name}（{kind}，{len(rows)} 行）")
    return LoadedFile(
        file_name=file_name,
        file_kind=kind,
        file_size=len(content),
        file_hash=file_sha256(content),
        headers=headers,
        rows=rows,
    )


def infer_date_range(loaded: LoadedFile, spec: ImportTypeSpec) -> DateRange | None:
    """
    从文件内容推断业务日期区间（按导入类型的日期字段）。

    列缺失或没有可解析日期时返回 None；不抛出列错误。
    """
    if not spec.date_range_fields:
        return None
    try:
        mapping = resolve_columns(loaded.headers, spec)
    except ColumnError:
        return None

    days: list[date | None] = []
    for row in loaded.rows:
        for name in spec.date_range_fields:
            days.append(parse_date(mapping.get(row, name)))
    return span_of(days)
