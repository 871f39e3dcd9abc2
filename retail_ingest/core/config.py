from __future__ import annotations

import os
import tempfile
from pathlib import Path


def get_db_path() -> str:
    """
    返回 SQLite DB 路径。

    Returns:
        数据库文件路径；默认 `data/retail.db`（可由 `DB_PATH` 覆盖）。
    """
    return os.getenv("DB_PATH", "data/retail.db")


def enable_sql_debug() -> bool:
    """
    是否启用 SQL 打印（开发期可打开）。

    Returns:
        True/False（由 `ENABLE_SQL_DEBUG=1` 控制）。
    """
    return os.getenv("ENABLE_SQL_DEBUG", "0") == "1"


def get_log_level() -> str:
    """返回日志级别名（`LOG_LEVEL`，默认 INFO）。"""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def get_upload_dir() -> Path:
    """
    返回上传文件的临时落盘目录。

    Returns:
        目录路径；默认系统临时目录下的 `retail_ingest_uploads`（可由 `UPLOAD_DIR` 覆盖）。

    副作用:
        目录不存在时创建。
    """
    raw = os.getenv("UPLOAD_DIR")
    path = Path(raw) if raw else Path(tempfile.gettempdir()) / "retail_ingest_uploads"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_import_rules_path() -> str | None:
    """返回导入规则覆盖 JSON 路径（`IMPORT_RULES_PATH`），未配置返回 None。"""
    value = os.getenv("IMPORT_RULES_PATH")
    return value or None


class ImportConfig:
    """
    导入流程相关配置。

    环境变量：
    - IMPORT_CHUNK_SIZE: 每个写入事务包含的记录数（默认 50）
    - MAX_UPLOAD_BYTES: 单个上传文件大小上限（默认 20 MiB）
    - DUPLICATE_LOOKBACK_DAYS: 重复检测回看天数（默认 30）
    - NAME_SIMILARITY_THRESHOLD: 文件名相似度阈值（默认 0.7）
    """

    @staticmethod
    def get_chunk_size() -> int:
        """返回写入分块大小（至少为 1）。"""
        return max(1, int(os.getenv("IMPORT_CHUNK_SIZE", "50")))

    @staticmethod
    def get_max_upload_bytes() -> int:
        """返回上传大小上限（字节）。"""
        return int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

    @staticmethod
    def get_lookback_days() -> int:
        """返回重复检测回看天数。"""
        return int(os.getenv("DUPLICATE_LOOKBACK_DAYS", "30"))

    @staticmethod
    def get_name_similarity_threshold() -> float:
        """返回文件名相似度阈值（0~1）。"""
        return float(os.getenv("NAME_SIMILARITY_THRESHOLD", "0.7"))


def get_api_host() -> str:
    """返回 HTTP 服务监听地址（`API_HOST`，默认 127.0.0.1）。"""
    return os.getenv("API_HOST", "127.0.0.1")


def get_api_port() -> int:
    """返回 HTTP 服务端口（`API_PORT`，默认 8000）。"""
    return int(os.getenv("API_PORT", "8000"))
