from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from retail_ingest.core.config import enable_sql_debug, get_db_path
from retail_ingest.core.errors import InfrastructureError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3

# 业务表约定：
# - 自然键列 NOT NULL DEFAULT ''，由 UNIQUE 约束决定 upsert 身份；
# - 金额以 TEXT 存储 Decimal；日期以 TEXT 存储 YYYY-MM-DD；
# - import_batch_id 指向创建或最后触达该记录的批次，import_count 为被导入次数。
SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS import_batches (
    id TEXT PRIMARY KEY,
    import_type TEXT NOT NULL,
    label TEXT NOT NULL,
    file_name TEXT NOT NULL,
    file_kind TEXT NOT NULL,
    file_size INTEGER NOT NULL DEFAULT 0,
    file_hash TEXT,
    status TEXT NOT NULL DEFAULT 'processing',
    total_rows INTEGER NOT NULL DEFAULT 0,
    valid_rows INTEGER NOT NULL DEFAULT 0,
    invalid_rows INTEGER NOT NULL DEFAULT 0,
    imported_rows INTEGER NOT NULL DEFAULT 0,
    inserted_rows INTEGER NOT NULL DEFAULT 0,
    updated_rows INTEGER NOT NULL DEFAULT 0,
    error_details TEXT NOT NULL DEFAULT '[]',
    date_range_start TEXT,
    date_range_end TEXT,
    created_at TEXT NOT NULL,
    finished_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_import_batches_type_created
ON import_batches(import_type, created_at);

CREATE INDEX IF NOT EXISTS idx_import_batches_hash
ON import_batches(file_hash);

CREATE TABLE IF NOT EXISTS duplicate_check_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    import_type TEXT NOT NULL,
    file_name TEXT NOT NULL,
    file_size INTEGER NOT NULL DEFAULT 0,
    file_hash TEXT NOT NULL,
    risk_level TEXT NOT NULL,
    is_duplicate INTEGER NOT NULL DEFAULT 0,
    matched_count INTEGER NOT NULL DEFAULT 0,
    checked_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sales (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id TEXT NOT NULL DEFAULT '',
    seller_sku TEXT NOT NULL DEFAULT '',
    product_name TEXT,
    color TEXT NOT NULL DEFAULT '',
    size TEXT NOT NULL DEFAULT '',
    quantity INTEGER NOT NULL DEFAULT 1,
    order_amount TEXT NOT NULL DEFAULT '0',
    created_time TEXT,
    delivered_time TEXT,
    settlement_amount TEXT,
    total_revenue TEXT,
    hpp TEXT,
    total TEXT,
    marketplace TEXT,
    customer TEXT,
    province TEXT,
    regency_city TEXT,
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (order_id, seller_sku, color, size)
);

CREATE TABLE IF NOT EXISTS products (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    product_code TEXT NOT NULL DEFAULT '' UNIQUE,
    product_name TEXT,
    category TEXT,
    brand TEXT,
    size TEXT,
    color TEXT,
    price TEXT NOT NULL DEFAULT '0',
    cost TEXT NOT NULL DEFAULT '0',
    stock_quantity INTEGER NOT NULL DEFAULT 0,
    min_stock INTEGER NOT NULL DEFAULT 5,
    description TEXT,
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stock_movements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    product_code TEXT NOT NULL DEFAULT '',
    movement_type TEXT NOT NULL DEFAULT 'in',
    quantity INTEGER NOT NULL DEFAULT 0,
    reference_number TEXT NOT NULL DEFAULT '',
    notes TEXT,
    movement_date TEXT NOT NULL DEFAULT '',
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (product_code, movement_type, movement_date, reference_number)
);

CREATE TABLE IF NOT EXISTS advertising (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    campaign_name TEXT NOT NULL DEFAULT '',
    account_name TEXT NOT NULL DEFAULT '',
    ad_creative_type TEXT,
    ad_creative TEXT,
    cost TEXT NOT NULL DEFAULT '0',
    conversions INTEGER NOT NULL DEFAULT 0,
    cpa TEXT,
    revenue TEXT NOT NULL DEFAULT '0',
    roi TEXT,
    impressions INTEGER NOT NULL DEFAULT 0,
    clicks INTEGER NOT NULL DEFAULT 0,
    ctr TEXT,
    conversion_rate TEXT,
    marketplace TEXT,
    nama_produk TEXT,
    date_start TEXT NOT NULL DEFAULT '',
    date_end TEXT NOT NULL DEFAULT '',
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (campaign_name, account_name, date_start, date_end)
);

CREATE TABLE IF NOT EXISTS advertising_settlements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id TEXT NOT NULL DEFAULT '' UNIQUE,
    type TEXT,
    order_created_time TEXT,
    order_settled_time TEXT,
    settlement_amount TEXT NOT NULL DEFAULT '0',
    account_name TEXT,
    marketplace TEXT,
    currency TEXT,
    settlement_period TEXT,
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS returns_and_cancellations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    original_order_id TEXT NOT NULL DEFAULT '',
    product_name TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL DEFAULT 'return',
    reason TEXT,
    return_date TEXT,
    returned_amount TEXT NOT NULL DEFAULT '0',
    refund_amount TEXT NOT NULL DEFAULT '0',
    restocking_fee TEXT NOT NULL DEFAULT '0',
    shipping_cost_loss TEXT NOT NULL DEFAULT '0',
    quantity_returned INTEGER NOT NULL DEFAULT 1,
    original_price TEXT NOT NULL DEFAULT '0',
    marketplace TEXT,
    product_condition TEXT,
    resellable INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (original_order_id, product_name, type)
);

CREATE TABLE IF NOT EXISTS marketplace_reimbursements (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    claim_id TEXT NOT NULL DEFAULT '' UNIQUE,
    reimbursement_type TEXT,
    claim_amount TEXT NOT NULL DEFAULT '0',
    approved_amount TEXT NOT NULL DEFAULT '0',
    received_amount TEXT NOT NULL DEFAULT '0',
    processing_fee TEXT NOT NULL DEFAULT '0',
    incident_date TEXT,
    claim_date TEXT,
    approval_date TEXT,
    received_date TEXT,
    affected_order_id TEXT,
    product_name TEXT,
    marketplace TEXT,
    status TEXT,
    notes TEXT,
    evidence_provided TEXT,
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS commission_adjustments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    original_order_id TEXT NOT NULL DEFAULT '',
    adjustment_type TEXT NOT NULL DEFAULT '',
    reason TEXT,
    original_commission TEXT NOT NULL DEFAULT '0',
    adjustment_amount TEXT NOT NULL DEFAULT '0',
    final_commission TEXT,
    marketplace TEXT,
    commission_rate TEXT,
    dynamic_rate_applied INTEGER NOT NULL DEFAULT 0,
    transaction_date TEXT,
    adjustment_date TEXT,
    product_name TEXT,
    quantity INTEGER NOT NULL DEFAULT 0,
    product_price TEXT NOT NULL DEFAULT '0',
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (original_order_id, adjustment_type)
);

CREATE TABLE IF NOT EXISTS affiliate_samples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    affiliate_name TEXT NOT NULL DEFAULT '',
    affiliate_platform TEXT,
    affiliate_contact TEXT,
    product_name TEXT NOT NULL DEFAULT '',
    product_sku TEXT,
    quantity_given INTEGER NOT NULL DEFAULT 1,
    product_cost TEXT NOT NULL DEFAULT '0',
    total_cost TEXT,
    shipping_cost TEXT NOT NULL DEFAULT '0',
    packaging_cost TEXT NOT NULL DEFAULT '0',
    campaign_name TEXT,
    expected_reach INTEGER NOT NULL DEFAULT 0,
    content_type TEXT,
    given_date TEXT NOT NULL DEFAULT '',
    expected_content_date TEXT,
    actual_content_date TEXT,
    content_delivered INTEGER NOT NULL DEFAULT 0,
    performance_notes TEXT,
    roi_estimate TEXT,
    status TEXT,
    import_batch_id TEXT,
    import_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (affiliate_name, product_name, given_date)
);

CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class DbHelper:
    """
    SQLite 连接/Schema 初始化 Helper。

    职责：
    - 初始化数据库文件与表结构（如不存在则创建）；
    - 提供带 RowFactory 的连接；
    - 由 DependencyContainer 在请求 / 命令范围内创建与关闭（不做模块级共享）。
    """

    def __init__(self, db_path: Optional[str] = None, busy_timeout_ms: int = 5000) -> None:
        self.db_path = Path(db_path or get_db_path())
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: Optional[sqlite3.Connection] = None

    def get_connection(self) -> sqlite3.Connection:
        """
        获取（或创建）SQLite 连接。

        Returns:
            已初始化的 sqlite3.Connection，`row_factory` 已设置为 sqlite3.Row。

        Raises:
            InfrastructureError: 数据库文件无法打开。
        """
        if self._conn is None:
            if self.db_path.parent:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            except sqlite3.Error as err:
                raise InfrastructureError(f"[DbHelper] 无法打开数据库 {self.db_path}：{err}") from err
            if enable_sql_debug():
                conn.set_trace_callback(logger.debug)
            self._conn = conn
        return self._conn

    def init_schema_if_needed(self) -> None:
        """
        初始化表结构与 meta.schema_version（若未设置）。

        副作用：可能创建目录/文件，执行 DDL。
        """
        conn = self.get_connection()
        try:
            with conn:
                conn.executescript(SCHEMA_DDL)
                row = conn.execute(
                    "SELECT value FROM meta WHERE key = ?",
                    ("schema_version",),
                ).fetchone()
                if row is None:
                    conn.execute(
                        "INSERT INTO meta(key, value) VALUES (?, ?)",
                        ("schema_version", str(SCHEMA_VERSION)),
                    )
                    return
        except sqlite3.Error as err:
            raise InfrastructureError(f"[DbHelper] 初始化表结构失败：{err}") from err

        # 开发阶段：版本不匹配时提示重建数据库
        current_version = int(row["value"])
        if current_version < SCHEMA_VERSION:
            raise RuntimeError(
                f"[DbHelper] Schema 版本过旧（当前 v{current_version}，需要 v{SCHEMA_VERSION}）。"
                f"开发阶段请删除 {self.db_path} 后重新运行。"
            )

    def close(self) -> None:
        """关闭连接并释放引用。"""
        if self._conn is not None:
            self._conn.close()
            self._conn = None


@contextmanager
def db_errors(action: str) -> Iterator[None]:
    """
    将 SQLite 运行期故障（锁超时、磁盘只读、库文件损坏等）转换为 InfrastructureError。

    约束失败（IntegrityError）不在此转换，由仓储按行处理。
    """
    try:
        yield
    except sqlite3.IntegrityError:
        raise
    except sqlite3.DatabaseError as err:
        logger.error(f"[DbHelper] {action}失败：{err}")
        raise InfrastructureError(f"数据库不可用（{action}）：{err}") from err
