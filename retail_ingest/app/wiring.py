from __future__ import annotations

import sqlite3

from retail_ingest.core import config
from retail_ingest.core.import_types import ImportTypeSpec, load_import_specs
from retail_ingest.data.db.db_helper import DbHelper
from retail_ingest.data.db.duplicate_check_repo import DuplicateCheckLogRepo
from retail_ingest.data.db.import_batch_repo import ImportBatchRepo
from retail_ingest.data.db.product_stock_repo import ProductStockRepo
from retail_ingest.data.db.record_repo import RecordRepo


class DependencyContainer:
    """
    依赖容器：管理 DB 连接、仓储、导入类型配置的生命周期。
    使用上下文管理器确保 DB 连接正确关闭（一个请求 / 一条命令一个容器）。
    """

    def __init__(self, db_path: str | None = None, rules_path: str | None = None) -> None:
        self.db_path = db_path or config.get_db_path()
        self.rules_path = rules_path if rules_path is not None else config.get_import_rules_path()
        self.helper: DbHelper | None = None
        self.conn: sqlite3.Connection | None = None

        # 仓储实例
        self.batch_repo: ImportBatchRepo | None = None
        self.stock_repo: ProductStockRepo | None = None
        self.check_log_repo: DuplicateCheckLogRepo | None = None

        self.specs: dict[str, ImportTypeSpec] = {}

    def __enter__(self) -> "DependencyContainer":
        """初始化数据库连接、仓储与导入类型配置。"""
        self.specs = load_import_specs(self.rules_path)

        self.helper = DbHelper(str(self.db_path))
        self.helper.init_schema_if_needed()
        self.conn = self.helper.get_connection()

        self.batch_repo = ImportBatchRepo(self.conn)
        self.stock_repo = ProductStockRepo(self.conn)
        self.check_log_repo = DuplicateCheckLogRepo(self.conn)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """关闭数据库连接。"""
        if self.helper:
            self.helper.close()

    def get_spec(self, import_type: str) -> ImportTypeSpec:
        """
        按导入类型取规格。

        Raises:
            KeyError: 未知导入类型。
        """
        if import_type not in self.specs:
            raise KeyError(import_type)
        return self.specs[import_type]

    def get_record_repo(self, spec: ImportTypeSpec) -> RecordRepo:
        """获取导入类型对应的业务记录仓储。"""
        if not self.conn:
            raise RuntimeError("容器未初始化，请在 with 块中使用")
        return RecordRepo(self.conn, spec)

    def get_batch_repo(self) -> ImportBatchRepo:
        if not self.batch_repo:
            raise RuntimeError("容器未初始化，请在 with 块中使用")
        return self.batch_repo
