from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

logger = logging.getLogger(__name__)


class ProductStockRepo:
    """
    商品库存联动仓储。

    库存流水导入时按流水类型调整 products.stock_quantity：
    - in：增加；
    - out：减少，最低为 0；
    - adjustment：直接设为流水数量。

    不自行开启事务：由调用方（记录仓储的写入块）控制提交。
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get_quantity(self, product_code: str) -> int | None:
        row = self.conn.execute(
            "SELECT stock_quantity FROM products WHERE product_code = ?",
            (product_code,),
        ).fetchone()
        return int(row["stock_quantity"]) if row else None

    def apply_movement(self, product_code: str, movement_type: str, quantity: int) -> int | None:
        """
        按库存流水调整商品库存。

        Args:
            product_code: 商品编码。
            movement_type: in / out / adjustment。
            quantity: 流水数量。

        Returns:
            调整后的库存；商品不存在时返回 None（流水照常记录，只跳过库存联动）。
        """
        current = self.get_quantity(product_code)
        if current is None:
            logger.warning(f"[ProductStock] 商品不存在，跳过库存联动：{product_code}")
            return None

        if movement_type == "in":
            updated = current + quantity
        elif movement_type == "out":
            updated = max(0, current - quantity)
        elif movement_type == "adjustment":
            updated = quantity
        else:
            raise ValueError(f"未知库存流水类型：{movement_type}")

        self.conn.execute(
            "UPDATE products SET stock_quantity = ?, updated_at = ? WHERE product_code = ?",
            (updated, datetime.now().isoformat(timespec="seconds"), product_code),
        )
        logger.debug(f"[ProductStock] {product_code} 库存 {current} → {updated}（{movement_type} {quantity}）")
        return updated
