"""导入类型配置表。

每种导入类型由一个 ImportTypeSpec 描述：
- 字段规格（类型、列名别名优先级、必填、默认标签、枚举取值）；
- 自然键（决定 upsert 身份）与目标表；
- 参与批次日期区间推断的日期字段；
- 可选的派生字段计算。

必填字段与默认标签可由 JSON 文件覆盖（见 `load_import_specs`），
批量导入、列解析、行校验均只读取本表，不再为每种类型单独编写流程。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from retail_ingest.core.models.import_batch import IMPORT_TYPES
from retail_ingest.core.models.record import FieldValue

logger = logging.getLogger(__name__)

FieldKind = Literal["text", "amount", "integer", "date", "flag"]

Deriver = Callable[[dict[str, FieldValue]], None]

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """单个规范字段的规格。"""

    name: str
    kind: FieldKind
    aliases: tuple[str, ...]
    """列名别名（按优先级；首个为模板中的首选列名）。"""

    required: bool = False
    default: Any = None
    """空值（含哨兵 `-`）时的默认值；文本字段即默认标签。"""

    choices: tuple[str, ...] | None = None
    """枚举取值（小写比较）；None 表示不限制。"""

    @property
    def display_name(self) -> str:
        return self.aliases[0] if self.aliases else self.name


@dataclass(frozen=True, slots=True)
class ImportTypeSpec:
    """导入类型规格。"""

    import_type: str
    label: str
    table: str
    key_fields: tuple[str, ...]
    fields: tuple[FieldSpec, ...]
    date_range_fields: tuple[str, ...] = ()
    derive: Deriver | None = None
    overlap_check: bool = False
    """是否参与重复检测的日期区间重叠判断（销售类数据）。"""

    @property
    def identifier(self) -> str:
        """识别字段（自然键首字段），始终必填。"""
        return self.key_fields[0]

    @property
    def required_fields(self) -> tuple[FieldSpec, ...]:
        return tuple(f for f in self.fields if f.required or f.name == self.identifier)

    def field_spec(self, name: str) -> FieldSpec:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"[ImportTypes] {self.import_type} 不存在字段 {name}")

    def has_field(self, name: str) -> bool:
        return any(f.name == name for f in self.fields)

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)


def _text(name: str, *aliases: str, required: bool = False, default: Any = None,
          choices: tuple[str, ...] | None = None) -> FieldSpec:
    return FieldSpec(name, "text", aliases, required=required, default=default, choices=choices)


def _amount(name: str, *aliases: str, required: bool = False, default: Any = Decimal("0")) -> FieldSpec:
    return FieldSpec(name, "amount", aliases, required=required, default=default)


def _integer(name: str, *aliases: str, required: bool = False, default: Any = 0) -> FieldSpec:
    return FieldSpec(name, "integer", aliases, required=required, default=default)


def _date(name: str, *aliases: str, required: bool = False) -> FieldSpec:
    return FieldSpec(name, "date", aliases, required=required)


def _flag(name: str, *aliases: str) -> FieldSpec:
    return FieldSpec(name, "flag", aliases, default=False)


# ============ 派生字段 ============


def _ratio(numerator: Decimal, denominator: Decimal, scale: Decimal = Decimal("1")) -> Decimal:
    return (numerator / denominator * scale).quantize(_CENT, rounding=ROUND_HALF_UP)


def _is_unset(value: FieldValue) -> bool:
    return value is None or value == 0


def derive_advertising_metrics(values: dict[str, FieldValue]) -> None:
    """
    补算广告指标（仅在未提供或为 0 时计算）。

    - CPA = cost / conversions
    - ROI = (revenue - cost) / cost × 100（revenue 与 cost 均大于 0 时）
    - CTR = clicks / impressions × 100
    - 转化率 = conversions / clicks × 100
    """
    cost = Decimal(values.get("cost") or 0)
    revenue = Decimal(values.get("revenue") or 0)
    conversions = Decimal(values.get("conversions") or 0)
    impressions = Decimal(values.get("impressions") or 0)
    clicks = Decimal(values.get("clicks") or 0)

    if _is_unset(values.get("cpa")):
        values["cpa"] = _ratio(cost, conversions) if conversions > 0 else None
    if _is_unset(values.get("roi")):
        values["roi"] = _ratio(revenue - cost, cost, _HUNDRED) if revenue > 0 and cost > 0 else None
    if _is_unset(values.get("ctr")):
        values["ctr"] = _ratio(clicks, impressions, _HUNDRED) if impressions > 0 else None
    if _is_unset(values.get("conversion_rate")):
        values["conversion_rate"] = _ratio(conversions, clicks, _HUNDRED) if clicks > 0 else None


def derive_settlement_period(values: dict[str, FieldValue]) -> None:
    """结算周期 YYYY-MM：取结算时间，缺失时回退到下单时间（文件已提供时保留）。"""
    if values.get("settlement_period"):
        return
    moment = values.get("order_settled_time") or values.get("order_created_time")
    values["settlement_period"] = moment.strftime("%Y-%m") if moment else None  # type: ignore[union-attr]


def derive_final_commission(values: dict[str, FieldValue]) -> None:
    """最终佣金 = 原佣金 + 调整额（未提供时）。"""
    if values.get("final_commission") is None:
        original = Decimal(values.get("original_commission") or 0)
        adjustment = Decimal(values.get("adjustment_amount") or 0)
        values["final_commission"] = original + adjustment


def derive_sample_total_cost(values: dict[str, FieldValue]) -> None:
    """样品总成本 = 单件成本 × 赠送数量（未提供时）。"""
    if values.get("total_cost") is None:
        cost = Decimal(values.get("product_cost") or 0)
        quantity = int(values.get("quantity_given") or 0)
        values["total_cost"] = cost * quantity


# ============ 内置配置 ============

_MARKETPLACE_ALIASES = ("Marketplace", "marketplace", "MARKETPLACE", "platform", "Platform")
_PRODUCT_NAME_ALIASES = ("Product Name", "product_name", "PRODUCT_NAME", "ProductName")
_ACCOUNT_NAME_ALIASES = ("Account Name", "account_name", "ACCOUNT_NAME", "AccountName", "nama_akun")
_ORDER_ID_ALIASES = ("Order ID", "order_id", "ORDER_ID", "OrderId", "Order Id", "orderId")

BUILTIN_SPECS: tuple[ImportTypeSpec, ...] = (
    ImportTypeSpec(
        import_type="sales",
        label="销售导入",
        table="sales",
        key_fields=("order_id", "seller_sku", "color", "size"),
        fields=(
            _text("order_id", *_ORDER_ID_ALIASES, required=True),
            _text("seller_sku", "Seller SKU", "seller_sku", "SELLER_SKU", "SKU", required=True),
            _text("product_name", *_PRODUCT_NAME_ALIASES, required=True),
            _text("color", "Color", "color", "Variation"),
            _text("size", "Size", "size"),
            _integer("quantity", "Quantity", "quantity", "Qty", default=1),
            _amount("order_amount", "Order Amount", "order_amount"),
            _date("created_time", "Created Time", "created_time", "Order Date", "order_date", required=True),
            _date("delivered_time", "Delivered Time", "delivered_time"),
            _amount("settlement_amount", "Settlement Amount", "Total settlement amount", "settlement_amount", default=None),
            _amount("total_revenue", "Total Revenue", "Total revenue", "total_revenue", default=None),
            _amount("hpp", "HPP", "hpp", default=None),
            _amount("total", "Total", "total", default=None),
            _text("marketplace", *_MARKETPLACE_ALIASES, default="TikTok Shop"),
            _text("customer", "Customer", "customer"),
            _text("province", "Province", "province"),
            _text("regency_city", "Regency & City", "regency_city", "Regency", "City"),
        ),
        date_range_fields=("created_time", "delivered_time"),
        overlap_check=True,
    ),
    ImportTypeSpec(
        import_type="products",
        label="商品导入",
        table="products",
        key_fields=("product_code",),
        fields=(
            _text("product_code", "Product Code", "product_code", "PRODUCT_CODE", required=True),
            _text("product_name", *_PRODUCT_NAME_ALIASES, required=True),
            _text("category", "Category", "category", default="Uncategorized"),
            _text("brand", "Brand", "brand", default="D'Busana"),
            _text("size", "Size", "size"),
            _text("color", "Color", "color"),
            _amount("price", "Price", "price"),
            _amount("cost", "Cost", "cost", "HPP"),
            _integer("stock_quantity", "Stock Quantity", "stock_quantity", "Stock", "Stok"),
            _integer("min_stock", "Min Stock", "min_stock", default=5),
            _text("description", "Description", "description"),
        ),
    ),
    ImportTypeSpec(
        import_type="stock",
        label="库存流水导入",
        table="stock_movements",
        key_fields=("product_code", "movement_type", "movement_date", "reference_number"),
        fields=(
            _text("product_code", "Product Code", "product_code", "PRODUCT_CODE", required=True),
            _text("movement_type", "Movement Type", "movement_type", default="in",
                  choices=("in", "out", "adjustment")),
            _integer("quantity", "Quantity", "quantity", "Qty", "Stock Quantity", "stock_quantity", "Stock", "Stok"),
            _text("reference_number", "Reference Number", "reference_number"),
            _text("notes", "Notes", "notes"),
            _date("movement_date", "Movement Date", "movement_date", "Date", required=True),
        ),
        date_range_fields=("movement_date",),
    ),
    ImportTypeSpec(
        import_type="advertising",
        label="广告数据导入",
        table="advertising",
        key_fields=("campaign_name", "account_name", "date_start", "date_end"),
        fields=(
            _text("campaign_name", "Campaign Name", "campaign_name", "CAMPAIGN_NAME", "Campaign_Name",
                  "campaignName", "nama_campaign", "Nama Campaign", required=True),
            _text("account_name", *_ACCOUNT_NAME_ALIASES, default="D'Busana"),
            _text("ad_creative_type", "Ad Creative Type", "ad_creative_type", "AD_CREATIVE_TYPE",
                  "Campaign Type", "campaign_type"),
            _text("ad_creative", "Ad Creative", "ad_creative", "AD_CREATIVE", "creative"),
            _amount("cost", "Cost", "cost", "COST", "Biaya", "biaya"),
            _integer("conversions", "Conversions", "conversions", "CONVERSIONS", "konversi"),
            _amount("cpa", "CPA", "cpa", "Cpa", default=None),
            _amount("revenue", "Revenue", "revenue", "REVENUE", "pendapatan"),
            _amount("roi", "ROI", "roi", "Roi", default=None),
            _integer("impressions", "Impressions", "impressions", "IMPRESSIONS", "tayangan"),
            _integer("clicks", "Clicks", "clicks", "CLICKS", "klik"),
            _amount("ctr", "CTR", "ctr", "Ctr", default=None),
            _amount("conversion_rate", "Conversion Rate", "conversion_rate", "CONVERSION_RATE",
                    "tingkat_konversi", default=None),
            _text("marketplace", *_MARKETPLACE_ALIASES),
            _text("nama_produk", "Nama Produk", "nama_produk", "NAMA_PRODUK", *_PRODUCT_NAME_ALIASES),
            _date("date_start", "Date Range Start", "date_range_start", "DATE_RANGE_START", "Date Start",
                  "date_start", "DATE_START", "tanggal_mulai", required=True),
            _date("date_end", "Date Range End", "date_range_end", "DATE_RANGE_END", "Date End",
                  "date_end", "DATE_END", "tanggal_selesai", required=True),
        ),
        date_range_fields=("date_start", "date_end"),
        derive=derive_advertising_metrics,
        overlap_check=True,
    ),
    ImportTypeSpec(
        import_type="advertising-settlement",
        label="广告结算导入",
        table="advertising_settlements",
        key_fields=("order_id",),
        fields=(
            _text("order_id", *_ORDER_ID_ALIASES, required=True),
            _text("type", "Type", "type", "TYPE", "Settlement Type", "settlement_type",
                  default="GMV Payment for TikTok Ads"),
            _date("order_created_time", "Order Created Time", "order_created_time", "ORDER_CREATED_TIME",
                  "Created Time", "created_time", "Order Date", "order_date"),
            _date("order_settled_time", "Order Settled Time", "order_settled_time", "ORDER_SETTLED_TIME",
                  "Settled Time", "settled_time", "Settlement Date", "settlement_date"),
            _amount("settlement_amount", "Settlement Amount", "settlement_amount", "SETTLEMENT_AMOUNT",
                    "Total Settlement Amount", "total_settlement_amount", "Amount"),
            _text("account_name", *_ACCOUNT_NAME_ALIASES, default="D'Busana Fashion Ads"),
            _text("marketplace", *_MARKETPLACE_ALIASES, default="Tiktok Shop"),
            _text("currency", "Currency", "currency", "CURRENCY", default="IDR"),
            _text("settlement_period", "Settlement Period", "settlement_period"),
        ),
        date_range_fields=("order_created_time", "order_settled_time"),
        derive=derive_settlement_period,
        overlap_check=True,
    ),
    ImportTypeSpec(
        import_type="returns-and-cancellations",
        label="退货与取消导入",
        table="returns_and_cancellations",
        key_fields=("original_order_id", "product_name", "type"),
        fields=(
            _text("original_order_id", "Original Order ID", "original_order_id", required=True),
            _text("product_name", *_PRODUCT_NAME_ALIASES, required=True),
            _text("type", "Type", "type", default="return", choices=("return", "cancel")),
            _text("reason", "Reason", "reason"),
            _date("return_date", "Return Date", "return_date", required=True),
            _amount("returned_amount", "Returned Amount", "returned_amount"),
            _amount("refund_amount", "Refund Amount", "refund_amount"),
            _amount("restocking_fee", "Restocking Fee", "restocking_fee"),
            _amount("shipping_cost_loss", "Shipping Cost Loss", "shipping_cost_loss"),
            _integer("quantity_returned", "Quantity Returned", "quantity_returned", default=1),
            _amount("original_price", "Original Price", "original_price"),
            _text("marketplace", *_MARKETPLACE_ALIASES, required=True),
            _text("product_condition", "Product Condition", "product_condition", default="used"),
            _flag("resellable", "Resellable", "resellable"),
            _text("notes", "Notes", "notes"),
        ),
        date_range_fields=("return_date",),
    ),
    ImportTypeSpec(
        import_type="marketplace-reimbursements",
        label="平台赔付导入",
        table="marketplace_reimbursements",
        key_fields=("claim_id",),
        fields=(
            _text("claim_id", "Claim ID", "claim_id", required=True),
            _text("reimbursement_type", "Reimbursement Type", "reimbursement_type", default="lost_package"),
            _amount("claim_amount", "Claim Amount", "claim_amount"),
            _amount("approved_amount", "Approved Amount", "approved_amount"),
            _amount("received_amount", "Received Amount", "received_amount"),
            _amount("processing_fee", "Processing Fee", "processing_fee"),
            _date("incident_date", "Incident Date", "incident_date"),
            _date("claim_date", "Claim Date", "claim_date", required=True),
            _date("approval_date", "Approval Date", "approval_date"),
            _date("received_date", "Received Date", "received_date"),
            _text("affected_order_id", "Affected Order ID", "affected_order_id"),
            _text("product_name", *_PRODUCT_NAME_ALIASES),
            _text("marketplace", *_MARKETPLACE_ALIASES, required=True),
            _text("status", "Status", "status", default="pending"),
            _text("notes", "Notes", "notes"),
            _text("evidence_provided", "Evidence Provided", "evidence_provided"),
        ),
        date_range_fields=("claim_date",),
    ),
    ImportTypeSpec(
        import_type="commission-adjustments",
        label="佣金调整导入",
        table="commission_adjustments",
        key_fields=("original_order_id", "adjustment_type"),
        fields=(
            _text("original_order_id", "Original Order ID", "original_order_id", required=True),
            _text("adjustment_type", "Adjustment Type", "adjustment_type", default="return_commission_loss"),
            _text("reason", "Reason", "reason"),
            _amount("original_commission", "Original Commission", "original_commission"),
            _amount("adjustment_amount", "Adjustment Amount", "adjustment_amount"),
            _amount("final_commission", "Final Commission", "final_commission", default=None),
            _text("marketplace", *_MARKETPLACE_ALIASES, required=True),
            _amount("commission_rate", "Commission Rate", "commission_rate", default=None),
            _flag("dynamic_rate_applied", "Dynamic Rate Applied", "dynamic_rate_applied"),
            _date("transaction_date", "Transaction Date", "transaction_date"),
            _date("adjustment_date", "Adjustment Date", "adjustment_date", required=True),
            _text("product_name", *_PRODUCT_NAME_ALIASES),
            _integer("quantity", "Quantity", "quantity"),
            _amount("product_price", "Product Price", "product_price"),
        ),
        date_range_fields=("adjustment_date",),
        derive=derive_final_commission,
    ),
    ImportTypeSpec(
        import_type="affiliate-samples",
        label="达人样品导入",
        table="affiliate_samples",
        key_fields=("affiliate_name", "product_name", "given_date"),
        fields=(
            _text("affiliate_name", "Affiliate Name", "affiliate_name", required=True),
            _text("affiliate_platform", "Affiliate Platform", "affiliate_platform"),
            _text("affiliate_contact", "Affiliate Contact", "affiliate_contact"),
            _text("product_name", *_PRODUCT_NAME_ALIASES, required=True),
            _text("product_sku", "Product SKU", "product_sku"),
            _integer("quantity_given", "Quantity Given", "quantity_given", default=1),
            _amount("product_cost", "Product Cost", "product_cost"),
            _amount("total_cost", "Total Cost", "total_cost", default=None),
            _amount("shipping_cost", "Shipping Cost", "shipping_cost"),
            _amount("packaging_cost", "Packaging Cost", "packaging_cost"),
            _text("campaign_name", "Campaign Name", "campaign_name"),
            _integer("expected_reach", "Expected Reach", "expected_reach"),
            _text("content_type", "Content Type", "content_type"),
            _date("given_date", "Given Date", "given_date", required=True),
            _date("expected_content_date", "Expected Content Date", "expected_content_date"),
            _date("actual_content_date", "Actual Content Date", "actual_content_date"),
            _flag("content_delivered", "Content Delivered", "content_delivered"),
            _text("performance_notes", "Performance Notes", "performance_notes"),
            _amount("roi_estimate", "ROI Estimate", "roi_estimate", default=None),
            _text("status", "Status", "status", default="sent"),
        ),
        date_range_fields=("given_date",),
        derive=derive_sample_total_cost,
    ),
)


# ============ 覆盖配置 ============


class ImportTypeOverride(BaseModel):
    """单个导入类型的覆盖项。"""

    model_config = ConfigDict(extra="forbid")

    required: list[str] | None = Field(default=None, description="必填字段集合（替换内置配置）")
    defaults: dict[str, str] = Field(default_factory=dict, description="文本字段默认标签")


_OVERRIDES_ADAPTER = TypeAdapter(dict[str, ImportTypeOverride])


def apply_override(spec: ImportTypeSpec, override: ImportTypeOverride) -> ImportTypeSpec:
    """
    将覆盖项应用到单个导入类型。

    Raises:
        ValueError: 覆盖项引用了不存在的字段，或为非文本字段设置默认标签。
    """
    unknown = [
        name
        for name in [*(override.required or []), *override.defaults]
        if not spec.has_field(name)
    ]
    if unknown:
        raise ValueError(f"[ImportRules] {spec.import_type} 不存在字段：{', '.join(unknown)}")

    fields: list[FieldSpec] = []
    for f in spec.fields:
        updated = f
        if override.required is not None:
            updated = replace(updated, required=f.name in override.required or f.name == spec.identifier)
        if f.name in override.defaults:
            if f.kind != "text":
                raise ValueError(f"[ImportRules] {spec.import_type}.{f.name} 不是文本字段，不能设置默认标签")
            updated = replace(updated, default=override.defaults[f.name])
        fields.append(updated)
    return replace(spec, fields=tuple(fields))


def load_overrides(path: str | Path) -> dict[str, ImportTypeOverride]:
    """
    读取并校验覆盖配置文件。

    文件格式：
        {"advertising-settlement": {"required": ["order_id", "settlement_amount"]},
         "sales": {"defaults": {"marketplace": "Shopee"}}}

    Raises:
        ValueError: 文件不是合法 JSON、结构不合法或包含未知导入类型。
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        overrides = _OVERRIDES_ADAPTER.validate_python(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as err:
        raise ValueError(f"[ImportRules] 导入规则文件无效：{path}（{err}）") from err

    unknown = [name for name in overrides if name not in IMPORT_TYPES]
    if unknown:
        raise ValueError(f"[ImportRules] 未知导入类型：{', '.join(unknown)}")
    return overrides


def load_import_specs(rules_path: str | Path | None = None) -> dict[str, ImportTypeSpec]:
    """
    返回全部导入类型规格（内置配置 + 可选覆盖）。

    Args:
        rules_path: 覆盖配置 JSON 路径；None 表示仅使用内置配置。

    Returns:
        import_type → ImportTypeSpec。
    """
    specs = {spec.import_type: spec for spec in BUILTIN_SPECS}
    if rules_path:
        for import_type, override in load_overrides(rules_path).items():
            specs[import_type] = apply_override(specs[import_type], override)
        logger.info(f"[ImportRules] 已应用导入规则覆盖：{rules_path}")
    return specs


def get_import_spec(import_type: str, rules_path: str | Path | None = None) -> ImportTypeSpec:
    """
    按导入类型取规格。

    Raises:
        KeyError: 未知导入类型。
    """
    specs = load_import_specs(rules_path)
    if import_type not in specs:
        raise KeyError(import_type)
    return specs[import_type]
