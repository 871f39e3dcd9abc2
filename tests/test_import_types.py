from __future__ import annotations

import json
import tempfile
import unittest
from datetime import date
from decimal import Decimal
from pathlib import Path

from retail_ingest.core.import_types import (
    derive_advertising_metrics,
    derive_final_commission,
    derive_sample_total_cost,
    derive_settlement_period,
    get_import_spec,
    load_import_specs,
)
from retail_ingest.core.models import IMPORT_TYPES


class BuiltinSpecTests(unittest.TestCase):
    def test_every_import_type_is_configured(self):
        specs = load_import_specs()
        self.assertEqual(set(specs), set(IMPORT_TYPES))

    def test_identifier_is_always_required(self):
        for spec in load_import_specs().values():
            required = {f.name for f in spec.required_fields}
            self.assertIn(spec.identifier, required, spec.import_type)

    def test_key_fields_are_declared_fields(self):
        for spec in load_import_specs().values():
            for name in spec.key_fields:
                self.assertTrue(spec.has_field(name), f"{spec.import_type}.{name}")

    def test_sales_required_set(self):
        spec = get_import_spec("sales")
        self.assertEqual(
            {f.name for f in spec.required_fields},
            {"order_id", "seller_sku", "product_name", "created_time"},
        )

    def test_unknown_import_type(self):
        with self.assertRaises(KeyError):
            get_import_spec("invoices")


class DeriveTests(unittest.TestCase):
    def test_advertising_metrics_computed_when_missing(self):
        values = {
            "cost": Decimal("100"),
            "revenue": Decimal("250"),
            "conversions": 4,
            "impressions": 1000,
            "clicks": 50,
            "cpa": None,
            "roi": None,
            "ctr": None,
            "conversion_rate": None,
        }
        derive_advertising_metrics(values)
        self.assertEqual(values["cpa"], Decimal("25.00"))
        self.assertEqual(values["roi"], Decimal("150.00"))
        self.assertEqual(values["ctr"], Decimal("5.00"))
        self.assertEqual(values["conversion_rate"], Decimal("8.00"))

    def test_advertising_metrics_keep_provided_values(self):
        values = {"cost": Decimal("100"), "conversions": 4, "cpa": Decimal("30"), "roi": None,
                  "ctr": None, "conversion_rate": None}
        derive_advertising_metrics(values)
        self.assertEqual(values["cpa"], Decimal("30"))
        # 没有收入 / 曝光 / 点击时不计算
        self.assertIsNone(values["roi"])
        self.assertIsNone(values["ctr"])
        self.assertIsNone(values["conversion_rate"])

    def test_settlement_period_prefers_settled_time(self):
        values = {"order_settled_time": date(2024, 4, 2), "order_created_time": date(2024, 3, 28)}
        derive_settlement_period(values)
        self.assertEqual(values["settlement_period"], "2024-04")

        values = {"order_settled_time": None, "order_created_time": date(2024, 3, 28)}
        derive_settlement_period(values)
        self.assertEqual(values["settlement_period"], "2024-03")

        values = {"settlement_period": "2024-01", "order_settled_time": date(2024, 4, 2)}
        derive_settlement_period(values)
        self.assertEqual(values["settlement_period"], "2024-01")

    def test_final_commission_and_sample_cost(self):
        values = {"original_commission": Decimal("12000"), "adjustment_amount": Decimal("-2000"),
                  "final_commission": None}
        derive_final_commission(values)
        self.assertEqual(values["final_commission"], Decimal("10000"))

        values = {"product_cost": Decimal("75000"), "quantity_given": 3, "total_cost": None}
        derive_sample_total_cost(values)
        self.assertEqual(values["total_cost"], Decimal("225000"))


class OverrideTests(unittest.TestCase):
    def _write_rules(self, tmpdir: str, payload: object) -> Path:
        path = Path(tmpdir) / "rules.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_required_and_default_overrides(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write_rules(tmpdir, {
                "advertising-settlement": {"required": ["settlement_amount"]},
                "sales": {"defaults": {"marketplace": "Shopee"}},
            })
            specs = load_import_specs(path)

        settlement = specs["advertising-settlement"]
        self.assertEqual({f.name for f in settlement.required_fields}, {"order_id", "settlement_amount"})
        self.assertEqual(specs["sales"].field_spec("marketplace").default, "Shopee")
        # 未覆盖的类型保持内置配置
        self.assertEqual(
            {f.name for f in specs["products"].required_fields},
            {"product_code", "product_name"},
        )

    def test_unknown_field_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write_rules(tmpdir, {"sales": {"required": ["coupon_code"]}})
            with self.assertRaisesRegex(ValueError, "coupon_code"):
                load_import_specs(path)

    def test_unknown_import_type_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write_rules(tmpdir, {"invoices": {"required": []}})
            with self.assertRaisesRegex(ValueError, "invoices"):
                load_import_specs(path)

    def test_default_on_non_text_field_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self._write_rules(tmpdir, {"sales": {"defaults": {"quantity": "2"}}})
            with self.assertRaisesRegex(ValueError, "quantity"):
                load_import_specs(path)

    def test_malformed_file_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "rules.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(ValueError):
                load_import_specs(path)

            path.write_text(json.dumps({"sales": {"required": "order_id"}}), encoding="utf-8")
            with self.assertRaises(ValueError):
                load_import_specs(path)


if __name__ == "__main__":
    unittest.main()
