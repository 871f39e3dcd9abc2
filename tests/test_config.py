from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from retail_ingest.core import config
from retail_ingest.core.config import ImportConfig


class ConfigTests(unittest.TestCase):
    def test_defaults(self):
        keys = ("DB_PATH", "IMPORT_CHUNK_SIZE", "MAX_UPLOAD_BYTES", "DUPLICATE_LOOKBACK_DAYS",
                "NAME_SIMILARITY_THRESHOLD", "IMPORT_RULES_PATH", "LOG_LEVEL")
        env = {k: v for k, v in os.environ.items() if k not in keys}
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertEqual(config.get_db_path(), "data/retail.db")
            self.assertEqual(config.get_log_level(), "INFO")
            self.assertIsNone(config.get_import_rules_path())
            self.assertEqual(ImportConfig.get_chunk_size(), 50)
            self.assertEqual(ImportConfig.get_max_upload_bytes(), 20 * 1024 * 1024)
            self.assertEqual(ImportConfig.get_lookback_days(), 30)
            self.assertAlmostEqual(ImportConfig.get_name_similarity_threshold(), 0.7)

    def test_overrides(self):
        with mock.patch.dict(os.environ, {
            "DB_PATH": "/tmp/x.db",
            "IMPORT_CHUNK_SIZE": "0",
            "DUPLICATE_LOOKBACK_DAYS": "90",
            "LOG_LEVEL": "debug",
        }):
            self.assertEqual(config.get_db_path(), "/tmp/x.db")
            # 分块至少为 1
            self.assertEqual(ImportConfig.get_chunk_size(), 1)
            self.assertEqual(ImportConfig.get_lookback_days(), 90)
            self.assertEqual(config.get_log_level(), "DEBUG")

    def test_upload_dir_is_created(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "nested" / "uploads"
            with mock.patch.dict(os.environ, {"UPLOAD_DIR": str(target)}):
                self.assertEqual(config.get_upload_dir(), target)
            self.assertTrue(target.is_dir())


if __name__ == "__main__":
    unittest.main()
