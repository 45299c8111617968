import json
import os
import shutil
import unittest
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

from campus_dashboard.app_config import load_json_config, parse_app_config, resolve_runtime_env

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class AppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})
        self.assertEqual(".campus/portal.db", app.store_db_path)
        self.assertIsNone(app.owner_id)
        self.assertEqual("tutor", app.owner_role)
        self.assertEqual(5.0, app.view_idle_grace_seconds)
        self.assertEqual(100, app.audit_retention_per_type)
        self.assertTrue(app.run_log_maintenance)
        self.assertEqual(3, app.store_retry_attempts)
        self.assertFalse(app.seed_demo_data)
        self.assertEqual("INFO", app.log_level)
        self.assertIsNone(app.log_consumers)

    def test_values_are_normalised(self) -> None:
        app = parse_app_config(
            {
                "OwnerId": "  ",
                "OwnerRole": " Admin ",
                "ViewIdleGraceSeconds": -3,
                "StoreRetryAttempts": 0,
                "RunLogMaintenance": "off",
                "SeedDemoData": "yes",
            }
        )
        self.assertIsNone(app.owner_id)
        self.assertEqual("admin", app.owner_role)
        self.assertEqual(0.0, app.view_idle_grace_seconds)
        self.assertEqual(1, app.store_retry_attempts)
        self.assertFalse(app.run_log_maintenance)
        self.assertTrue(app.seed_demo_data)

    def test_load_json_config_reads_file_or_returns_empty(self) -> None:
        tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"config-{uuid4().hex}"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        try:
            path = tmp_dir / "config.json"
            self.assertEqual({}, load_json_config(path))
            path.write_text(json.dumps({"OwnerId": "tutor-9"}), encoding="utf-8")
            self.assertEqual("tutor-9", parse_app_config(load_json_config(path)).owner_id)
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    def test_runtime_env_reads_portal_variables(self) -> None:
        env = {"PORTAL_ACTOR_ID": "t1", "PORTAL_ACTOR_NAME": "", "PORTAL_OWNER_ID": "t1"}
        with patch.dict(os.environ, env, clear=False):
            runtime_env = resolve_runtime_env()
        self.assertEqual("t1", runtime_env.actor_id)
        self.assertIsNone(runtime_env.actor_display_name)
        self.assertEqual("t1", runtime_env.owner_id)


if __name__ == "__main__":
    unittest.main()
