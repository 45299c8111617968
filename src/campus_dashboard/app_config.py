from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class RuntimeEnv:
    actor_id: str | None
    actor_display_name: str | None
    owner_id: str | None


@dataclass
class AppConfig:
    store_db_path: str
    owner_id: str | None
    owner_role: str
    view_idle_grace_seconds: float
    audit_retention_per_type: int
    run_log_maintenance: bool
    store_retry_attempts: int
    seed_demo_data: bool
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        store_db_path=str(config.get("StoreDbPath", ".campus/portal.db")),
        owner_id=str(config.get("OwnerId", "")).strip() or None,
        owner_role=str(config.get("OwnerRole", "tutor")).strip().lower(),
        view_idle_grace_seconds=max(0.0, float(config.get("ViewIdleGraceSeconds", 5.0))),
        audit_retention_per_type=int(config.get("AuditRetentionPerType", 100)),
        run_log_maintenance=_to_bool(config.get("RunLogMaintenance", True), default=True),
        store_retry_attempts=max(1, int(config.get("StoreRetryAttempts", 3))),
        seed_demo_data=_to_bool(config.get("SeedDemoData", False), default=False),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        actor_id=os.environ.get("PORTAL_ACTOR_ID") or None,
        actor_display_name=os.environ.get("PORTAL_ACTOR_NAME") or None,
        owner_id=os.environ.get("PORTAL_OWNER_ID") or None,
    )
