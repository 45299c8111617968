from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from campus_dashboard.app_config import AppConfig, RuntimeEnv
from campus_dashboard.dashboard import DashboardFactory, TutorDashboard
from campus_dashboard.errors import ValidationError
from campus_dashboard.identity import Actor, EnvIdentityProvider, IdentityProvider, StaticIdentityProvider
from campus_dashboard.logging_config import setup_logging
from campus_dashboard.models import Role
from campus_dashboard.seed import DEMO_TUTOR_ID, seed_demo_data
from campus_dashboard.store import AuditLogger, PortalDatabase, PortalStore, trim_audit_logs


@dataclass
class AppRuntime:
    store: PortalStore
    audit: AuditLogger
    identity: IdentityProvider
    factory: DashboardFactory
    dashboard: TutorDashboard
    seeded: bool
    log_descriptions: list[str]

    def close(self) -> None:
        self.store.close()


def _resolve_identity(env: RuntimeEnv) -> IdentityProvider:
    if env.actor_id:
        return StaticIdentityProvider(Actor(id=env.actor_id, display_name=env.actor_display_name or env.actor_id))
    return EnvIdentityProvider()


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv, *, configure_logging: bool = True) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers) if configure_logging else []

    try:
        role = Role(app.owner_role)
    except ValueError as ex:
        raise ValidationError(f"Unknown OwnerRole: {app.owner_role!r}") from ex

    db_path = app.store_db_path
    if db_path != ":memory:" and not Path(db_path).is_absolute():
        db_path = str(Path.cwd() / db_path)
    store = PortalStore(PortalDatabase(db_path), retry_attempts=app.store_retry_attempts)
    audit = AuditLogger(store, grace_seconds=app.view_idle_grace_seconds)
    identity = _resolve_identity(env)

    seeded = False
    if app.seed_demo_data:
        seeded = await seed_demo_data(store)

    if app.run_log_maintenance:
        await trim_audit_logs(store, max_per_type=app.audit_retention_per_type)

    owner_id = env.owner_id or app.owner_id or (DEMO_TUTOR_ID if app.seed_demo_data else None)
    if owner_id is None:
        store.close()
        raise ValidationError("No dashboard owner: set OwnerId in config.json or PORTAL_OWNER_ID")

    factory = DashboardFactory(store, audit, identity, grace_seconds=app.view_idle_grace_seconds)
    dashboard = factory.create(owner_id, role)
    logger.info(f"Runtime ready: store={db_path}, owner={owner_id} ({role.value})")

    return AppRuntime(
        store=store,
        audit=audit,
        identity=identity,
        factory=factory,
        dashboard=dashboard,
        seeded=seeded,
        log_descriptions=log_descriptions,
    )
