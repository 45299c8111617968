from __future__ import annotations

import time
from dataclasses import replace

from loguru import logger

from campus_dashboard.models import AuditLogEntry, LogType
from campus_dashboard.reactive.views import DEFAULT_GRACE_SECONDS, SharedView, derive_map
from campus_dashboard.store.collections import AUDIT_LOGS, PortalStore
from campus_dashboard.store.database import PortalDatabase


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def _newest_first(entries: tuple, log_type: LogType | None) -> tuple:
    selected = [e for e in entries if log_type is None or e.log_type == log_type]
    selected.sort(key=lambda e: (e.timestamp, e.id), reverse=True)
    return tuple(selected)


class AuditLogger:
    def __init__(self, store: PortalStore, *, grace_seconds: float = DEFAULT_GRACE_SECONDS):
        self._store = store
        self._grace_seconds = grace_seconds
        self._entries: SharedView[tuple] = SharedView(
            store.live(AUDIT_LOGS),
            initial=(),
            grace_seconds=0,
            name="audit_logs",
        )
        self._views: dict[LogType | None, SharedView[tuple]] = {}

    async def append(
        self,
        *,
        actor_id: str,
        actor_name: str,
        action: str,
        target_id: str,
        details: str,
        log_type: LogType,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            actor_id=actor_id,
            actor_name=actor_name,
            action=action,
            target_id=target_id,
            details=details,
            log_type=log_type,
            timestamp=now_ms(),
        )
        entry_id = await self._store.insert(AUDIT_LOGS, entry)
        logger.bind(audit=True, log_type=log_type.value).info(
            f"#{entry_id} {action} target={target_id} actor={actor_name} ({actor_id}): {details}"
        )
        return replace(entry, id=entry_id)

    async def entries(self, log_type: LogType | None = None) -> tuple:
        """All entries of ``log_type`` (or every type), newest first."""
        return _newest_first(await self._store.query_all(AUDIT_LOGS), log_type)

    def live(self, log_type: LogType | None = None) -> SharedView[tuple]:
        view = self._views.get(log_type)
        if view is None:
            label = log_type.value.lower() if log_type is not None else "all"
            view = derive_map(
                self._entries,
                lambda entries: _newest_first(entries, log_type),
                initial=(),
                grace_seconds=self._grace_seconds,
                name=f"audit_logs:{label}",
            )
            self._views[log_type] = view
        return view

    async def trim(self, max_per_type: int) -> int:
        return await trim_audit_logs(self._store, max_per_type=max_per_type)

    async def clear(self, log_type: LogType | None = None) -> int:
        def _clear(db: PortalDatabase) -> int:
            if log_type is None:
                return db.execute("DELETE FROM audit_logs").rowcount
            return db.execute("DELETE FROM audit_logs WHERE log_type = ?", (log_type.value,)).rowcount

        removed = await self._store.apply(AUDIT_LOGS, _clear)
        logger.info(f"Cleared {removed} audit entries ({log_type.value if log_type else 'all types'})")
        return removed


async def trim_audit_logs(store: PortalStore, *, max_per_type: int) -> int:
    """Keep only the ``max_per_type`` newest entries of each log type."""
    if max_per_type <= 0:
        return 0

    def _trim(db: PortalDatabase) -> int:
        removed = 0
        log_types = [str(row["log_type"]) for row in db.execute("SELECT DISTINCT log_type FROM audit_logs").fetchall()]
        for log_type in log_types:
            cursor = db.execute(
                """
                DELETE FROM audit_logs
                WHERE log_type = ?
                  AND id NOT IN (
                    SELECT id FROM audit_logs
                    WHERE log_type = ?
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?
                  )
                """,
                (log_type, log_type, max_per_type),
            )
            removed += cursor.rowcount
        return removed

    removed = await store.apply(AUDIT_LOGS, _trim)
    if removed:
        logger.info(f"Audit maintenance removed {removed} entries (keeping {max_per_type} per type)")
    return removed
