from campus_dashboard.store.audit import AuditLogger, trim_audit_logs
from campus_dashboard.store.collections import (
    AUDIT_LOGS,
    CHAT_MESSAGES,
    COURSES,
    ENROLLMENTS,
    USERS,
    CollectionSource,
    PortalStore,
)
from campus_dashboard.store.database import PortalDatabase

__all__ = [
    "AUDIT_LOGS",
    "CHAT_MESSAGES",
    "COURSES",
    "ENROLLMENTS",
    "USERS",
    "AuditLogger",
    "CollectionSource",
    "PortalDatabase",
    "PortalStore",
    "trim_audit_logs",
]
