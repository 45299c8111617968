from __future__ import annotations

import sqlite3
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, TypeVar
from uuid import uuid4

from loguru import logger
from tenacity import AsyncRetrying, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from campus_dashboard.errors import NotFoundError, StoreUnavailableError, ValidationError
from campus_dashboard.models import AuditLogEntry, ChatMessageRecord, CourseRecord, EnrollmentRecord, UserRecord
from campus_dashboard.reactive.live import ErrorHandler, Listener, ListenerSet, Subscription
from campus_dashboard.store.database import PortalDatabase

T = TypeVar("T")

USERS = "users"
COURSES = "courses"
ENROLLMENTS = "enrollments"
CHAT_MESSAGES = "chat_messages"
AUDIT_LOGS = "audit_logs"


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    record_type: type
    order_by: str
    immutable_fields: frozenset[str]
    generated_id: bool = False

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(f.name for f in fields(self.record_type))


COLLECTIONS: dict[str, CollectionSpec] = {
    USERS: CollectionSpec(USERS, UserRecord, "rowid ASC", frozenset({"id", "role"})),
    COURSES: CollectionSpec(COURSES, CourseRecord, "rowid ASC", frozenset({"id"})),
    ENROLLMENTS: CollectionSpec(ENROLLMENTS, EnrollmentRecord, "rowid ASC", frozenset({"id", "user_id", "course_id"})),
    CHAT_MESSAGES: CollectionSpec(
        CHAT_MESSAGES,
        ChatMessageRecord,
        "timestamp ASC, rowid ASC",
        frozenset(f.name for f in fields(ChatMessageRecord)),
    ),
    AUDIT_LOGS: CollectionSpec(
        AUDIT_LOGS,
        AuditLogEntry,
        "id ASC",
        frozenset(f.name for f in fields(AuditLogEntry)),
        generated_id=True,
    ),
}


def _spec(collection: str) -> CollectionSpec:
    spec = COLLECTIONS.get(collection)
    if spec is None:
        raise ValidationError(f"Unknown collection: {collection!r}")
    return spec


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"Store {reason}: {exc}. Retrying in {wait:.2f}s (attempt {attempt})...")


class CollectionSource:
    """Live view of one store collection, usable wherever a ``Source`` is expected."""

    def __init__(self, store: PortalStore, collection: str):
        self._store = store
        self._collection = collection

    @property
    def collection(self) -> str:
        return self._collection

    def subscribe(self, listener: Listener, on_error: ErrorHandler | None = None) -> Subscription:
        return self._store.subscribe(self._collection, listener, on_error)


class PortalStore:
    """Collection-based CRUD over ``PortalDatabase`` with push subscriptions.

    Every successful mutation re-delivers the full, freshly queried snapshot of
    the mutated collection to its subscribers, unless it equals the snapshot
    they last received.
    """

    def __init__(
        self,
        database: PortalDatabase,
        *,
        retry_attempts: int = 3,
        retry_wait_seconds: float = 0.05,
    ):
        self._db = database
        self._retry_attempts = max(1, retry_attempts)
        self._retry_wait_seconds = max(0.0, retry_wait_seconds)
        self._registry_lock = threading.Lock()
        self._listeners: dict[str, ListenerSet[tuple]] = {}
        self._last_delivered: dict[str, tuple] = {}
        self._activations: Counter[str] = Counter()

    @property
    def database(self) -> PortalDatabase:
        return self._db

    def close(self) -> None:
        self._db.close()

    def live(self, collection: str) -> CollectionSource:
        _spec(collection)
        return CollectionSource(self, collection)

    def activation_count(self, collection: str) -> int:
        return self._activations[collection]

    def listener_count(self, collection: str) -> int:
        listeners = self._listeners.get(collection)
        return 0 if listeners is None else len(listeners)

    # --- queries ---

    async def query_all(self, collection: str) -> tuple:
        spec = _spec(collection)
        return await self._run(self._fetch_all, spec)

    async def get(self, collection: str, record_id: str | int) -> Any | None:
        spec = _spec(collection)
        return await self._run(self._fetch_one, spec, record_id)

    # --- mutations ---

    async def insert(self, collection: str, record: Any) -> str | int:
        spec = _spec(collection)
        if not isinstance(record, spec.record_type):
            raise ValidationError(f"{collection} expects {spec.record_type.__name__}, got {type(record).__name__}")
        record_id = await self._run(self._insert, spec, record)
        logger.debug(f"Inserted {collection}/{record_id}")
        self._publish(collection)
        return record_id

    async def update(
        self,
        collection: str,
        record_id: str,
        patch: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> Any:
        """Apply ``patch`` to one record and return the updated record.

        ``expected`` guards the write: it only happens when the stored record
        currently holds those field values, otherwise ``ValidationError`` is
        raised and nothing changes.
        """
        spec = _spec(collection)
        if not patch:
            raise ValidationError("Update patch is empty")
        unknown = (set(patch) | set(expected or ())) - spec.field_names
        if unknown:
            raise ValidationError(f"Unknown {collection} fields: {', '.join(sorted(unknown))}")
        immutable = set(patch) & spec.immutable_fields
        if immutable:
            raise ValidationError(f"Immutable {collection} fields: {', '.join(sorted(immutable))}")
        updated = await self._run(self._update, spec, record_id, patch, expected or {})
        logger.debug(f"Updated {collection}/{record_id}: {', '.join(sorted(patch))}")
        self._publish(collection)
        return updated

    async def apply(self, collection: str, operation: Callable[[PortalDatabase], int]) -> int:
        """Run a bulk maintenance operation against one collection's table.

        ``operation`` receives the database and returns the number of affected
        rows; the collection is re-published when it is non-zero.
        """
        spec = _spec(collection)

        def _apply(_: CollectionSpec) -> int:
            with self._db.transaction():
                return operation(self._db)

        affected = await self._run(_apply, spec)
        if affected:
            self._publish(collection)
        return affected

    # --- subscriptions ---

    def subscribe(self, collection: str, listener: Listener, on_error: ErrorHandler | None = None) -> Subscription:
        spec = _spec(collection)
        with self._registry_lock:
            listeners = self._listeners.setdefault(collection, ListenerSet(f"store:{collection}"))
        subscription, replay = listeners.add(
            listener,
            on_error,
            on_removed=lambda: self._on_listener_removed(collection),
        )
        self._activations[collection] += 1
        try:
            snapshot = self._fetch_all_blocking(spec)
        except StoreUnavailableError as ex:
            subscription.cancel()
            if on_error is not None:
                on_error(ex)
            else:
                logger.error(f"Subscription to {collection} failed: {ex}")
            return subscription
        self._last_delivered[collection] = snapshot
        replay(snapshot)
        return subscription

    def _on_listener_removed(self, collection: str) -> None:
        if self.listener_count(collection) == 0:
            self._last_delivered.pop(collection, None)

    def _publish(self, collection: str) -> None:
        listeners = self._listeners.get(collection)
        if listeners is None or len(listeners) == 0:
            return
        try:
            snapshot = self._fetch_all_blocking(_spec(collection))
        except StoreUnavailableError as ex:
            logger.error(f"Re-delivery of {collection} failed: {ex}")
            self._last_delivered.pop(collection, None)
            listeners.fail(ex)
            return
        if self._last_delivered.get(collection) == snapshot:
            logger.debug(f"Skipping identical {collection} delivery")
            return
        self._last_delivered[collection] = snapshot
        listeners.deliver(snapshot)

    # --- sqlite plumbing ---

    def _retry_policy(self) -> dict:
        return {
            "retry": retry_if_exception_type(sqlite3.OperationalError),
            "wait": wait_exponential(multiplier=self._retry_wait_seconds, min=self._retry_wait_seconds, max=1.0),
            "stop": stop_after_attempt(self._retry_attempts),
            "before_sleep": _on_retry,
            "reraise": True,
        }

    async def _run(self, operation: Callable[..., T], *args: Any) -> T:
        try:
            async for attempt in AsyncRetrying(**self._retry_policy()):
                with attempt:
                    return operation(*args)
        except sqlite3.Error as ex:
            raise StoreUnavailableError(f"{type(ex).__name__}: {ex}") from ex
        raise StoreUnavailableError("Store operation did not run")

    def _fetch_all_blocking(self, spec: CollectionSpec) -> tuple:
        try:
            for attempt in Retrying(**self._retry_policy()):
                with attempt:
                    return self._fetch_all(spec)
        except sqlite3.Error as ex:
            raise StoreUnavailableError(f"{type(ex).__name__}: {ex}") from ex
        raise StoreUnavailableError("Store query did not run")

    def _fetch_all(self, spec: CollectionSpec) -> tuple:
        rows = self._db.execute(f"SELECT * FROM {spec.name} ORDER BY {spec.order_by}").fetchall()
        return tuple(spec.record_type.from_row(row) for row in rows)

    def _fetch_one(self, spec: CollectionSpec, record_id: str | int) -> Any | None:
        row = self._db.execute(f"SELECT * FROM {spec.name} WHERE id = ? LIMIT 1", (record_id,)).fetchone()
        return None if row is None else spec.record_type.from_row(row)

    def _insert(self, spec: CollectionSpec, record: Any) -> str | int:
        row = record.to_row()
        if not spec.generated_id and not row.get("id"):
            row["id"] = str(uuid4())
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        try:
            with self._db.transaction():
                cursor = self._db.execute(
                    f"INSERT INTO {spec.name} ({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
        except sqlite3.IntegrityError as ex:
            raise ValidationError(f"Rejected {spec.name} record: {ex}") from ex
        return int(cursor.lastrowid) if spec.generated_id else row["id"]

    def _update(self, spec: CollectionSpec, record_id: str, patch: dict[str, Any], expected: dict[str, Any]) -> Any:
        values = {k: (v.value if isinstance(v, Enum) else v) for k, v in patch.items()}
        guards = {k: (v.value if isinstance(v, Enum) else v) for k, v in expected.items()}
        assignments = ", ".join(f"{column} = ?" for column in values)
        conditions = "".join(f" AND {column} IS ?" for column in guards)
        try:
            with self._db.transaction():
                cursor = self._db.execute(
                    f"UPDATE {spec.name} SET {assignments} WHERE id = ?{conditions}",
                    (*values.values(), record_id, *guards.values()),
                )
                if cursor.rowcount == 0:
                    if self._fetch_one(spec, record_id) is None:
                        raise NotFoundError(spec.name, record_id)
                    raise ValidationError(
                        f"{spec.name} record {record_id} does not hold "
                        + ", ".join(f"{k}={v!r}" for k, v in guards.items())
                    )
        except sqlite3.IntegrityError as ex:
            raise ValidationError(f"Rejected {spec.name} update: {ex}") from ex
        return self._fetch_one(spec, record_id)
