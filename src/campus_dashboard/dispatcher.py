from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import replace

from loguru import logger

from campus_dashboard.errors import ValidationError
from campus_dashboard.identity import Actor, IdentityProvider
from campus_dashboard.models import (
    GENERAL_CHANNEL,
    AuditLogEntry,
    ChatMessageRecord,
    CourseRecord,
    EnrollmentRecord,
    EnrollmentStatus,
    LogType,
    Role,
)
from campus_dashboard.store.audit import AuditLogger, now_ms
from campus_dashboard.store.collections import CHAT_MESSAGES, COURSES, ENROLLMENTS, PortalStore

UNKNOWN_ACTOR_ID = "unknown"

_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:\-]{1,128}$")

_PLACEHOLDER_NAMES = {
    Role.TUTOR: "Tutor",
    Role.STUDENT: "Student",
    Role.ADMIN: "Admin",
}

_REVIEW_ACTIONS = {
    EnrollmentStatus.APPROVED: "APPROVE_ENROLLMENT",
    EnrollmentStatus.REJECTED: "REJECT_ENROLLMENT",
    EnrollmentStatus.PENDING_REVIEW: "UPDATE_ENROLLMENT",
}


def validate_id(value: object, field: str) -> str:
    if not isinstance(value, str) or not _ID_PATTERN.match(value):
        raise ValidationError(f"Invalid {field}: {value!r}")
    return value


def validate_text(value: object, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be non-empty text")
    return value


class ActionDispatcher:
    """Audited write entry points for one dashboard owner.

    Each action validates its inputs, performs a single store mutation and, once
    that succeeds, appends exactly one audit entry. Rejected or failed actions
    leave no audit trail.
    """

    def __init__(
        self,
        store: PortalStore,
        audit: AuditLogger,
        identity: IdentityProvider,
        *,
        owner_id: str | None,
        role: Role = Role.TUTOR,
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._audit = audit
        self._identity = identity
        self._owner_id = owner_id or None
        self._role = role
        self._clock = clock
        self._last_timestamp = 0

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def role(self) -> Role:
        return self._role

    async def update_course_content(self, course_id: str, content: str) -> CourseRecord:
        validate_id(course_id, "course id")
        validate_text(content, "Course content")
        course: CourseRecord = await self._store.update(COURSES, course_id, {"content": content})
        await self._record("UPDATE_CONTENT", course_id, f"Updated content of course {course.title}")
        return course

    async def send_message(
        self,
        receiver_id: str,
        text: str,
        *,
        course_id: str = GENERAL_CHANNEL,
        receiver_name: str | None = None,
    ) -> ChatMessageRecord:
        sender_id = self._require_owner()
        validate_id(receiver_id, "receiver id")
        validate_id(course_id, "course id")
        validate_text(text, "Message text")
        message = ChatMessageRecord(
            id="",
            sender_id=sender_id,
            receiver_id=receiver_id,
            message=text,
            timestamp=self._next_timestamp(),
            course_id=course_id,
        )
        message_id = await self._store.insert(CHAT_MESSAGES, message)
        await self._record("SEND_MESSAGE", receiver_id, f"Sent message to {receiver_name or receiver_id}")
        return replace(message, id=str(message_id))

    async def review_enrollment(self, enrollment_id: str, status: EnrollmentStatus | str) -> EnrollmentRecord:
        validate_id(enrollment_id, "enrollment id")
        try:
            new_status = EnrollmentStatus(status)
        except ValueError as ex:
            raise ValidationError(f"Unknown enrollment status: {status!r}") from ex
        enrollment: EnrollmentRecord = await self._store.update(ENROLLMENTS, enrollment_id, {"status": new_status})
        await self._record(
            _REVIEW_ACTIONS[new_status],
            enrollment_id,
            f"Set enrollment of {enrollment.user_id} in {enrollment.course_id} to {new_status.value}",
        )
        return enrollment

    async def assign_course(self, course_id: str) -> CourseRecord:
        owner_id = self._require_owner()
        validate_id(course_id, "course id")
        course: CourseRecord = await self._store.update(COURSES, course_id, {"tutor_id": owner_id})
        await self._record("ASSIGN_COURSE", course_id, f"Assigned {owner_id} to course {course.title}")
        return course

    async def unassign_course(self, course_id: str) -> CourseRecord:
        owner_id = self._require_owner()
        validate_id(course_id, "course id")
        course: CourseRecord = await self._store.update(
            COURSES, course_id, {"tutor_id": None}, expected={"tutor_id": owner_id}
        )
        await self._record("UNASSIGN_COURSE", course_id, f"Unassigned {owner_id} from course {course.title}")
        return course

    async def resolve_actor(self) -> Actor:
        try:
            actor = await self._identity.current_actor()
        except Exception as ex:
            logger.warning(f"Identity provider failed: {type(ex).__name__}: {ex}")
            actor = None
        if actor is not None:
            return actor
        placeholder = Actor(
            id=self._owner_id or UNKNOWN_ACTOR_ID,
            display_name=_PLACEHOLDER_NAMES.get(self._role, "Unknown"),
        )
        logger.warning(f"No signed-in actor; attributing audit entry to placeholder {placeholder.display_name!r}")
        return placeholder

    async def _record(self, action: str, target_id: str, details: str) -> AuditLogEntry:
        actor = await self.resolve_actor()
        return await self._audit.append(
            actor_id=actor.id,
            actor_name=actor.display_name,
            action=action,
            target_id=target_id,
            details=details,
            log_type=LogType.for_role(self._role),
        )

    def _require_owner(self) -> str:
        if self._owner_id is None:
            raise ValidationError("This action needs a dashboard owner id")
        return self._owner_id

    def _next_timestamp(self) -> int:
        timestamp = max(self._clock(), self._last_timestamp)
        self._last_timestamp = timestamp
        return timestamp
