from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"


class EnrollmentStatus(str, Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class LogType(str, Enum):
    ADMIN = "ADMIN"
    TUTOR = "TUTOR"
    STUDENT = "STUDENT"
    SYSTEM = "SYSTEM"

    @classmethod
    def for_role(cls, role: Role) -> LogType:
        return _LOG_TYPE_BY_ROLE.get(role, cls.SYSTEM)


_LOG_TYPE_BY_ROLE = {
    Role.ADMIN: LogType.ADMIN,
    Role.TUTOR: LogType.TUTOR,
    Role.STUDENT: LogType.STUDENT,
}

GENERAL_CHANNEL = "GENERAL"


def conversation_key(first_id: str, second_id: str) -> str:
    """Order-independent key for the conversation between two participants."""
    low, high = sorted((first_id, second_id))
    return f"{low}|{high}"


def _plain(values: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}


@dataclass(frozen=True)
class UserRecord:
    id: str
    name: str
    role: Role
    email: str = ""
    photo_url: str | None = None
    title: str | None = None

    def to_row(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> UserRecord:
        return cls(
            id=row["id"],
            name=row["name"],
            role=Role(row["role"]),
            email=row["email"],
            photo_url=row["photo_url"],
            title=row["title"],
        )


@dataclass(frozen=True)
class CourseRecord:
    id: str
    title: str
    department: str = ""
    tutor_id: str | None = None
    content: str = ""

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> CourseRecord:
        return cls(
            id=row["id"],
            title=row["title"],
            department=row["department"],
            tutor_id=row["tutor_id"],
            content=row["content"],
        )


@dataclass(frozen=True)
class EnrollmentRecord:
    id: str
    user_id: str
    course_id: str
    status: EnrollmentStatus = EnrollmentStatus.PENDING_REVIEW

    def to_row(self) -> dict[str, Any]:
        return _plain(asdict(self))

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> EnrollmentRecord:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            course_id=row["course_id"],
            status=EnrollmentStatus(row["status"]),
        )


@dataclass(frozen=True)
class ChatMessageRecord:
    id: str
    sender_id: str
    receiver_id: str
    message: str
    timestamp: int
    course_id: str = GENERAL_CHANNEL
    conversation_key: str = ""

    def __post_init__(self) -> None:
        if not self.conversation_key:
            object.__setattr__(self, "conversation_key", conversation_key(self.sender_id, self.receiver_id))

    def other_participant(self, user_id: str) -> str:
        return self.receiver_id if self.sender_id == user_id else self.sender_id

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ChatMessageRecord:
        return cls(
            id=row["id"],
            sender_id=row["sender_id"],
            receiver_id=row["receiver_id"],
            message=row["message"],
            timestamp=int(row["timestamp"]),
            course_id=row["course_id"],
            conversation_key=row["conversation_key"],
        )


@dataclass(frozen=True)
class AuditLogEntry:
    actor_id: str
    actor_name: str
    action: str
    target_id: str
    details: str
    log_type: LogType
    timestamp: int
    id: int | None = None

    def to_row(self) -> dict[str, Any]:
        row = _plain(asdict(self))
        # Assigned by the store.
        row.pop("id")
        return row

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AuditLogEntry:
        return cls(
            id=int(row["id"]),
            actor_id=row["actor_id"],
            actor_name=row["actor_name"],
            action=row["action"],
            target_id=row["target_id"],
            details=row["details"],
            log_type=LogType(row["log_type"]),
            timestamp=int(row["timestamp"]),
        )


@dataclass(frozen=True)
class ConversationPreview:
    student: UserRecord
    last_message: ChatMessageRecord


def format_timestamp(timestamp_ms: int, *, now: datetime | None = None) -> str:
    """Render a chat timestamp: time only for today, date and time otherwise."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000)
    reference = now or datetime.now()
    if moment.date() == reference.date():
        return moment.strftime("%H:%M")
    return moment.strftime("%d %b %Y, %H:%M")
