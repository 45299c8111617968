from __future__ import annotations

from loguru import logger

from campus_dashboard.dispatcher import ActionDispatcher
from campus_dashboard.errors import NotFoundError, ValidationError
from campus_dashboard.identity import IdentityProvider
from campus_dashboard.models import (
    GENERAL_CHANNEL,
    ChatMessageRecord,
    ConversationPreview,
    CourseRecord,
    EnrollmentRecord,
    EnrollmentStatus,
    LogType,
    Role,
    UserRecord,
    conversation_key,
)
from campus_dashboard.navigation import NavigationState, Section
from campus_dashboard.reactive.live import LiveValue
from campus_dashboard.reactive.views import DEFAULT_GRACE_SECONDS, SharedView, combine, derive_count, derive_filtered
from campus_dashboard.store.audit import AuditLogger
from campus_dashboard.store.collections import CHAT_MESSAGES, COURSES, ENROLLMENTS, USERS, PortalStore


def _find_course(course_id: str | None, courses: tuple) -> CourseRecord | None:
    if course_id is None:
        return None
    return next((c for c in courses if c.id == course_id), None)


def _approved_students(course_id: str | None, users: tuple, enrollments: tuple) -> tuple:
    if course_id is None:
        return ()
    student_ids = {
        e.user_id for e in enrollments if e.course_id == course_id and e.status == EnrollmentStatus.APPROVED
    }
    return tuple(u for u in users if u.id in student_ids)


class TutorDashboard:
    """Live views and audited actions for one dashboard owner.

    Views are lazy: nothing is queried until the presentation layer subscribes.
    """

    def __init__(
        self,
        store: PortalStore,
        audit: AuditLogger,
        identity: IdentityProvider,
        *,
        owner_id: str,
        role: Role = Role.TUTOR,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        self._store = store
        self._owner_id = owner_id
        self._navigation = NavigationState()
        self._dispatcher = ActionDispatcher(store, audit, identity, owner_id=owner_id, role=role)

        # Bases release with their last dependent; consumer-facing views carry the grace period.
        def _base(collection: str) -> SharedView[tuple]:
            return SharedView(store.live(collection), initial=(), grace_seconds=0, name=f"{collection}:base")

        def _exposed(base: SharedView[tuple], name: str) -> SharedView[tuple]:
            return SharedView(base, initial=(), grace_seconds=grace_seconds, name=name)

        users = _base(USERS)
        courses = _base(COURSES)
        enrollments = _base(ENROLLMENTS)
        messages = _base(CHAT_MESSAGES)

        self.current_section: LiveValue[Section] = self._navigation.current_section
        self.selected_student: LiveValue[UserRecord | None] = self._navigation.selected_student
        self.selected_course_id: LiveValue[str | None] = self._navigation.selected_course_id

        self.all_users: SharedView[tuple] = _exposed(users, USERS)
        self.all_enrollments: SharedView[tuple] = _exposed(enrollments, ENROLLMENTS)
        self.all_courses: SharedView[tuple] = _exposed(courses, COURSES)
        self.tutor_courses = derive_filtered(
            courses,
            lambda c: c.tutor_id == owner_id,
            grace_seconds=grace_seconds,
            name="tutor_courses",
        )
        self.all_students = derive_filtered(
            users,
            lambda u: u.role == Role.STUDENT,
            grace_seconds=grace_seconds,
            name="all_students",
        )
        self.pending_applications = derive_count(
            enrollments,
            lambda e: e.status == EnrollmentStatus.PENDING_REVIEW,
            grace_seconds=grace_seconds,
            name="pending_applications",
        )
        self.selected_course: SharedView[CourseRecord | None] = combine(
            [self.selected_course_id, courses],
            _find_course,
            grace_seconds=grace_seconds,
            name="selected_course",
        )
        self.enrolled_students_in_selected_course: SharedView[tuple] = combine(
            [self.selected_course_id, users, enrollments],
            _approved_students,
            initial=(),
            grace_seconds=grace_seconds,
            name="enrolled_students",
        )
        self.chat_messages: SharedView[tuple] = combine(
            [self.selected_student, messages],
            self._conversation_with,
            initial=(),
            grace_seconds=grace_seconds,
            name="chat_messages",
        )
        self.recent_conversations: SharedView[tuple] = combine(
            [messages, users],
            self._previews,
            initial=(),
            grace_seconds=grace_seconds,
            name="recent_conversations",
        )
        self.audit_log: SharedView[tuple] = audit.live(LogType.for_role(role))
        logger.debug(f"Dashboard ready for {owner_id} ({role.value})")

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def dispatcher(self) -> ActionDispatcher:
        return self._dispatcher

    # --- navigation ---

    def set_section(self, section: Section, student: UserRecord | None = None) -> None:
        self._navigation.set_section(section, student)

    def select_student(self, student: UserRecord | None) -> None:
        self._navigation.select_student(student)

    def select_course(self, course_id: str | None) -> None:
        self._navigation.select_course(course_id)

    # --- actions ---

    async def update_course_content(self, course_id: str, content: str) -> CourseRecord:
        return await self._dispatcher.update_course_content(course_id, content)

    async def send_message(self, text: str) -> ChatMessageRecord:
        student = self.selected_student.value
        if student is None:
            raise ValidationError("No student selected")
        return await self._dispatcher.send_message(student.id, text, receiver_name=student.name)

    async def review_enrollment(self, enrollment_id: str, status: EnrollmentStatus | str) -> EnrollmentRecord:
        return await self._dispatcher.review_enrollment(enrollment_id, status)

    async def assign_course(self, course_id: str) -> CourseRecord:
        return await self._dispatcher.assign_course(course_id)

    async def unassign_course(self, course_id: str) -> CourseRecord:
        return await self._dispatcher.unassign_course(course_id)

    async def course_owner(self, course_id: str) -> UserRecord | None:
        """Resolve a course's tutor; ``None`` means unknown owner."""
        course = await self._store.get(COURSES, course_id)
        if course is None:
            raise NotFoundError(COURSES, course_id)
        if not course.tutor_id:
            return None
        return await self._store.get(USERS, course.tutor_id)

    # --- derivations ---

    def _conversation_with(self, student: UserRecord | None, messages: tuple) -> tuple:
        if student is None:
            return ()
        key = conversation_key(student.id, self._owner_id)
        return tuple(m for m in messages if m.conversation_key == key and m.course_id == GENERAL_CHANNEL)

    def _previews(self, messages: tuple, users: tuple) -> tuple:
        users_by_id = {u.id: u for u in users}
        latest: dict[str, ChatMessageRecord] = {}
        for message in messages:
            if self._owner_id not in (message.sender_id, message.receiver_id):
                continue
            # Messages arrive oldest first, so the last one seen wins.
            latest[message.other_participant(self._owner_id)] = message
        previews = [
            ConversationPreview(student=users_by_id[other_id], last_message=message)
            for other_id, message in latest.items()
            if other_id in users_by_id
        ]
        previews.sort(key=lambda p: p.last_message.timestamp, reverse=True)
        return tuple(previews)


class DashboardFactory:
    """Builds dashboards that share one store, audit logger and identity provider."""

    def __init__(
        self,
        store: PortalStore,
        audit: AuditLogger,
        identity: IdentityProvider,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        self._store = store
        self._audit = audit
        self._identity = identity
        self._grace_seconds = grace_seconds

    def create(self, owner_id: str, role: Role = Role.TUTOR) -> TutorDashboard:
        return TutorDashboard(
            self._store,
            self._audit,
            self._identity,
            owner_id=owner_id,
            role=role,
            grace_seconds=self._grace_seconds,
        )
