from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from campus_dashboard.commands.router import CommandRouter
from campus_dashboard.dashboard import TutorDashboard
from campus_dashboard.errors import PortalError
from campus_dashboard.models import format_timestamp
from campus_dashboard.navigation import Section
from campus_dashboard.reactive.live import Subscription
from campus_dashboard.reactive.views import SharedView

_HELP_LINES = [
    "Commands:",
    "  /section <name>                    switch section (e.g. MESSAGES)",
    "  /view <name>                       students | courses | enrollments | pending | chat | conversations | logs",
    "  /select <student id>               focus a student and open the chat",
    "  /send <text>                       message the selected student",
    "  /content <course id> <text>        replace a course's content",
    "  /assign <course id>                take ownership of a course",
    "  /unassign <course id>              give up ownership of a course",
    "  /review <enrollment id> <status>   APPROVED | REJECTED | PENDING_REVIEW",
    "  exit                               quit",
]


class PortalConsole:
    """Text front end over a ``TutorDashboard``; prints live updates as they arrive."""

    def __init__(self, dashboard: TutorDashboard, *, line_prefix: str = "portal: ", output: Callable[[str], None] = print):
        self._dashboard = dashboard
        self._prefix = line_prefix
        self._output = output
        self._watchers: list[Subscription] = []
        self.router = CommandRouter(
            on_help=self._on_help,
            on_section=self._on_section,
            on_view=self._on_view,
            on_select=self._on_select,
            on_send=self._on_send,
            on_course=self._on_course,
            on_review=self._on_review,
            on_unknown=self._on_unknown,
        )

    def start(self) -> None:
        d = self._dashboard
        self._watchers.append(d.current_section.subscribe(lambda s: self._say(f"[section] {s.value}")))
        self._watchers.append(d.pending_applications.subscribe(lambda n: self._say(f"[pending applications] {n}")))

    def stop(self) -> None:
        for watcher in self._watchers:
            watcher.cancel()
        self._watchers.clear()

    async def handle(self, user_input: str) -> None:
        try:
            if not await self.router.try_handle(user_input):
                self._say("Commands start with '/'. Type /help.")
        except PortalError as ex:
            self._say(f"Error: {ex}")

    def _say(self, line: str) -> None:
        self._output(f"{self._prefix}{line}")

    async def _on_help(self) -> None:
        for line in _HELP_LINES:
            self._say(line)

    async def _on_section(self, argument: str) -> None:
        try:
            section = Section.parse(argument)
        except ValueError:
            self._say(f"Unknown section: {argument!r}. Known: {', '.join(s.value for s in Section)}")
            return
        self._dashboard.set_section(section)

    async def _on_view(self, argument: str) -> None:
        d = self._dashboard
        views: dict[str, tuple[SharedView, Callable[[object], list[str]]]] = {
            "students": (d.all_students, lambda users: [f"{u.id}: {u.name} <{u.email}>" for u in users]),
            "courses": (d.tutor_courses, lambda courses: [f"{c.id}: {c.title} [{c.department}]" for c in courses]),
            "enrollments": (
                d.all_enrollments,
                lambda rows: [f"{e.id}: {e.user_id} -> {e.course_id} ({e.status.value})" for e in rows],
            ),
            "pending": (d.pending_applications, lambda n: [f"{n} application(s) awaiting review"]),
            "chat": (
                d.chat_messages,
                lambda messages: [
                    f"{format_timestamp(m.timestamp)} {m.sender_id}: {m.message}" for m in messages
                ]
                or ["(no messages)"],
            ),
            "conversations": (
                d.recent_conversations,
                lambda previews: [
                    f"{p.student.name}: {p.last_message.message} ({format_timestamp(p.last_message.timestamp)})"
                    for p in previews
                ]
                or ["(no conversations)"],
            ),
            "logs": (
                d.audit_log,
                lambda entries: [
                    f"#{e.id} {format_timestamp(e.timestamp)} {e.actor_name} {e.action} {e.target_id}: {e.details}"
                    for e in entries[:20]
                ]
                or ["(no audit entries)"],
            ),
        }
        selected = views.get(argument.lower())
        if selected is None:
            self._say(f"Unknown view: {argument!r}. Known: {', '.join(views)}")
            return
        view, render = selected
        lines: list[str] = []
        # One-shot read; the view stays warm for the grace period.
        with view.subscribe(lambda snapshot: lines.extend(render(snapshot)), self._on_view_error):
            pass
        for line in lines:
            self._say(line)

    async def _on_select(self, argument: str) -> None:
        students = self._dashboard.all_students
        with students.subscribe(lambda _: None):
            student = next((u for u in students.value or () if u.id == argument), None)
        if student is None:
            self._say(f"No student with id {argument!r}")
            return
        self._dashboard.set_section(Section.CHAT, student)

    async def _on_send(self, argument: str) -> None:
        message = await self._dashboard.send_message(argument)
        self._say(f"Sent at {format_timestamp(message.timestamp)}")

    async def _on_course(self, command_line: str) -> None:
        command, _, rest = command_line.partition(" ")
        course_id, _, text = rest.strip().partition(" ")
        if command == "/content":
            course = await self._dashboard.update_course_content(course_id, text)
            self._say(f"Updated content of {course.title}")
        elif command == "/assign":
            course = await self._dashboard.assign_course(course_id)
            self._say(f"You now own {course.title}")
        else:
            course = await self._dashboard.unassign_course(course_id)
            self._say(f"Released {course.title}")

    async def _on_review(self, argument: str) -> None:
        enrollment_id, _, status = argument.partition(" ")
        enrollment = await self._dashboard.review_enrollment(enrollment_id, status.strip().upper())
        self._say(f"Enrollment {enrollment.id} is now {enrollment.status.value}")

    def _on_unknown(self, command_line: str) -> None:
        self._say(f"Unknown command: {command_line}. Type /help.")

    def _on_view_error(self, error: BaseException) -> None:
        logger.error(f"View failed: {type(error).__name__}: {error}")
        self._say(f"View failed: {error}")
