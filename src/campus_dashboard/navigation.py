from __future__ import annotations

from enum import Enum

from campus_dashboard.models import UserRecord
from campus_dashboard.reactive.live import LiveValue


class Section(str, Enum):
    DASHBOARD = "DASHBOARD"
    MY_COURSES = "MY_COURSES"
    SELECTED_COURSE = "SELECTED_COURSE"
    COURSE_MODULES = "COURSE_MODULES"
    COURSE_STUDENTS = "COURSE_STUDENTS"
    COURSE_ASSIGNMENTS = "COURSE_ASSIGNMENTS"
    COURSE_GRADES = "COURSE_GRADES"
    COURSE_LIVE = "COURSE_LIVE"
    COURSE_ATTENDANCE = "COURSE_ATTENDANCE"
    STUDENTS = "STUDENTS"
    STUDENT_PROFILE = "STUDENT_PROFILE"
    MESSAGES = "MESSAGES"
    CHAT = "CHAT"
    LIBRARY = "LIBRARY"
    NOTIFICATIONS = "NOTIFICATIONS"
    ABOUT = "ABOUT"

    @classmethod
    def parse(cls, value: str) -> Section:
        return cls(value.strip().upper().replace("-", "_"))


class NavigationState:
    """Active section plus the student/course the dashboard is focused on.

    Every section is reachable from every other; ``set_section`` never rejects.
    """

    def __init__(self, initial: Section = Section.DASHBOARD):
        self.current_section: LiveValue[Section] = LiveValue(initial, name="current_section")
        self.selected_student: LiveValue[UserRecord | None] = LiveValue(None, name="selected_student")
        self.selected_course_id: LiveValue[str | None] = LiveValue(None, name="selected_course_id")

    def set_section(self, section: Section, student: UserRecord | None = None) -> None:
        self.current_section.set(section)
        if student is not None:
            self.selected_student.set(student)

    def select_student(self, student: UserRecord | None) -> None:
        self.selected_student.set(student)

    def select_course(self, course_id: str | None) -> None:
        self.selected_course_id.set(course_id)
        if course_id is not None:
            self.set_section(Section.SELECTED_COURSE)
