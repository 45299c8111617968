from __future__ import annotations

from loguru import logger

from campus_dashboard.models import CourseRecord, EnrollmentRecord, EnrollmentStatus, Role, UserRecord
from campus_dashboard.store.collections import COURSES, ENROLLMENTS, USERS, PortalStore

DEMO_TUTOR_ID = "tutor-1"

_DEMO_USERS = [
    UserRecord(id=DEMO_TUTOR_ID, name="Ada Lovelace", role=Role.TUTOR, email="ada@example.com", title="Prof."),
    UserRecord(id="tutor-2", name="Alan Turing", role=Role.TUTOR, email="alan@example.com", title="Dr."),
    UserRecord(id="admin-1", name="Grace Hopper", role=Role.ADMIN, email="admin@example.com"),
    UserRecord(id="student-1", name="Maya Patel", role=Role.STUDENT, email="maya@example.com"),
    UserRecord(id="student-2", name="Tom Becker", role=Role.STUDENT, email="tom@example.com"),
    UserRecord(id="student-3", name="Lena Novak", role=Role.STUDENT, email="lena@example.com"),
]

_DEMO_COURSES = [
    CourseRecord(id="cs101", title="Introduction to Programming", department="Computing", tutor_id=DEMO_TUTOR_ID),
    CourseRecord(id="cs205", title="Data Structures", department="Computing", tutor_id=DEMO_TUTOR_ID),
    CourseRecord(id="ma110", title="Discrete Mathematics", department="Mathematics", tutor_id="tutor-2"),
    # Dangling tutor id; resolves to an unknown owner.
    CourseRecord(id="hi150", title="History of Computing", department="Humanities", tutor_id="tutor-retired"),
]

_DEMO_ENROLLMENTS = [
    EnrollmentRecord(id="enr-1", user_id="student-1", course_id="cs101", status=EnrollmentStatus.APPROVED),
    EnrollmentRecord(id="enr-2", user_id="student-2", course_id="cs101", status=EnrollmentStatus.PENDING_REVIEW),
    EnrollmentRecord(id="enr-3", user_id="student-3", course_id="cs205", status=EnrollmentStatus.PENDING_REVIEW),
]


async def seed_demo_data(store: PortalStore) -> bool:
    """Populate an empty store with a small portal. Returns False when data already exists."""
    if await store.query_all(USERS):
        logger.debug("Store already has users; skipping demo seed")
        return False

    logger.info("Seeding demo portal data...")
    for user in _DEMO_USERS:
        await store.insert(USERS, user)
    for course in _DEMO_COURSES:
        await store.insert(COURSES, course)
    for enrollment in _DEMO_ENROLLMENTS:
        await store.insert(ENROLLMENTS, enrollment)
    return True
