import asyncio
from unittest.mock import patch

from campus_dashboard.dispatcher import ActionDispatcher
from campus_dashboard.errors import InvalidArgumentError, NotFoundError, ValidationError
from campus_dashboard.identity import Actor, StaticIdentityProvider
from campus_dashboard.models import CourseRecord, EnrollmentRecord, EnrollmentStatus, Role, UserRecord
from campus_dashboard.store import CHAT_MESSAGES, COURSES, ENROLLMENTS, USERS
from tests.store.base import StoreTestCase


class FailingIdentityProvider:
    async def current_actor(self):
        raise RuntimeError("auth backend offline")


class ActionDispatcherTests(StoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._identity = StaticIdentityProvider(Actor(id="t1", display_name="Tom Tutor"))
        self._clock_values = [1_000]
        self._dispatcher = self._make_dispatcher(self._identity)

        async def seed() -> None:
            await self._store.insert(USERS, UserRecord(id="t1", name="Tom Tutor", role=Role.TUTOR))
            await self._store.insert(USERS, UserRecord(id="s1", name="Sam", role=Role.STUDENT))
            await self._store.insert(COURSES, CourseRecord(id="c1", title="Algebra", tutor_id="t1"))
            await self._store.insert(ENROLLMENTS, EnrollmentRecord(id="e1", user_id="s1", course_id="c1"))

        asyncio.run(seed())

    def _make_dispatcher(self, identity, *, owner_id="t1", role=Role.TUTOR) -> ActionDispatcher:
        return ActionDispatcher(
            self._store,
            self._audit,
            identity,
            owner_id=owner_id,
            role=role,
            clock=lambda: self._clock_values[-1],
        )

    def test_update_course_content_writes_once_and_audits_once(self) -> None:
        course = asyncio.run(self._dispatcher.update_course_content("c1", "Week 1: sets"))

        self.assertEqual("Week 1: sets", course.content)
        rows = self.audit_rows()
        self.assertEqual(1, len(rows))
        self.assertEqual("UPDATE_CONTENT", rows[0]["action"])
        self.assertEqual("c1", rows[0]["target_id"])
        self.assertEqual("Tom Tutor", rows[0]["actor_name"])
        self.assertEqual("TUTOR", rows[0]["log_type"])
        self.assertIn("Algebra", rows[0]["details"])

    def test_update_missing_course_leaves_no_audit_entry(self) -> None:
        with self.assertRaises(NotFoundError):
            asyncio.run(self._dispatcher.update_course_content("nope", "text"))
        self.assertEqual([], self.audit_rows())

    def test_invalid_arguments_are_rejected_before_writing(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            asyncio.run(self._dispatcher.update_course_content("c1", "   "))
        with self.assertRaises(ValidationError):
            asyncio.run(self._dispatcher.update_course_content("bad id with spaces", "text"))
        with self.assertRaises(ValidationError):
            asyncio.run(self._dispatcher.send_message("s1", ""))

        course = asyncio.run(self._store.get(COURSES, "c1"))
        self.assertEqual("", course.content)
        self.assertEqual([], self.audit_rows())

    def test_send_message_stores_and_audits(self) -> None:
        with patch.object(self._store, "get") as get:
            message = asyncio.run(self._dispatcher.send_message("s1", "hello", receiver_name="Sam"))

        get.assert_not_called()
        self.assertTrue(message.id)
        self.assertEqual("t1", message.sender_id)
        self.assertEqual(1_000, message.timestamp)
        stored = asyncio.run(self._store.query_all(CHAT_MESSAGES))
        self.assertEqual([message], list(stored))
        rows = self.audit_rows()
        self.assertEqual(["SEND_MESSAGE"], [r["action"] for r in rows])
        self.assertEqual("s1", rows[0]["target_id"])
        self.assertIn("Sam", rows[0]["details"])

    def test_message_timestamps_never_go_backwards(self) -> None:
        async def scenario() -> list[int]:
            first = await self._dispatcher.send_message("s1", "one")
            self._clock_values.append(500)
            second = await self._dispatcher.send_message("s1", "two")
            return [first.timestamp, second.timestamp]

        self.assertEqual([1_000, 1_000], asyncio.run(scenario()))

    def test_send_message_requires_owner(self) -> None:
        dispatcher = self._make_dispatcher(self._identity, owner_id=None)
        with self.assertRaises(ValidationError):
            asyncio.run(dispatcher.send_message("s1", "hello"))

    def test_review_enrollment_records_decision(self) -> None:
        enrollment = asyncio.run(self._dispatcher.review_enrollment("e1", "APPROVED"))

        self.assertEqual(EnrollmentStatus.APPROVED, enrollment.status)
        self.assertEqual(["APPROVE_ENROLLMENT"], [r["action"] for r in self.audit_rows()])

    def test_review_enrollment_rejects_unknown_status(self) -> None:
        with self.assertRaises(ValidationError):
            asyncio.run(self._dispatcher.review_enrollment("e1", "MAYBE"))
        self.assertEqual([], self.audit_rows())

    def test_assign_and_unassign_course(self) -> None:
        async def scenario():
            released = await self._dispatcher.unassign_course("c1")
            taken = await self._dispatcher.assign_course("c1")
            return released, taken

        released, taken = asyncio.run(scenario())

        self.assertIsNone(released.tutor_id)
        self.assertEqual("t1", taken.tutor_id)
        self.assertEqual(["UNASSIGN_COURSE", "ASSIGN_COURSE"], [r["action"] for r in self.audit_rows()])

    def test_missing_actor_falls_back_to_role_placeholder(self) -> None:
        self._identity.sign_out()
        asyncio.run(self._dispatcher.update_course_content("c1", "text"))

        row = self.audit_rows()[0]
        self.assertEqual("t1", row["actor_id"])
        self.assertEqual("Tutor", row["actor_name"])

    def test_failing_identity_provider_still_audits(self) -> None:
        dispatcher = self._make_dispatcher(FailingIdentityProvider(), owner_id=None, role=Role.ADMIN)
        asyncio.run(dispatcher.update_course_content("c1", "text"))

        row = self.audit_rows()[0]
        self.assertEqual("unknown", row["actor_id"])
        self.assertEqual("Admin", row["actor_name"])
        self.assertEqual("ADMIN", row["log_type"])

    def test_send_message_without_name_describes_receiver_by_id(self) -> None:
        asyncio.run(self._dispatcher.send_message("s1", "hello"))
        self.assertEqual("Sent message to s1", self.audit_rows()[0]["details"])

    def test_unassign_course_owned_by_another_tutor_is_rejected(self) -> None:
        asyncio.run(self._store.insert(COURSES, CourseRecord(id="c2", title="History", tutor_id="t2")))

        with self.assertRaises(ValidationError):
            asyncio.run(self._dispatcher.unassign_course("c2"))

        course = asyncio.run(self._store.get(COURSES, "c2"))
        self.assertEqual("t2", course.tutor_id)
        self.assertEqual([], self.audit_rows())

    def test_unassign_missing_course_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            asyncio.run(self._dispatcher.unassign_course("missing"))
        self.assertEqual([], self.audit_rows())

    def test_concurrent_dispatches_each_get_their_own_audit_entry(self) -> None:
        async def scenario() -> list:
            return await asyncio.gather(
                self._dispatcher.update_course_content("c1", "v1"),
                self._dispatcher.send_message("s1", "one"),
                self._dispatcher.update_course_content("c1", "v2"),
                self._dispatcher.send_message("s1", "two"),
                self._dispatcher.review_enrollment("e1", EnrollmentStatus.APPROVED),
            )

        asyncio.run(scenario())

        rows = self.audit_rows()
        self.assertEqual(5, len(rows))
        self.assertEqual(5, len({row["id"] for row in rows}))
        self.assertEqual(
            sorted(["UPDATE_CONTENT", "UPDATE_CONTENT", "SEND_MESSAGE", "SEND_MESSAGE", "APPROVE_ENROLLMENT"]),
            sorted(row["action"] for row in rows),
        )
        self.assertEqual(2, len(asyncio.run(self._store.query_all(CHAT_MESSAGES))))
