"""
Unit tests for the in-process attempt store.
"""
import unittest
from unittest.mock import Mock

from quiz_attempt.errors import BackendError
from quiz_attempt.memory_store import InMemoryStore
from tests.test_fixtures import QUIZ_ID, USER_ID, AsyncTestHelpers, FixedClock, TestFixtures


class TestInMemoryStore(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = FixedClock()
        self.store = InMemoryStore(clock=self.clock)
        self.store.add_questions(QUIZ_ID, TestFixtures.create_question_rows())
        self.row = self.store.add_attempt(TestFixtures.create_attempt_row())

    async def test_rows_are_copies(self):
        row = await self.store.fetch_attempt(self.row["id"])
        row["status"] = "completed"
        self.assertEqual(self.store.attempts[self.row["id"]]["status"], "in_progress")

    async def test_writes_to_missing_attempt_fail(self):
        with self.assertRaises(BackendError):
            await self.store.update_attempt(404, {"time_spent": 1})

    async def test_finish_is_idempotent(self):
        await self.store.save_answer(self.row["id"], 11, {"selectedOptions": ["1"], "isCorrect": True,
                                                          "timeSpent": 5})
        self.clock.advance(60)
        first = await self.store.finish_quiz(self.row["id"])
        self.clock.advance(600)
        second = await self.store.finish_quiz(self.row["id"])

        self.assertEqual(first, second)
        self.assertEqual(first["score"], 50.0)
        self.assertEqual(first["time_spent"], 60)
        self.assertEqual(len(self.store.xp_history), 1)
        self.assertEqual(self.store.xp_history[0]["source_type"], "quiz")

    async def test_reset_replaces_in_progress_attempt_only(self):
        completed = self.store.add_attempt(TestFixtures.create_attempt_row(2, status="completed", score=10))
        fresh = await self.store.reset_attempt(QUIZ_ID, USER_ID)

        self.assertNotIn(self.row["id"], self.store.attempts)
        self.assertIn(completed["id"], self.store.attempts)
        self.assertNotIn(fresh["id"], (self.row["id"], completed["id"]))
        self.assertEqual(fresh["status"], "in_progress")

    async def test_notifications_follow_writes(self):
        on_change = Mock()
        subscription = await self.store.subscribe_attempt(self.row["id"], on_change)

        await self.store.update_attempt(self.row["id"], {"time_spent": 3})
        on_change.assert_not_called()
        await AsyncTestHelpers.settle()
        on_change.assert_called_once_with()

        await subscription.close()
        await self.store.update_attempt(self.row["id"], {"time_spent": 4})
        await AsyncTestHelpers.settle()
        on_change.assert_called_once()


if __name__ == '__main__':
    unittest.main()
