"""
Unit tests for question/attempt loading and the realtime attempt watch.
"""
import asyncio
import unittest
from unittest.mock import AsyncMock, Mock

from quiz_attempt.errors import BackendError, NotFoundError
from quiz_attempt.loader import AttemptLoader, AttemptWatch
from quiz_attempt.memory_store import InMemoryStore
from tests.test_fixtures import QUIZ_ID, USER_ID, AsyncTestHelpers, TestFixtures


class TestAttemptLoader(unittest.IsolatedAsyncioTestCase):
    """Test cases for AttemptLoader reads."""

    async def asyncSetUp(self):
        self.store = InMemoryStore()
        rows = TestFixtures.create_question_rows()
        # Stored out of order on purpose.
        self.store.add_questions(QUIZ_ID, list(reversed(rows)))
        self.loader = AttemptLoader(self.store)

    async def test_load_questions_ordered(self):
        questions = await self.loader.load_questions(QUIZ_ID)
        self.assertEqual([q.id for q in questions], [11, 12])
        self.assertFalse(questions[0].is_multiple)
        self.assertTrue(questions[1].is_multiple)
        self.assertEqual(questions[0].justification, "Only option 1 is right")

    async def test_load_questions_empty_quiz_is_not_found(self):
        with self.assertRaises(NotFoundError):
            await self.loader.load_questions("missing-quiz")

    async def test_load_attempt_missing_is_not_found(self):
        with self.assertRaises(NotFoundError):
            await self.loader.load_attempt(404)

    async def test_load_attempt_with_answers(self):
        row = self.store.add_attempt(TestFixtures.create_attempt_row(
            answers={"11": {"selectedOptions": [1], "isCorrect": True, "timeSpent": 4}},
            time_spent=17,
        ))
        attempt = await self.loader.load_attempt(row["id"])
        self.assertEqual(attempt.time_spent, 17)
        self.assertEqual(attempt.answers["11"].selected_options, ["1"])

    async def test_quiz_progress_and_best_attempt(self):
        self.store.add_attempt(TestFixtures.create_attempt_row(1, status="completed", score=40,
                                                               created_at="2024-01-01T00:00:00"))
        self.store.add_attempt(TestFixtures.create_attempt_row(2, status="completed", score=80,
                                                               created_at="2024-01-02T00:00:00"))
        self.store.add_attempt(TestFixtures.create_attempt_row(3, created_at="2024-01-03T00:00:00"))

        progress = await self.loader.load_quiz_progress(QUIZ_ID, USER_ID)
        self.assertEqual(progress.total_attempts, 3)
        self.assertEqual(progress.last_attempt.id, 3)
        self.assertEqual(progress.best_score, 80)

        best = await self.loader.load_best_attempt(QUIZ_ID, USER_ID)
        self.assertEqual(best.id, 2)
        self.assertIsNone(await self.loader.load_best_attempt(QUIZ_ID, "someone-else"))

    async def test_leaderboard_is_limited_and_sorted(self):
        for attempt_id, score in ((1, 60), (2, 95), (3, 75)):
            self.store.add_attempt(TestFixtures.create_attempt_row(
                attempt_id, status="completed", score=score, user_id=f"user-{attempt_id}"
            ))
        entries = await self.loader.load_leaderboard(QUIZ_ID, limit=2)
        self.assertEqual([entry.attempt_id for entry in entries], [2, 3])


class TestAttemptWatch(unittest.IsolatedAsyncioTestCase):
    """Test cases for the realtime re-fetch path."""

    async def asyncSetUp(self):
        self.store = InMemoryStore()
        self.row = self.store.add_attempt(TestFixtures.create_attempt_row())
        self.loader = AttemptLoader(self.store)
        self.updates = []

    async def test_change_notification_refetches_and_emits(self):
        watch = await self.loader.watch_attempt(self.row["id"], self.updates.append)
        await watch.refresh(require=True)

        await self.store.update_attempt(self.row["id"], {"time_spent": 33})
        await AsyncTestHelpers.settle()

        self.assertEqual([attempt.time_spent for attempt in self.updates], [0, 33])
        await watch.close()

    async def test_async_callback_is_awaited(self):
        on_update = AsyncMock()
        watch = await self.loader.watch_attempt(self.row["id"], on_update)
        await watch.refresh(require=True)
        on_update.assert_awaited_once()
        await watch.close()

    async def test_notification_before_initial_fetch_is_tolerated(self):
        watch = await self.loader.watch_attempt(self.row["id"], self.updates.append)
        await self.store.update_attempt(self.row["id"], {"status": "completed"})
        attempt = await watch.refresh(require=True)
        await AsyncTestHelpers.settle()

        self.assertEqual(attempt.status.value, "completed")
        self.assertTrue(all(update.status.value == "completed" for update in self.updates))
        await watch.close()

    async def test_stale_fetch_never_overwrites_newer_one(self):
        first_started = asyncio.Event()
        release_first = asyncio.Event()
        rows = [
            TestFixtures.create_attempt_row(time_spent=5),
            TestFixtures.create_attempt_row(time_spent=9),
        ]

        async def fetch_attempt(attempt_id):
            row = rows.pop(0)
            if row["time_spent"] == 5:
                first_started.set()
                await release_first.wait()
            return row

        store = Mock()
        store.fetch_attempt = fetch_attempt
        watch = AttemptWatch(store, 1, self.updates.append)

        slow = asyncio.ensure_future(watch.refresh())
        await first_started.wait()
        await watch.refresh()
        release_first.set()
        result = await slow

        self.assertEqual(result.time_spent, 9)
        self.assertEqual([attempt.time_spent for attempt in self.updates], [9])

    async def test_missing_row_on_refresh_keeps_cache(self):
        watch = await self.loader.watch_attempt(self.row["id"], self.updates.append)
        await watch.refresh(require=True)
        del self.store.attempts[self.row["id"]]

        attempt = await watch.refresh()
        self.assertEqual(attempt.id, self.row["id"])
        with self.assertRaises(NotFoundError):
            await watch.refresh(require=True)
        await watch.close()

    async def test_backend_error_only_raised_when_required(self):
        store = Mock()
        store.fetch_attempt = AsyncMock(side_effect=BackendError("offline"))
        watch = AttemptWatch(store, 1, self.updates.append)

        self.assertIsNone(await watch.refresh())
        with self.assertRaises(BackendError):
            await watch.refresh(require=True)

    async def test_close_unsubscribes(self):
        watch = await self.loader.watch_attempt(self.row["id"], self.updates.append)
        self.assertEqual(self.store.subscriber_count(self.row["id"]), 1)
        await watch.close()
        self.assertEqual(self.store.subscriber_count(self.row["id"]), 0)
        self.assertTrue(watch.is_closed)

        await self.store.update_attempt(self.row["id"], {"time_spent": 1})
        await AsyncTestHelpers.settle()
        self.assertEqual(self.updates, [])


if __name__ == '__main__':
    unittest.main()
