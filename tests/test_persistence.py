"""
Unit tests for the persistence adapter and the pending-write outbox.
"""
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock

from quiz_attempt.errors import FinishFailure, ResetFailure, TransientWriteFailure
from quiz_attempt.models import AttemptStatus
from quiz_attempt.outbox import ANSWER, PROGRESS, AnswerOutbox, PendingWrite
from quiz_attempt.persistence import ProgressPersistence
from tests.test_fixtures import QUIZ_ID, USER_ID, FixedClock, FlakyStore, TestFixtures


class ManualTime:
    """Monotonic seconds for outbox backoff."""

    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class TestAnswerOutbox(unittest.IsolatedAsyncioTestCase):
    """Test cases for AnswerOutbox."""

    def setUp(self):
        self.time = ManualTime()
        self.outbox = AnswerOutbox(base_delay=1.0, max_delay=8.0, clock=self.time)

    def _answer(self, question_id, selected, attempt_id=1):
        return PendingWrite(kind=ANSWER, attempt_id=attempt_id, question_id=question_id,
                            payload={"selectedOptions": selected, "isCorrect": False, "timeSpent": 1})

    def test_same_question_supersedes(self):
        self.outbox.enqueue(self._answer(11, ["1"]))
        self.outbox.enqueue(self._answer(12, ["2"]))
        self.outbox.enqueue(self._answer(11, ["2"]))

        pending = self.outbox.pending()
        self.assertEqual([write.question_id for write in pending], [12, 11])
        self.assertEqual(pending[1].payload["selectedOptions"], ["2"])

    def test_retry_delay_grows_and_is_capped(self):
        self.assertEqual([self.outbox.retry_delay(n) for n in (1, 2, 3, 4, 5)], [1, 2, 4, 8, 8])

    async def test_failed_write_is_kept_and_backed_off(self):
        write = self._answer(11, ["1"])
        self.outbox.enqueue(write)
        sender = AsyncMock(side_effect=TransientWriteFailure("down"))

        self.assertFalse(await self.outbox.send(write, sender))
        self.assertEqual(len(self.outbox), 1)
        self.assertEqual(write.attempts, 1)
        self.assertEqual(write.next_attempt_at, 1001.0)

        # Backoff not elapsed: flush skips the write.
        sender.reset_mock()
        self.assertEqual(await self.outbox.flush(sender), 0)
        sender.assert_not_awaited()

        self.time.value = 1001.0
        sender.side_effect = None
        self.assertEqual(await self.outbox.flush(sender), 1)
        self.assertEqual(len(self.outbox), 0)

    async def test_forced_flush_ignores_backoff(self):
        write = self._answer(11, ["1"])
        write.next_attempt_at = 5000.0
        self.outbox.enqueue(write)
        sender = AsyncMock()
        self.assertEqual(await self.outbox.flush(sender, force=True), 1)

    async def test_newer_write_queued_during_send_survives(self):
        first = self._answer(11, ["1"])
        second = self._answer(11, ["2"])
        self.outbox.enqueue(first)

        async def sender(write):
            self.outbox.enqueue(second)

        self.assertTrue(await self.outbox.send(first, sender))
        self.assertEqual(self.outbox.pending(), [second])

    def test_discard_attempt(self):
        self.outbox.enqueue(self._answer(11, ["1"], attempt_id=1))
        self.outbox.enqueue(self._answer(11, ["1"], attempt_id=2))
        self.assertEqual(self.outbox.discard_attempt(1), 1)
        self.assertEqual([write.attempt_id for write in self.outbox.pending()], [2])

    def test_journal_survives_restart(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "outbox" / "pending.json"
            outbox = AnswerOutbox(path=str(path), clock=self.time)
            write = self._answer(11, ["1"])
            write.next_attempt_at = 9999.0
            outbox.enqueue(write)
            outbox.enqueue(PendingWrite(kind=PROGRESS, attempt_id=1, payload={"time_spent": 10}))

            self.assertTrue(path.exists())
            with open(path, "r", encoding="utf-8") as f:
                self.assertEqual(len(json.load(f)["pending"]), 2)

            recovered = AnswerOutbox(path=str(path), clock=self.time)
            self.assertEqual([w.kind for w in recovered.pending()], [ANSWER, PROGRESS])
            self.assertEqual(recovered.pending()[0].next_attempt_at, 0.0)

    def test_corrupt_journal_starts_empty(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "pending.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertLogs("quiz_attempt.outbox", level="ERROR"):
                outbox = AnswerOutbox(path=str(path))
            self.assertEqual(len(outbox), 0)


class TestProgressPersistence(unittest.IsolatedAsyncioTestCase):
    """Test cases for ProgressPersistence against the in-memory backend."""

    async def asyncSetUp(self):
        self.clock = FixedClock()
        self.store = FlakyStore(clock=self.clock)
        self.store.add_questions(QUIZ_ID, TestFixtures.create_question_rows())
        self.row = self.store.add_attempt(TestFixtures.create_attempt_row())
        self.persistence = ProgressPersistence(self.store)

    async def test_save_answer_overwrites_blob_and_answer_row(self):
        self.assertTrue(await self.persistence.save_answer(self.row["id"], 11, ["2"], ["1"], 4, False))
        self.assertTrue(await self.persistence.save_answer(self.row["id"], 11, [1], ["1"], 6, True))

        stored = self.store.attempts[self.row["id"]]
        self.assertEqual(stored["answers"]["11"],
                         {"selectedOptions": ["1"], "isCorrect": True, "timeSpent": 6})
        self.assertEqual(len(self.store.user_answers), 1)
        self.assertEqual(self.persistence.pending_count, 0)

    async def test_failed_save_is_queued_not_raised(self):
        self.store.fail_saves = True
        with self.assertLogs("quiz_attempt.outbox", level="WARNING"):
            delivered = await self.persistence.save_answer(self.row["id"], 11, ["1"], ["1"], 4, True)

        self.assertFalse(delivered)
        self.assertEqual(self.persistence.pending_count, 1)
        self.assertEqual(list(self.persistence.pending_answers(self.row["id"])), ["11"])

        self.store.fail_saves = False
        self.assertEqual(await self.persistence.flush(force=True), 1)
        self.assertIn("11", self.store.attempts[self.row["id"]]["answers"])

    async def test_progress_update(self):
        self.assertTrue(await self.persistence.update_attempt_progress(self.row["id"], 20, 1))
        stored = self.store.attempts[self.row["id"]]
        self.assertEqual((stored["time_spent"], stored["current_question_index"]), (20, 1))

    async def test_failed_progress_update_is_queued(self):
        self.store.fail_updates = True
        self.assertFalse(await self.persistence.update_attempt_progress(self.row["id"], 10, 0))
        self.assertFalse(await self.persistence.update_attempt_progress(self.row["id"], 20, 1))
        self.assertEqual(self.persistence.pending_count, 1)

    async def test_finish_flushes_pending_answers_first(self):
        self.store.fail_saves = True
        await self.persistence.save_answer(self.row["id"], 11, ["1"], ["1"], 5, True)
        await self.persistence.save_answer(self.row["id"], 12, ["2", "3"], ["2", "3"], 12, True)
        self.store.fail_saves = False

        self.clock.advance(30)
        results = await self.persistence.finish_quiz(self.row["id"])

        self.assertEqual(results.correct_answers, 2)
        self.assertEqual(results.score, 100.0)
        self.assertEqual(results.xp_gained, 175)
        self.assertEqual(self.store.attempts[self.row["id"]]["status"], AttemptStatus.COMPLETED.value)

    async def test_finish_failure(self):
        self.store.fail_finish = True
        with self.assertRaises(FinishFailure) as ctx:
            await self.persistence.finish_quiz(self.row["id"])
        self.assertIn("submit", ctx.exception.user_message)
        self.assertEqual(self.store.attempts[self.row["id"]]["status"], "in_progress")

    async def test_invalid_finish_payload(self):
        self.store.finish_quiz = AsyncMock(return_value={"score": 10})
        with self.assertRaises(FinishFailure):
            await self.persistence.finish_quiz(self.row["id"])

    async def test_reset_creates_fresh_attempt_and_drops_stale_writes(self):
        self.store.fail_saves = True
        await self.persistence.save_answer(self.row["id"], 11, ["1"], ["1"], 5, True)

        attempt = await self.persistence.reset_attempt(QUIZ_ID, USER_ID, previous_attempt_id=self.row["id"])

        self.assertNotEqual(attempt.id, self.row["id"])
        self.assertEqual(attempt.status, AttemptStatus.IN_PROGRESS)
        self.assertNotIn(self.row["id"], self.store.attempts)
        self.assertEqual(self.persistence.pending_count, 0)

    async def test_reset_failure(self):
        self.store.fail_reset = True
        with self.assertRaises(ResetFailure):
            await self.persistence.reset_attempt(QUIZ_ID, USER_ID)
        self.assertIn(self.row["id"], self.store.attempts)

    async def test_create_attempt(self):
        attempt = await self.persistence.create_attempt(QUIZ_ID, "user-2")
        self.assertEqual(attempt.user_id, "user-2")
        self.assertEqual(attempt.answers, {})


if __name__ == '__main__':
    unittest.main()
