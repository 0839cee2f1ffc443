"""
Unit tests for the Supabase-backed store with a mocked client.
"""
import unittest
from unittest.mock import AsyncMock, MagicMock, Mock, patch

from postgrest.exceptions import APIError

from quiz_attempt.errors import BackendError
from quiz_attempt.models import BackendSettings
from quiz_attempt.supabase_store import SupabaseStore, connect
from tests.test_fixtures import QUIZ_ID, USER_ID, TestFixtures


def make_request(data=None, error=None):
    """Query builder mock whose filters chain and whose execute returns `data`."""
    request = MagicMock()
    for name in ("select", "eq", "order", "limit", "upsert", "update", "insert"):
        getattr(request, name).return_value = request
    if error is not None:
        request.execute = AsyncMock(side_effect=error)
    else:
        request.execute = AsyncMock(return_value=Mock(data=data))
    return request


class TestSupabaseReads(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = MagicMock()
        self.store = SupabaseStore(self.client, BackendSettings(url="https://example", key="k"))

    async def test_fetch_questions_filters_and_orders(self):
        request = make_request(TestFixtures.create_question_rows())
        self.client.table.return_value = request

        rows = await self.store.fetch_questions(QUIZ_ID)

        self.client.table.assert_called_once_with("quiz_questions")
        request.eq.assert_called_once_with("quizId", QUIZ_ID)
        request.order.assert_called_once_with("order")
        self.assertEqual(len(rows), 2)

    async def test_fetch_attempt_missing_returns_none(self):
        self.client.table.return_value = make_request([])
        self.assertIsNone(await self.store.fetch_attempt(5))

    async def test_fetch_leaderboard(self):
        request = make_request([TestFixtures.create_attempt_row(status="completed", score=90)])
        self.client.table.return_value = request

        rows = await self.store.fetch_leaderboard(QUIZ_ID, 3)

        request.limit.assert_called_once_with(3)
        request.order.assert_called_once_with("score", desc=True)
        self.assertEqual(rows[0]["score"], 90)

    async def test_api_error_becomes_backend_error(self):
        error = APIError({"message": "permission denied", "code": "42501", "hint": None, "details": None})
        self.client.table.return_value = make_request(error=error)

        with self.assertRaises(BackendError) as ctx:
            await self.store.fetch_attempts(QUIZ_ID, USER_ID)
        self.assertIn("permission denied", str(ctx.exception))

    async def test_network_error_becomes_backend_error(self):
        self.client.table.return_value = make_request(error=ConnectionError("unreachable"))
        with self.assertRaises(BackendError):
            await self.store.fetch_attempt(1)


class TestSupabaseWrites(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = MagicMock()
        self.store = SupabaseStore(self.client)

    async def test_save_answer_upserts_and_updates_blob(self):
        answers_request = make_request([])
        attempt_row = TestFixtures.create_attempt_row(
            answers={"11": {"selectedOptions": ["2"], "isCorrect": False, "timeSpent": 3}}
        )
        fetch_request = make_request([attempt_row])
        update_request = make_request([])
        self.client.table.side_effect = [answers_request, fetch_request, update_request]

        record = {"selectedOptions": ["1"], "isCorrect": True, "timeSpent": 7}
        await self.store.save_answer(1, 12, record)

        answers_request.upsert.assert_called_once()
        upserted, = answers_request.upsert.call_args.args
        self.assertEqual(upserted["question_id"], 12)
        self.assertEqual(answers_request.upsert.call_args.kwargs["on_conflict"], "attempt_id,question_id")

        fields, = update_request.update.call_args.args
        self.assertEqual(set(fields["answers"]), {"11", "12"})
        self.assertEqual(fields["answers"]["12"], record)
        self.assertEqual(fields["time_spent"], 7)
        update_request.eq.assert_called_once_with("id", 1)

    async def test_create_attempt_returns_inserted_row(self):
        self.client.table.return_value = make_request([{"id": 9, "quiz_id": QUIZ_ID}])
        row = await self.store.create_attempt(QUIZ_ID, USER_ID)
        self.assertEqual(row["id"], 9)

    async def test_finish_quiz_calls_rpc(self):
        payload = {"attempt_id": 1, "score": 100}
        self.client.rpc.return_value = make_request(payload)

        self.assertEqual(await self.store.finish_quiz(1), payload)
        self.client.rpc.assert_called_once_with("finish_quiz", {"attempt_id": 1})

    async def test_reset_attempt_without_result_fails(self):
        self.client.rpc.return_value = make_request(None)
        with self.assertRaises(BackendError):
            await self.store.reset_attempt(QUIZ_ID, USER_ID)
        self.client.rpc.assert_called_once_with("reset_attempt", {"quiz_id": QUIZ_ID, "user_id": USER_ID})


class TestSupabaseRealtime(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = MagicMock()
        self.channel = MagicMock()
        self.channel.subscribe = AsyncMock()
        self.client.channel.return_value = self.channel
        self.client.remove_channel = AsyncMock()
        self.store = SupabaseStore(self.client)

    async def test_subscription_scoped_to_attempt_row(self):
        on_change = Mock()
        subscription = await self.store.subscribe_attempt(4, on_change)

        kwargs = self.channel.on_postgres_changes.call_args.kwargs
        self.assertEqual(kwargs["table"], "quiz_attempts")
        self.assertEqual(kwargs["filter"], "id=eq.4")
        self.assertEqual(kwargs["event"], "*")

        kwargs["callback"]({"eventType": "UPDATE"})
        on_change.assert_called_once_with()

        await subscription.close()
        await subscription.close()
        self.client.remove_channel.assert_awaited_once_with(self.channel)

    async def test_subscribe_failure(self):
        self.channel.subscribe = AsyncMock(side_effect=RuntimeError("socket closed"))
        with self.assertRaises(BackendError):
            await self.store.subscribe_attempt(4, Mock())


class TestConnect(unittest.IsolatedAsyncioTestCase):

    async def test_missing_credentials(self):
        with self.assertRaises(BackendError):
            await connect(BackendSettings())

    async def test_connect_creates_async_client(self):
        client = MagicMock()
        with patch("quiz_attempt.supabase_store.acreate_client", AsyncMock(return_value=client)) as create:
            store = await connect(BackendSettings(url="https://example", key="secret"))
        create.assert_awaited_once_with("https://example", "secret")
        self.assertIs(store.client, client)


if __name__ == '__main__':
    unittest.main()
