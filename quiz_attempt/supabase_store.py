"""
Attempt store backed by a Supabase project.

Tables are read through PostgREST queries, the finish and reset operations
are database procedures called over RPC, and attempt changes arrive on a
realtime `postgres_changes` channel.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from .errors import BackendError
from .models import AttemptStatus, BackendSettings
from .store import AttemptStore, CallbackSubscription, ChangeCallback, Subscription

logger = logging.getLogger(__name__)


async def connect(settings: BackendSettings) -> "SupabaseStore":
    """
    Create a store connected to the configured Supabase project.

    Raises:
        BackendError: If the project URL or key is missing
    """
    if not settings.url or not settings.key:
        raise BackendError("Supabase URL and key must be configured")
    client = await acreate_client(settings.url, settings.key)
    logger.info(f"Connected to Supabase project at {settings.url}")
    return SupabaseStore(client, settings)


class SupabaseStore(AttemptStore):
    """AttemptStore implementation on top of the supabase async client."""

    def __init__(self, client: AsyncClient, settings: Optional[BackendSettings] = None):
        self.client = client
        self.settings = settings or BackendSettings()
        self.logger = logging.getLogger(__name__)

    async def _execute(self, request, operation: str):
        try:
            return await request.execute()
        except APIError as e:
            self.logger.error(f"Backend rejected {operation}: {e.message}")
            raise BackendError(f"{operation} failed: {e.message}") from e
        except Exception as e:
            self.logger.error(f"Backend request {operation} failed: {e}")
            raise BackendError(f"{operation} failed: {e}") from e

    async def fetch_questions(self, quiz_id: str) -> List[Dict[str, Any]]:
        request = (
            self.client.table(self.settings.questions_table)
            .select("*")
            .eq("quizId", quiz_id)
            .order("order")
        )
        response = await self._execute(request, "fetch_questions")
        return response.data or []

    async def fetch_attempt(self, attempt_id: int) -> Optional[Dict[str, Any]]:
        request = (
            self.client.table(self.settings.attempts_table)
            .select("*")
            .eq("id", attempt_id)
            .limit(1)
        )
        response = await self._execute(request, "fetch_attempt")
        rows = response.data or []
        return rows[0] if rows else None

    async def fetch_attempts(self, quiz_id: str, user_id: str) -> List[Dict[str, Any]]:
        request = (
            self.client.table(self.settings.attempts_table)
            .select("*")
            .eq("quiz_id", quiz_id)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
        )
        response = await self._execute(request, "fetch_attempts")
        return response.data or []

    async def fetch_leaderboard(self, quiz_id: str, limit: int) -> List[Dict[str, Any]]:
        request = (
            self.client.table(self.settings.attempts_table)
            .select("id, user_id, score, start_time, end_time, status, quiz_id")
            .eq("quiz_id", quiz_id)
            .eq("status", AttemptStatus.COMPLETED.value)
            .order("score", desc=True)
            .limit(limit)
        )
        response = await self._execute(request, "fetch_leaderboard")
        return response.data or []

    async def save_answer(self, attempt_id: int, question_id: int, record: Dict[str, Any]) -> None:
        """
        Overwrite one answer: the `user_answers` row and the attempt's answers blob.

        The blob update is a read-modify-write with no version check; two
        devices answering the same question concurrently race and the last
        write wins.
        """
        answer_row = {
            "attempt_id": attempt_id,
            "question_id": question_id,
            "selected_options": record["selectedOptions"],
            "is_correct": record["isCorrect"],
            "time_taken": record["timeSpent"],
        }
        await self._execute(
            self.client.table(self.settings.answers_table).upsert(
                answer_row, on_conflict="attempt_id,question_id"
            ),
            "save_answer",
        )

        attempt = await self.fetch_attempt(attempt_id)
        if attempt is None:
            raise BackendError(f"Attempt {attempt_id} not found while saving answer")

        answers = dict(attempt.get("answers") or {})
        answers[str(question_id)] = record
        await self.update_attempt(attempt_id, {"answers": answers, "time_spent": record["timeSpent"]})

    async def update_attempt(self, attempt_id: int, fields: Dict[str, Any]) -> None:
        request = self.client.table(self.settings.attempts_table).update(fields).eq("id", attempt_id)
        await self._execute(request, "update_attempt")

    async def create_attempt(self, quiz_id: str, user_id: str) -> Dict[str, Any]:
        row = {
            "quiz_id": quiz_id,
            "user_id": user_id,
            "start_time": datetime.now(timezone.utc).isoformat(),
            "status": AttemptStatus.IN_PROGRESS.value,
            "time_spent": 0,
            "current_question_index": 0,
            "answers": {},
        }
        response = await self._execute(
            self.client.table(self.settings.attempts_table).insert(row), "create_attempt"
        )
        rows = response.data or []
        if not rows:
            raise BackendError("create_attempt returned no row")
        return rows[0]

    async def finish_quiz(self, attempt_id: int) -> Dict[str, Any]:
        request = self.client.rpc(self.settings.finish_quiz_rpc, {"attempt_id": attempt_id})
        response = await self._execute(request, "finish_quiz")
        if not response.data:
            raise BackendError(f"finish_quiz returned no result for attempt {attempt_id}")
        return response.data

    async def reset_attempt(self, quiz_id: str, user_id: str) -> Dict[str, Any]:
        request = self.client.rpc(
            self.settings.reset_attempt_rpc, {"quiz_id": quiz_id, "user_id": user_id}
        )
        response = await self._execute(request, "reset_attempt")
        if not response.data:
            raise BackendError(f"reset_attempt returned no attempt for quiz {quiz_id}")
        return response.data

    async def subscribe_attempt(self, attempt_id: int, on_change: ChangeCallback) -> Subscription:
        channel = self.client.channel(f"quiz-attempt-{attempt_id}")
        channel.on_postgres_changes(
            event="*",
            schema="public",
            table=self.settings.attempts_table,
            filter=f"id=eq.{attempt_id}",
            callback=lambda payload: on_change(),
        )
        try:
            await channel.subscribe()
        except Exception as e:
            self.logger.error(f"Failed to subscribe to attempt {attempt_id}: {e}")
            raise BackendError(f"subscribe_attempt failed: {e}") from e

        self.logger.debug(f"Subscribed to realtime changes of attempt {attempt_id}")

        async def teardown() -> None:
            await self.client.remove_channel(channel)
            self.logger.debug(f"Unsubscribed from attempt {attempt_id}")

        return CallbackSubscription(teardown)
