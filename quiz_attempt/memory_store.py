"""
In-process attempt store.

Implements the backend contract without a network: used for offline runs
and as the backend of the test suite. Change notifications are delivered
on the event loop after the write that caused them, like a push feed.
"""
import asyncio
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .errors import BackendError
from .models import Attempt, AttemptStatus
from .scoring import DEFAULT_BASE_XP, DEFAULT_PASS_THRESHOLD, compute_results
from .store import AttemptStore, CallbackSubscription, ChangeCallback, Subscription


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore(AttemptStore):
    """AttemptStore keeping every table in dictionaries."""

    def __init__(
        self,
        base_xp: int = DEFAULT_BASE_XP,
        pass_threshold: float = DEFAULT_PASS_THRESHOLD,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.logger = logging.getLogger(__name__)
        self.base_xp = base_xp
        self.pass_threshold = pass_threshold
        self.clock = clock

        self.questions: Dict[str, List[Dict[str, Any]]] = {}
        self.attempts: Dict[int, Dict[str, Any]] = {}
        self.user_answers: Dict[tuple, Dict[str, Any]] = {}
        self.xp_history: List[Dict[str, Any]] = []

        self._subscribers: Dict[int, List[ChangeCallback]] = {}
        self._last_id = 0

    # --- Seeding ---

    def add_questions(self, quiz_id: str, rows: List[Dict[str, Any]]) -> None:
        self.questions.setdefault(quiz_id, []).extend(copy.deepcopy(rows))

    def add_attempt(self, row: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(row)
        if "id" not in row:
            row["id"] = self._last_id + 1
        self._last_id = max(self._last_id, int(row["id"]))
        row.setdefault("created_at", self.clock().isoformat())
        self.attempts[row["id"]] = row
        return copy.deepcopy(row)

    # --- Reads ---

    async def fetch_questions(self, quiz_id: str) -> List[Dict[str, Any]]:
        rows = self.questions.get(quiz_id, [])
        return copy.deepcopy(sorted(rows, key=lambda row: row.get("order") or 0))

    async def fetch_attempt(self, attempt_id: int) -> Optional[Dict[str, Any]]:
        row = self.attempts.get(int(attempt_id))
        return copy.deepcopy(row) if row is not None else None

    async def fetch_attempts(self, quiz_id: str, user_id: str) -> List[Dict[str, Any]]:
        rows = [
            row for row in self.attempts.values()
            if row.get("quiz_id") == quiz_id and row.get("user_id") == user_id
        ]
        rows.sort(key=lambda row: (row.get("created_at") or "", row["id"]), reverse=True)
        return copy.deepcopy(rows)

    async def fetch_leaderboard(self, quiz_id: str, limit: int) -> List[Dict[str, Any]]:
        rows = [
            row for row in self.attempts.values()
            if row.get("quiz_id") == quiz_id and row.get("status") == AttemptStatus.COMPLETED.value
        ]
        rows.sort(key=lambda row: row.get("score") or 0, reverse=True)
        return copy.deepcopy(rows[:limit])

    # --- Writes ---

    def _require_attempt(self, attempt_id: int) -> Dict[str, Any]:
        row = self.attempts.get(int(attempt_id))
        if row is None:
            raise BackendError(f"Attempt {attempt_id} not found")
        return row

    async def save_answer(self, attempt_id: int, question_id: int, record: Dict[str, Any]) -> None:
        row = self._require_attempt(attempt_id)
        self.user_answers[(int(attempt_id), int(question_id))] = {
            "attempt_id": int(attempt_id),
            "question_id": int(question_id),
            "selected_options": list(record["selectedOptions"]),
            "is_correct": record["isCorrect"],
            "time_taken": record["timeSpent"],
        }
        answers = dict(row.get("answers") or {})
        answers[str(question_id)] = copy.deepcopy(record)
        row["answers"] = answers
        row["time_spent"] = record["timeSpent"]
        self._notify(row["id"])

    async def update_attempt(self, attempt_id: int, fields: Dict[str, Any]) -> None:
        row = self._require_attempt(attempt_id)
        row.update(copy.deepcopy(fields))
        self._notify(row["id"])

    async def create_attempt(self, quiz_id: str, user_id: str) -> Dict[str, Any]:
        row = self.add_attempt({
            "quiz_id": quiz_id,
            "user_id": user_id,
            "start_time": self.clock().isoformat(),
            "status": AttemptStatus.IN_PROGRESS.value,
            "time_spent": 0,
            "current_question_index": 0,
            "answers": {},
        })
        self.logger.debug(f"Created attempt {row['id']} for quiz {quiz_id}")
        return row

    async def finish_quiz(self, attempt_id: int) -> Dict[str, Any]:
        row = self._require_attempt(attempt_id)
        already_completed = row.get("status") == AttemptStatus.COMPLETED.value
        completed_at = self.clock()
        if already_completed and row.get("end_time"):
            completed_at = Attempt.from_row(row).end_time

        total_questions = len(self.questions.get(row["quiz_id"], [])) or None
        results = compute_results(
            Attempt.from_row(row),
            total_questions=total_questions,
            base_xp=self.base_xp,
            pass_threshold=self.pass_threshold,
            completed_at=completed_at,
        )

        if not already_completed:
            row.update({
                "status": AttemptStatus.COMPLETED.value,
                "score": results.score,
                "end_time": completed_at.isoformat(),
            })
            self.xp_history.append({
                "userid": row["user_id"],
                "xp_gained": results.xp_gained,
                "source_type": "quiz",
                "source_id": row["quiz_id"],
                "quiz_id": row["quiz_id"],
            })
            self._notify(row["id"])

        return results.to_payload()

    async def reset_attempt(self, quiz_id: str, user_id: str) -> Dict[str, Any]:
        stale = [
            attempt_id for attempt_id, row in self.attempts.items()
            if row.get("quiz_id") == quiz_id
            and row.get("user_id") == user_id
            and row.get("status") == AttemptStatus.IN_PROGRESS.value
        ]
        for attempt_id in stale:
            del self.attempts[attempt_id]
            self._notify(attempt_id)
        return await self.create_attempt(quiz_id, user_id)

    # --- Realtime ---

    async def subscribe_attempt(self, attempt_id: int, on_change: ChangeCallback) -> Subscription:
        callbacks = self._subscribers.setdefault(int(attempt_id), [])
        callbacks.append(on_change)

        async def teardown() -> None:
            if on_change in callbacks:
                callbacks.remove(on_change)

        return CallbackSubscription(teardown)

    def subscriber_count(self, attempt_id: int) -> int:
        return len(self._subscribers.get(int(attempt_id), []))

    def _notify(self, attempt_id: int) -> None:
        callbacks = list(self._subscribers.get(int(attempt_id), []))
        if not callbacks:
            return
        loop = asyncio.get_running_loop()
        for callback in callbacks:
            loop.call_soon(callback)
