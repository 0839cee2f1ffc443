"""
Translates attempt state changes into backend writes.

Answer and progress writes are queued in an AnswerOutbox and never raise:
a failed write stays queued for a later flush. Finishing and resetting an
attempt are the two calls whose failure reaches the caller.
"""
import logging
from typing import Dict, List, Optional

from .errors import BackendError, FinishFailure, ResetFailure, TransientWriteFailure
from .models import AnswerRecord, Attempt, QuizResults
from .outbox import ANSWER, PROGRESS, AnswerOutbox, PendingWrite
from .store import AttemptStore


class ProgressPersistence:
    """Backend write side of an attempt session."""

    def __init__(self, store: AttemptStore, outbox: Optional[AnswerOutbox] = None):
        """
        Initialize the persistence adapter.

        Args:
            store: Backend store to write to
            outbox: Queue of pending writes, in-memory only if not given
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.outbox = outbox or AnswerOutbox()

    @property
    def pending_count(self) -> int:
        return len(self.outbox)

    async def _send(self, write: PendingWrite) -> None:
        try:
            if write.kind == ANSWER:
                await self.store.save_answer(write.attempt_id, write.question_id, write.payload)
            elif write.kind == PROGRESS:
                await self.store.update_attempt(write.attempt_id, write.payload)
            else:
                self.logger.error(f"Dropping write of unknown kind {write.kind!r}")
        except BackendError as e:
            raise TransientWriteFailure(
                f"{write.kind} write for attempt {write.attempt_id} failed: {e}"
            ) from e

    async def save_answer(
        self,
        attempt_id: int,
        question_id: int,
        selected_options: List[str],
        correct_options: List[str],
        time_spent: int,
        is_correct: bool,
    ) -> bool:
        """
        Overwrite the stored answer to one question.

        Args:
            attempt_id: Attempt being answered
            question_id: Answered question
            selected_options: Option ids the user selected
            correct_options: Option ids of the correct answer
            time_spent: Elapsed seconds of the attempt when answering
            is_correct: Whether the selection matched the correct options

        Returns:
            True if the write reached the backend, False if it stays queued
        """
        record = AnswerRecord(
            selected_options=[str(o) for o in selected_options],
            is_correct=is_correct,
            time_spent=time_spent,
        )
        self.logger.debug(
            f"Saving answer to question {question_id} of attempt {attempt_id}: "
            f"{record.selected_options} (correct: {[str(o) for o in correct_options]})"
        )
        write = PendingWrite(
            kind=ANSWER, attempt_id=attempt_id, question_id=question_id, payload=record.to_dict()
        )
        self.outbox.enqueue(write)
        return await self.outbox.send(write, self._send)

    async def update_attempt_progress(self, attempt_id: int, time_spent: int,
                                      current_question_index: int) -> bool:
        """Record elapsed time and position. Advisory: only used to resume."""
        write = PendingWrite(
            kind=PROGRESS,
            attempt_id=attempt_id,
            payload={"time_spent": time_spent, "current_question_index": current_question_index},
        )
        self.outbox.enqueue(write)
        return await self.outbox.send(write, self._send)

    def pending_answers(self, attempt_id: int) -> Dict[str, AnswerRecord]:
        """Answers of an attempt that have not reached the backend yet, keyed by question id."""
        return {
            str(write.question_id): AnswerRecord.from_dict(write.payload)
            for write in self.outbox.pending()
            if write.kind == ANSWER and write.attempt_id == attempt_id
        }

    async def flush(self, force: bool = False) -> int:
        """Retry queued writes whose backoff has elapsed."""
        return await self.outbox.flush(self._send, force=force)

    async def finish_quiz(self, attempt_id: int) -> QuizResults:
        """
        Complete the attempt server-side and return its results.

        Pending writes are flushed first so every answer that can reach the
        backend is scored.

        Raises:
            FinishFailure: If the backend call fails or returns an unusable payload
        """
        await self.flush(force=True)
        if self.pending_count:
            self.logger.warning(
                f"Finishing attempt {attempt_id} with {self.pending_count} writes still pending"
            )

        try:
            payload = await self.store.finish_quiz(attempt_id)
        except BackendError as e:
            self.logger.error(f"Failed to finish attempt {attempt_id}: {e}")
            raise FinishFailure(f"finish_quiz failed for attempt {attempt_id}: {e}") from e

        try:
            results = QuizResults.from_payload(payload)
        except (AttributeError, TypeError, ValueError) as e:
            self.logger.error(f"Invalid finish_quiz payload for attempt {attempt_id}: {payload!r}")
            raise FinishFailure(f"finish_quiz returned an invalid payload: {e}") from e

        self.logger.info(
            f"Attempt {attempt_id} finished: score {results.score:.1f}%, "
            f"{results.correct_answers}/{results.total_questions} correct, {results.xp_gained} XP"
        )
        return results

    async def reset_attempt(self, quiz_id: str, user_id: str,
                            previous_attempt_id: Optional[int] = None) -> Attempt:
        """
        Discard the user's in-progress attempt and start a fresh one.

        Args:
            quiz_id: Quiz being retaken
            user_id: User retaking it
            previous_attempt_id: Attempt whose pending writes become obsolete

        Raises:
            ResetFailure: If the backend call fails
        """
        try:
            row = await self.store.reset_attempt(quiz_id, user_id)
        except BackendError as e:
            self.logger.error(f"Failed to reset quiz {quiz_id} for user {user_id}: {e}")
            raise ResetFailure(f"reset_attempt failed for quiz {quiz_id}: {e}") from e

        try:
            attempt = Attempt.from_row(row)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Invalid reset_attempt payload for quiz {quiz_id}: {row!r}")
            raise ResetFailure(f"reset_attempt returned an invalid attempt: {e}") from e

        if previous_attempt_id is not None and previous_attempt_id != attempt.id:
            self.outbox.discard_attempt(previous_attempt_id)

        self.logger.info(f"Reset quiz {quiz_id} for user {user_id}: new attempt {attempt.id}")
        return attempt

    async def create_attempt(self, quiz_id: str, user_id: str) -> Attempt:
        """
        Start a new in-progress attempt.

        Raises:
            BackendError: If the backend call fails
        """
        row = await self.store.create_attempt(quiz_id, user_id)
        attempt = Attempt.from_row(row)
        self.logger.info(f"Created attempt {attempt.id} on quiz {quiz_id} for user {user_id}")
        return attempt
