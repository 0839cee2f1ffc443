"""
Question and attempt loading, with realtime refresh of the attempt row.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional, Set

from .errors import BackendError, NotFoundError
from .models import Attempt, AttemptStatus, LeaderboardEntry, Question, QuizProgress
from .scoring import leaderboard_entry, summarize_attempts
from .store import AttemptStore, Subscription

AttemptCallback = Callable[[Attempt], Any]


class AttemptWatch:
    """
    Keeps a local copy of one attempt row fresh against its change feed.

    Every change notification triggers a re-fetch. Fetches are numbered in
    the order they are issued and a result is applied only if no later fetch
    has already been applied, so a slow stale response never overwrites a
    newer one. Notifications that arrive before the first fetch completes
    are handled the same way.
    """

    def __init__(self, store: AttemptStore, attempt_id: int, on_update: AttemptCallback):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.attempt_id = attempt_id
        self.on_update = on_update
        self.attempt: Optional[Attempt] = None

        self._subscription: Optional[Subscription] = None
        self._issued = 0
        self._applied = 0
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Subscribe to the attempt's change feed."""
        self._subscription = await self.store.subscribe_attempt(self.attempt_id, self._on_change)
        self.logger.debug(f"Watching attempt {self.attempt_id}")

    def _on_change(self) -> None:
        if self._closed:
            return
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def refresh(self, require: bool = False) -> Optional[Attempt]:
        """
        Re-fetch the attempt and emit it if it is the newest result.

        Args:
            require: Raise NotFoundError instead of logging when the row is missing

        Returns:
            The cached attempt after this fetch (possibly from a newer fetch)

        Raises:
            NotFoundError: If `require` is set and the attempt does not exist
            BackendError: If `require` is set and the fetch fails
        """
        self._issued += 1
        sequence = self._issued

        try:
            row = await self.store.fetch_attempt(self.attempt_id)
        except BackendError as e:
            if require:
                raise
            self.logger.error(f"Failed to refresh attempt {self.attempt_id}: {e}")
            return self.attempt

        if row is None:
            if require:
                raise NotFoundError(f"Attempt {self.attempt_id} not found")
            self.logger.warning(f"Attempt {self.attempt_id} disappeared from the backend")
            return self.attempt

        if self._closed or sequence < self._applied:
            self.logger.debug(
                f"Dropping stale fetch #{sequence} of attempt {self.attempt_id} "
                f"(already applied #{self._applied})"
            )
            return self.attempt

        self._applied = sequence
        self.attempt = Attempt.from_row(row)
        result = self.on_update(self.attempt)
        if inspect.isawaitable(result):
            await result
        return self.attempt

    async def close(self) -> None:
        """Tear down the subscription and pending re-fetches."""
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            await self._subscription.close()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.logger.debug(f"Stopped watching attempt {self.attempt_id}")


class AttemptLoader:
    """Resolves the reads needed to run and review quiz attempts."""

    def __init__(self, store: AttemptStore, leaderboard_size: int = 10):
        """
        Initialize the loader.

        Args:
            store: Backend store to read from
            leaderboard_size: Default number of leaderboard rows
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.leaderboard_size = leaderboard_size

    async def load_questions(self, quiz_id: str) -> List[Question]:
        """
        Load the ordered question list of a quiz.

        Raises:
            NotFoundError: If the quiz has no questions
        """
        rows = await self.store.fetch_questions(quiz_id)
        if not rows:
            raise NotFoundError(f"No questions found for quiz: {quiz_id}")

        questions = sorted((Question.from_row(row) for row in rows), key=lambda q: q.order)
        self.logger.info(f"Loaded {len(questions)} questions for quiz {quiz_id}")
        return questions

    async def load_attempt(self, attempt_id: int) -> Attempt:
        """
        Load an attempt row including its persisted answers.

        Raises:
            NotFoundError: If the attempt does not exist
        """
        row = await self.store.fetch_attempt(attempt_id)
        if row is None:
            raise NotFoundError(f"Attempt {attempt_id} not found")
        return Attempt.from_row(row)

    async def watch_attempt(self, attempt_id: int, on_update: AttemptCallback) -> AttemptWatch:
        """
        Subscribe to changes of an attempt.

        Args:
            attempt_id: Attempt to watch
            on_update: Called with each fresh Attempt (may be a coroutine function)

        Returns:
            A started AttemptWatch; call `refresh(require=True)` for the initial fetch
        """
        watch = AttemptWatch(self.store, attempt_id, on_update)
        await watch.start()
        return watch

    async def load_quiz_progress(self, quiz_id: str, user_id: str) -> QuizProgress:
        rows = await self.store.fetch_attempts(quiz_id, user_id)
        return summarize_attempts([Attempt.from_row(row) for row in rows])

    async def load_leaderboard(self, quiz_id: str, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        rows = await self.store.fetch_leaderboard(quiz_id, limit or self.leaderboard_size)
        return [leaderboard_entry(Attempt.from_row(row)) for row in rows]

    async def load_best_attempt(self, quiz_id: str, user_id: str) -> Optional[Attempt]:
        """Return the user's best completed attempt, or None if there is none."""
        completed = [
            Attempt.from_row(row) for row in await self.store.fetch_attempts(quiz_id, user_id)
            if row.get("status") == AttemptStatus.COMPLETED.value
        ]
        if not completed:
            return None
        return max(completed, key=lambda attempt: attempt.score or 0)
