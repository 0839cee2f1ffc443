"""
Backend store contract used by the loader and the persistence adapter.

A store speaks in backend rows (plain dictionaries). Implementations raise
`BackendError` when a request fails.
"""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

ChangeCallback = Callable[[], None]


class Subscription(ABC):
    """Handle on a realtime change feed."""

    @abstractmethod
    async def close(self) -> None:
        """Stop receiving notifications."""


class AttemptStore(ABC):
    """Relational store + realtime feed + remote procedures of the backend."""

    @abstractmethod
    async def fetch_questions(self, quiz_id: str) -> List[Dict[str, Any]]:
        """Return the quiz's question rows ordered by their `order` column."""

    @abstractmethod
    async def fetch_attempt(self, attempt_id: int) -> Optional[Dict[str, Any]]:
        """Return the attempt row, or None when it does not exist."""

    @abstractmethod
    async def fetch_attempts(self, quiz_id: str, user_id: str) -> List[Dict[str, Any]]:
        """Return a user's attempts on a quiz, newest first."""

    @abstractmethod
    async def fetch_leaderboard(self, quiz_id: str, limit: int) -> List[Dict[str, Any]]:
        """Return completed attempts on a quiz, best score first."""

    @abstractmethod
    async def save_answer(self, attempt_id: int, question_id: int, record: Dict[str, Any]) -> None:
        """Overwrite the answer to one question of an attempt."""

    @abstractmethod
    async def update_attempt(self, attempt_id: int, fields: Dict[str, Any]) -> None:
        """Update columns of an attempt row."""

    @abstractmethod
    async def create_attempt(self, quiz_id: str, user_id: str) -> Dict[str, Any]:
        """Insert a fresh in-progress attempt and return its row."""

    @abstractmethod
    async def finish_quiz(self, attempt_id: int) -> Dict[str, Any]:
        """Score and complete an attempt server-side, returning the result payload."""

    @abstractmethod
    async def reset_attempt(self, quiz_id: str, user_id: str) -> Dict[str, Any]:
        """Discard the user's in-progress attempt and return a fresh one."""

    @abstractmethod
    async def subscribe_attempt(self, attempt_id: int, on_change: ChangeCallback) -> Subscription:
        """Call `on_change` whenever any column of the attempt row changes."""


class CallbackSubscription(Subscription):
    """Subscription closed by running a teardown coroutine function once."""

    def __init__(self, teardown: Callable[[], Awaitable[None]]):
        self._teardown = teardown
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._teardown()
