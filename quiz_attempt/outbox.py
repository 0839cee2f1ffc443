"""
Local outbox for answer and progress writes.

Writes are journaled before they are sent and removed once the backend
accepts them. Failed writes stay queued and are retried with exponential
backoff. With a journal path the queue survives a restart of the client.
"""
import json
import logging
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .errors import TransientWriteFailure

ANSWER = "answer"
PROGRESS = "progress"


@dataclass
class PendingWrite:
    """One write waiting to reach the backend."""
    kind: str
    attempt_id: int
    payload: Dict[str, Any]
    question_id: Optional[int] = None
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: Optional[str] = None

    @property
    def key(self) -> Tuple[str, int, Optional[int]]:
        # One pending write per question answer, one per attempt's progress.
        return (self.kind, self.attempt_id, self.question_id)


Sender = Callable[[PendingWrite], Awaitable[None]]


class AnswerOutbox:
    """Ordered queue of pending writes with backoff and an optional JSON journal."""

    def __init__(
        self,
        path: Optional[str] = None,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the outbox.

        Args:
            path: JSON journal file, or None to keep the queue in memory only
            base_delay: Delay in seconds after the first failure of a write
            max_delay: Upper bound of the retry delay
            clock: Time source in seconds
        """
        self.logger = logging.getLogger(__name__)
        self.path = Path(path) if path else None
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.clock = clock

        self._entries: List[PendingWrite] = []
        self._in_flight: Set[Tuple[str, int, Optional[int]]] = set()

        if self.path is not None:
            self._load()

    def __len__(self) -> int:
        return len(self._entries)

    def pending(self) -> List[PendingWrite]:
        return list(self._entries)

    def enqueue(self, write: PendingWrite) -> None:
        """Queue a write, superseding any pending write with the same key."""
        self._entries = [entry for entry in self._entries if entry.key != write.key]
        self._entries.append(write)
        self._save()

    def discard_attempt(self, attempt_id: int) -> int:
        """Drop every pending write of an attempt. Returns the number dropped."""
        before = len(self._entries)
        self._entries = [entry for entry in self._entries if entry.attempt_id != attempt_id]
        dropped = before - len(self._entries)
        if dropped:
            self.logger.info(f"Discarded {dropped} pending writes of attempt {attempt_id}")
            self._save()
        return dropped

    def retry_delay(self, attempts: int) -> float:
        """Backoff delay after `attempts` consecutive failures."""
        return min(self.base_delay * (2 ** max(0, attempts - 1)), self.max_delay)

    async def send(self, write: PendingWrite, sender: Sender) -> bool:
        """
        Send one queued write now.

        Returns:
            True if the backend accepted the write, False if it stays queued
        """
        if write.key in self._in_flight:
            return False

        self._in_flight.add(write.key)
        try:
            await sender(write)
        except TransientWriteFailure as e:
            write.attempts += 1
            write.last_error = str(e)
            delay = self.retry_delay(write.attempts)
            write.next_attempt_at = self.clock() + delay
            self.logger.warning(
                f"Write {write.kind} for attempt {write.attempt_id} failed "
                f"(attempt {write.attempts}), retrying in {delay:.1f}s: {e}"
            )
            self._save()
            return False
        finally:
            self._in_flight.discard(write.key)

        # A newer write for the same key may have been queued meanwhile; keep it.
        if any(entry is write for entry in self._entries):
            self._entries = [entry for entry in self._entries if entry is not write]
            self._save()
        return True

    async def flush(self, sender: Sender, force: bool = False) -> int:
        """
        Send every write whose retry delay has elapsed, in queue order.

        Args:
            sender: Coroutine function delivering one write
            force: Ignore retry delays

        Returns:
            Number of writes delivered
        """
        now = self.clock()
        delivered = 0
        for write in list(self._entries):
            if not force and write.next_attempt_at > now:
                continue
            if await self.send(write, sender):
                delivered += 1
        if delivered:
            self.logger.debug(f"Flushed {delivered} pending writes, {len(self._entries)} remaining")
        return delivered

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._entries = [PendingWrite(**entry) for entry in data.get("pending", [])]
            for entry in self._entries:
                entry.next_attempt_at = 0.0
            self.logger.info(f"Recovered {len(self._entries)} pending writes from {self.path}")
        except (OSError, json.JSONDecodeError, TypeError) as e:
            self.logger.error(f"Failed to read outbox journal {self.path}: {e}")
            self._entries = []

    def _save(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump({"pending": [asdict(entry) for entry in self._entries]}, f)
            os.replace(temp_path, self.path)
        except OSError as e:
            self.logger.error(f"Failed to write outbox journal {self.path}: {e}")
