"""
Elapsed-time ticker for in-progress attempts.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], Any]


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_created(attempt_id: int, tick_interval: float) -> None:
        logger.debug(
            f"Timer lifecycle: CREATED - Attempt {attempt_id}, Interval {tick_interval}s",
            extra={
                'event_type': 'timer_created',
                'attempt_id': attempt_id,
                'tick_interval': tick_interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_start(attempt_id: int, initial_seconds: int) -> None:
        logger.info(
            f"Timer lifecycle: START - Attempt {attempt_id}, Elapsed {initial_seconds}s",
            extra={
                'event_type': 'timer_start',
                'attempt_id': attempt_id,
                'initial_seconds': initial_seconds,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_tick(attempt_id: int, elapsed: int) -> None:
        """Log tick events (throttled to avoid spam)."""
        if elapsed % 10 == 0:
            logger.debug(
                f"Timer lifecycle: TICK - Attempt {attempt_id}, Elapsed {elapsed}s",
                extra={
                    'event_type': 'timer_tick',
                    'attempt_id': attempt_id,
                    'elapsed': elapsed,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_stopped(attempt_id: int, reason: str, elapsed: int) -> None:
        logger.info(
            f"Timer lifecycle: STOPPED - Attempt {attempt_id}, Reason {reason}, Elapsed {elapsed}s",
            extra={
                'event_type': 'timer_stopped',
                'attempt_id': attempt_id,
                'reason': reason,
                'elapsed': elapsed,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_cleanup_start(attempt_id: int) -> float:
        cleanup_start_time = time.time()
        logger.debug(
            f"Timer lifecycle: CLEANUP_START - Attempt {attempt_id}",
            extra={
                'event_type': 'timer_cleanup_start',
                'attempt_id': attempt_id,
                'timestamp': cleanup_start_time
            }
        )
        return cleanup_start_time

    @staticmethod
    def log_timer_cleanup_complete(attempt_id: int, cleanup_start_time: float, success: bool) -> None:
        cleanup_duration = time.time() - cleanup_start_time
        status = "SUCCESS" if success else "FAILED"
        logger.debug(
            f"Timer lifecycle: CLEANUP_COMPLETE - Attempt {attempt_id}, Status {status}, "
            f"Duration {cleanup_duration:.3f}s",
            extra={
                'event_type': 'timer_cleanup_complete',
                'attempt_id': attempt_id,
                'cleanup_duration': cleanup_duration,
                'success': success,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(attempt_id: int, error_type: str, error_message: str) -> None:
        logger.error(
            f"Timer lifecycle: ERROR - Attempt {attempt_id}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'attempt_id': attempt_id,
                'error_type': error_type,
                'error_message': error_message,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(attempt_id: int, details: str) -> None:
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Attempt {attempt_id}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'attempt_id': attempt_id,
                'details': details,
                'timestamp': time.time()
            }
        )


class AttemptTimer:
    """Counts elapsed seconds of an attempt and reports each tick."""

    def __init__(
        self,
        attempt_id: int,
        tick_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the timer.

        Args:
            attempt_id: Attempt being timed, used in log records
            tick_interval: Seconds between ticks
            sleep: Coroutine function used to wait between ticks
        """
        self.attempt_id = attempt_id
        self.tick_interval = tick_interval
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._elapsed = 0
        self._is_cancelled = False

        TimerLifecycleLogger.log_timer_created(attempt_id, tick_interval)

    @property
    def elapsed(self) -> int:
        return self._elapsed

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    def start(self, initial_seconds: int, on_tick: TickCallback) -> asyncio.Task:
        """
        Start counting up from `initial_seconds`.

        Args:
            initial_seconds: Elapsed seconds already spent on the attempt
            on_tick: Called with the new elapsed time once per interval

        Returns:
            The task running the ticker
        """
        if self.is_running:
            TimerLifecycleLogger.log_race_condition_detected(
                self.attempt_id, "start requested while already running, restarting"
            )
            self.cancel("restart")

        self._elapsed = int(initial_seconds)
        self._is_cancelled = False
        self._task = asyncio.get_running_loop().create_task(self._run(on_tick))
        return self._task

    async def _run(self, on_tick: TickCallback) -> None:
        TimerLifecycleLogger.log_timer_start(self.attempt_id, self._elapsed)
        try:
            while not self._is_cancelled:
                await self._sleep(self.tick_interval)
                if self._is_cancelled:
                    break
                self._elapsed += 1
                TimerLifecycleLogger.log_timer_tick(self.attempt_id, self._elapsed)
                result = on_tick(self._elapsed)
                if inspect.isawaitable(result):
                    await result
        except asyncio.CancelledError:
            self._is_cancelled = True
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(self.attempt_id, type(e).__name__, str(e))
            raise

    def cancel(self, reason: str = "cancel requested") -> None:
        """Stop ticking. No tick is delivered after this returns."""
        was_running = self.is_running
        self._is_cancelled = True
        if was_running:
            self._task.cancel()
            TimerLifecycleLogger.log_timer_stopped(self.attempt_id, reason, self._elapsed)

    async def stop(self, reason: str = "stop requested") -> None:
        """Cancel the ticker and wait for its task to finish."""
        cleanup_start_time = TimerLifecycleLogger.log_timer_cleanup_start(self.attempt_id)
        task = self._task
        self.cancel(reason)
        success = True
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                success = False
        self._task = None
        TimerLifecycleLogger.log_timer_cleanup_complete(self.attempt_id, cleanup_start_time, success)
