"""
Attempt session orchestration.

An AttemptSession owns the reducer state of one attempt and wires it to the
loader (reads and realtime updates), the persistence adapter (writes) and
the elapsed-time ticker. All state changes go through `dispatch`.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from .errors import ResetFailure
from .loader import AttemptLoader, AttemptWatch
from .models import Attempt, AttemptStatus, Question, QuizResults, SessionSettings
from .persistence import ProgressPersistence
from .reducer import (
    AcknowledgeCompletion, Action, AttemptState, LoadSavedAnswers, NextQuestion,
    PreviousQuestion, ResetState, SaveAnswer, SelectAnswer, SetQuestionIndex,
    SetQuestions, SetSubmitting, SetTime, UpdateAttemptStatus, attempt_reducer,
)
from .scoring import compute_results, is_answer_correct
from .timer import AttemptTimer

StateListener = Callable[[AttemptState], Any]


class AttemptSession:
    """
    Runs one quiz attempt: answering, review navigation, finish and reset.

    Answers are applied locally before they are written, and navigation
    never waits on the backend. The only calls whose failure reaches the
    caller are finishing (FinishFailure) and resetting (ResetFailure).
    """

    def __init__(
        self,
        quiz_id: str,
        attempt_id: int,
        loader: AttemptLoader,
        persistence: ProgressPersistence,
        settings: Optional[SessionSettings] = None,
        on_exit: Optional[Callable[[], Any]] = None,
        timer_factory: Optional[Callable[[int], AttemptTimer]] = None,
    ):
        """
        Initialize the session.

        Args:
            quiz_id: Quiz being attempted
            attempt_id: Attempt row driving the session
            loader: Reads questions and attempts, watches the attempt row
            persistence: Writes answers, progress, finish and reset
            settings: Session settings
            on_exit: Called when the user moves past the last question in review
            timer_factory: Builds the elapsed-time ticker for an attempt id
        """
        self.logger = logging.getLogger(__name__)
        self.quiz_id = quiz_id
        self.attempt_id = attempt_id
        self.loader = loader
        self.persistence = persistence
        self.settings = settings or SessionSettings()
        self.on_exit = on_exit
        self._timer_factory = timer_factory or self._default_timer

        self.state = AttemptState()
        self.attempt: Optional[Attempt] = None
        self._results: Optional[QuizResults] = None
        self._listeners: List[StateListener] = []
        self._watch: Optional[AttemptWatch] = None
        self._timer: Optional[AttemptTimer] = None
        self._background: Set[asyncio.Task] = set()
        self._closed = False

    def _default_timer(self, attempt_id: int) -> AttemptTimer:
        return AttemptTimer(attempt_id, tick_interval=self.settings.tick_interval)

    # --- State ---

    def dispatch(self, action: Action) -> AttemptState:
        """Apply an action and notify listeners if the state changed."""
        previous = self.state
        self.state = attempt_reducer(previous, action)

        if self.state.is_completed and self._timer is not None and self._timer.is_running:
            self._timer.cancel("attempt completed")

        if self.state is not previous:
            for listener in list(self._listeners):
                try:
                    listener(self.state)
                except Exception as e:
                    self.logger.error(f"State listener failed: {e}", exc_info=True)
        return self.state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener called with every new state.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def current_question(self) -> Optional[Question]:
        return self.state.current_question

    @property
    def total_questions(self) -> int:
        return len(self.state.questions)

    @property
    def is_first_question(self) -> bool:
        return self.state.current_question_index == 0

    @property
    def is_last_question(self) -> bool:
        return self.total_questions > 0 and self.state.current_question_index == self.total_questions - 1

    @property
    def results(self) -> Optional[QuizResults]:
        """
        Results of the attempt.

        The payload returned by the finish call when this session finished the
        attempt, otherwise a local estimate for an attempt loaded as completed.
        """
        if self._results is not None:
            return self._results
        if self.state.is_completed and self.attempt is not None:
            return compute_results(
                self.attempt,
                total_questions=self.total_questions or None,
                base_xp=self.settings.base_xp,
                pass_threshold=self.settings.pass_threshold,
            )
        return None

    @property
    def progress(self) -> Dict[str, Any]:
        return {
            'quiz_id': self.quiz_id,
            'attempt_id': self.attempt_id,
            'status': self.state.status.value,
            'current_question': self.state.current_question_index + 1,
            'total_questions': self.total_questions,
            'answered': len(self.state.answers),
            'time_spent': self.state.time_spent,
            'pending_writes': self.persistence.pending_count,
        }

    def get_status_summary(self) -> str:
        """Get a human-readable summary of the session."""
        info = self.progress
        minutes, seconds = divmod(info['time_spent'], 60)
        status_parts = [
            f"Quiz: {info['quiz_id']}",
            f"Attempt: {info['attempt_id']}",
            f"Progress: {info['current_question']}/{info['total_questions']}",
            f"Answered: {info['answered']}",
            f"Status: {'Completed' if self.state.is_completed else 'In progress'}",
            f"Time: {minutes}m {seconds}s",
        ]
        if info['pending_writes']:
            status_parts.append(f"Unsynced writes: {info['pending_writes']}")
        return " | ".join(status_parts)

    # --- Lifecycle ---

    async def start(self) -> None:
        """
        Load the quiz and the attempt, then start watching the attempt.

        Raises:
            NotFoundError: If the quiz has no questions or the attempt does not exist
            BackendError: If the initial reads fail
        """
        questions = await self.loader.load_questions(self.quiz_id)
        self.dispatch(SetQuestions(questions))

        self._watch = await self.loader.watch_attempt(self.attempt_id, self._apply_attempt)
        try:
            attempt = await self._watch.refresh(require=True)
        except Exception:
            await self._watch.close()
            self._watch = None
            raise

        self._restore(attempt)
        self.logger.info(f"Started session for attempt {self.attempt_id}: {self.get_status_summary()}")

    def _restore(self, attempt: Attempt) -> None:
        """Restore elapsed time and position from a freshly loaded attempt."""
        self.dispatch(SetTime(attempt.time_spent))
        if self.state.is_completed:
            # Opening an already completed attempt is not a completion.
            self.dispatch(AcknowledgeCompletion())
            self.dispatch(SetQuestionIndex(0))
        else:
            self.dispatch(SetQuestionIndex(attempt.current_question_index))
            self._start_timer(attempt.time_spent)

    async def _apply_attempt(self, attempt: Attempt) -> None:
        """Feed a fresh attempt snapshot into the reducer."""
        if attempt.id != self.attempt_id:
            return
        self.attempt = attempt

        if self.state.is_completed:
            answers = dict(attempt.answers)
        else:
            # In progress answers only grow: a snapshot fetched before a write
            # landed must not drop it. Queued answers are newer than the snapshot.
            answers = dict(self.state.answers)
            answers.update(attempt.answers)
            answers.update(self.persistence.pending_answers(self.attempt_id))

        self.dispatch(LoadSavedAnswers(answers))
        self.dispatch(UpdateAttemptStatus(attempt.status))

    def _start_timer(self, initial_seconds: int) -> None:
        self._timer = self._timer_factory(self.attempt_id)
        self._timer.start(initial_seconds, self._on_tick)

    def _on_tick(self, elapsed: int) -> None:
        if self.state.is_completed:
            return
        self.dispatch(SetTime(elapsed))
        if self.state.is_submitting:
            return
        interval = self.settings.progress_sync_interval
        if interval and elapsed % interval == 0:
            self._spawn(self._sync_progress(elapsed, self.state.current_question_index))

    async def _sync_progress(self, elapsed: int, index: int) -> None:
        await self.persistence.flush()
        await self.persistence.update_attempt_progress(self.attempt_id, elapsed, index)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"Background write failed: {task.exception()}")

    async def _drain(self) -> None:
        """Wait for background writes started so far."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _stop_attempt(self, reason: str) -> None:
        if self._timer is not None:
            await self._timer.stop(reason)
            self._timer = None
        if self._watch is not None:
            await self._watch.close()
            self._watch = None
        await self._drain()

    async def close(self) -> None:
        """Stop the timer, the realtime watch and wait for background writes."""
        if self._closed:
            return
        self._closed = True
        await self._stop_attempt("session closed")
        if self.persistence.pending_count:
            self.logger.warning(
                f"Closing session of attempt {self.attempt_id} with "
                f"{self.persistence.pending_count} unsynced writes"
            )
        self.logger.info(f"Closed session for attempt {self.attempt_id}")

    # --- User actions ---

    def select_answer(self, option_id: str) -> AttemptState:
        return self.dispatch(SelectAnswer(option_id))

    def handle_previous_question(self) -> AttemptState:
        return self.dispatch(PreviousQuestion())

    async def handle_next_question(self) -> Optional[QuizResults]:
        """
        Score the current question and advance, or finish on the last question.

        In review mode this only navigates; past the last question it calls
        `on_exit`.

        Returns:
            The quiz results when this call finished the attempt, else None

        Raises:
            FinishFailure: If finishing failed; the user stays on the last question
        """
        question = self.state.current_question
        if question is None:
            self.logger.warning(f"No current question for attempt {self.attempt_id}")
            return None

        if self.state.is_completed:
            if self.is_last_question:
                await self._exit()
            else:
                self.dispatch(NextQuestion())
            return None

        if self.state.is_submitting:
            self.logger.debug(f"Ignoring next: attempt {self.attempt_id} is being submitted")
            return None

        selected = list(self.state.selected_answers)
        is_correct = is_answer_correct(selected, question.correct)
        time_spent = self.state.time_spent
        is_last = self.is_last_question

        self.dispatch(SaveAnswer(question.id, selected, is_correct, time_spent))
        save = self.persistence.save_answer(
            self.attempt_id, question.id, selected, question.correct, time_spent, is_correct
        )

        if not is_last:
            self.dispatch(NextQuestion())
            self._spawn(save)
            return None

        return await self._finish(save)

    async def _finish(self, save) -> QuizResults:
        attempt_id = self.attempt_id
        self.dispatch(SetSubmitting(True))
        try:
            await save
            await self._drain()
            results = await self.persistence.finish_quiz(attempt_id)
        finally:
            if self.attempt_id == attempt_id:
                self.dispatch(SetSubmitting(False))

        if self.attempt_id != attempt_id:
            self.logger.warning(
                f"Attempt {attempt_id} finished after the session moved to attempt "
                f"{self.attempt_id}; ignoring its results"
            )
            return results

        self._results = results
        self.dispatch(UpdateAttemptStatus(AttemptStatus.COMPLETED))
        if self._timer is not None:
            await self._timer.stop("attempt completed")
            self._timer = None
        return results

    async def _exit(self) -> None:
        if self.on_exit is None:
            return
        result = self.on_exit()
        if inspect.isawaitable(result):
            await result

    async def reset_quiz(self) -> Attempt:
        """
        Discard this attempt on the backend and continue on a fresh one.

        Raises:
            ResetFailure: If the session is closed, the attempt is being
                submitted, or the backend refused; local state is left untouched
        """
        if self._closed:
            raise ResetFailure(f"Cannot reset attempt {self.attempt_id}: session is closed")
        if self.attempt is None:
            raise ResetFailure(f"Cannot reset attempt {self.attempt_id} before it is loaded")
        if self.state.is_submitting:
            raise ResetFailure(f"Cannot reset attempt {self.attempt_id} while it is being submitted")

        # Held until RESET_STATE so no finish starts on the discarded attempt.
        self.dispatch(SetSubmitting(True))
        try:
            attempt = await self.persistence.reset_attempt(
                self.quiz_id, self.attempt.user_id, previous_attempt_id=self.attempt_id
            )
        except BaseException:
            self.dispatch(SetSubmitting(False))
            raise

        await self._stop_attempt("attempt reset")
        self.dispatch(ResetState())
        self.attempt_id = attempt.id
        self.attempt = None
        self._results = None

        self._watch = await self.loader.watch_attempt(attempt.id, self._apply_attempt)
        await self._apply_attempt(attempt)
        self._restore(attempt)
        self.logger.info(f"Quiz {self.quiz_id} reset, continuing on attempt {attempt.id}")
        return attempt

    def consume_completion(self) -> bool:
        """
        Return True once after the attempt became completed in this session.
        """
        if not self.state.newly_completed:
            return False
        self.dispatch(AcknowledgeCompletion())
        return True
