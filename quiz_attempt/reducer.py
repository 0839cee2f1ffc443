"""
Attempt state machine.

`attempt_reducer` is the sole mutator of in-memory attempt state: it maps
(current state, action) to a new state and never touches the original.
"""
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Union

from .errors import InvalidActionError
from .models import AnswerRecord, AttemptStatus, Question

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptState:
    """In-memory state of the attempt being taken."""
    current_question_index: int = 0
    selected_answers: List[str] = field(default_factory=list)
    questions: List[Question] = field(default_factory=list)
    time_spent: int = 0
    answers: Dict[str, AnswerRecord] = field(default_factory=dict)
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    is_submitting: bool = False
    newly_completed: bool = False

    @property
    def current_question(self):
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.COMPLETED


class ActionType(Enum):
    """Enumeration of the actions understood by the reducer."""
    SELECT_ANSWER = "SELECT_ANSWER"
    NEXT_QUESTION = "NEXT_QUESTION"
    PREVIOUS_QUESTION = "PREVIOUS_QUESTION"
    SAVE_ANSWER = "SAVE_ANSWER"
    UPDATE_ATTEMPT_STATUS = "UPDATE_ATTEMPT_STATUS"
    LOAD_SAVED_ANSWERS = "LOAD_SAVED_ANSWERS"
    SET_TIME = "SET_TIME"
    SET_QUESTIONS = "SET_QUESTIONS"
    SET_SUBMITTING = "SET_SUBMITTING"
    SET_QUESTION_INDEX = "SET_QUESTION_INDEX"
    ACKNOWLEDGE_COMPLETION = "ACKNOWLEDGE_COMPLETION"
    RESET_STATE = "RESET_STATE"


@dataclass(frozen=True)
class SelectAnswer:
    option_id: str
    type: ActionType = field(default=ActionType.SELECT_ANSWER, init=False)


@dataclass(frozen=True)
class NextQuestion:
    type: ActionType = field(default=ActionType.NEXT_QUESTION, init=False)


@dataclass(frozen=True)
class PreviousQuestion:
    type: ActionType = field(default=ActionType.PREVIOUS_QUESTION, init=False)


@dataclass(frozen=True)
class SaveAnswer:
    question_id: int
    selected_options: List[str]
    is_correct: bool
    time_spent: int
    type: ActionType = field(default=ActionType.SAVE_ANSWER, init=False)


@dataclass(frozen=True)
class UpdateAttemptStatus:
    status: AttemptStatus
    type: ActionType = field(default=ActionType.UPDATE_ATTEMPT_STATUS, init=False)


@dataclass(frozen=True)
class LoadSavedAnswers:
    answers: Dict[str, AnswerRecord]
    type: ActionType = field(default=ActionType.LOAD_SAVED_ANSWERS, init=False)


@dataclass(frozen=True)
class SetTime:
    seconds: int
    type: ActionType = field(default=ActionType.SET_TIME, init=False)


@dataclass(frozen=True)
class SetQuestions:
    questions: List[Question]
    type: ActionType = field(default=ActionType.SET_QUESTIONS, init=False)


@dataclass(frozen=True)
class SetSubmitting:
    is_submitting: bool
    type: ActionType = field(default=ActionType.SET_SUBMITTING, init=False)


@dataclass(frozen=True)
class SetQuestionIndex:
    index: int
    type: ActionType = field(default=ActionType.SET_QUESTION_INDEX, init=False)


@dataclass(frozen=True)
class AcknowledgeCompletion:
    type: ActionType = field(default=ActionType.ACKNOWLEDGE_COMPLETION, init=False)


@dataclass(frozen=True)
class ResetState:
    type: ActionType = field(default=ActionType.RESET_STATE, init=False)


Action = Union[
    SelectAnswer, NextQuestion, PreviousQuestion, SaveAnswer, UpdateAttemptStatus,
    LoadSavedAnswers, SetTime, SetQuestions, SetSubmitting, SetQuestionIndex,
    AcknowledgeCompletion, ResetState,
]


def _known_answers(answers: Dict[str, AnswerRecord], questions: List[Question]) -> Dict[str, AnswerRecord]:
    # Before questions arrive there is nothing to filter against.
    if not questions:
        return dict(answers)
    known_ids = {str(q.id) for q in questions}
    return {qid: record for qid, record in answers.items() if str(qid) in known_ids}


def _selection_for_index(state: AttemptState, index: int) -> List[str]:
    """Selection shown when landing on a question: saved answer in review, empty otherwise."""
    if not state.is_completed or not 0 <= index < len(state.questions):
        return []
    record = state.answers.get(str(state.questions[index].id))
    return list(record.selected_options) if record else []


def _select_answer(state: AttemptState, action: SelectAnswer) -> AttemptState:
    if state.is_completed:
        return state

    question = state.current_question
    option_id = str(action.option_id)
    if question is not None and question.is_multiple:
        if option_id in state.selected_answers:
            selected = [a for a in state.selected_answers if a != option_id]
        else:
            selected = state.selected_answers + [option_id]
    else:
        selected = [option_id]
    return replace(state, selected_answers=selected)


def _move_to(state: AttemptState, index: int) -> AttemptState:
    if state.questions:
        index = min(index, len(state.questions) - 1)
    index = max(0, index)
    return replace(
        state,
        current_question_index=index,
        selected_answers=_selection_for_index(state, index),
    )


def _save_answer(state: AttemptState, action: SaveAnswer) -> AttemptState:
    if state.is_completed:
        logger.debug(f"Ignoring answer for question {action.question_id}: attempt already completed")
        return state

    key = str(action.question_id)
    if state.questions and key not in {str(q.id) for q in state.questions}:
        logger.warning(f"Ignoring answer for unknown question {action.question_id}")
        return state

    answers = dict(state.answers)
    answers[key] = AnswerRecord(
        selected_options=[str(o) for o in action.selected_options],
        is_correct=action.is_correct,
        time_spent=action.time_spent,
    )
    return replace(state, answers=answers)


def _update_status(state: AttemptState, action: UpdateAttemptStatus) -> AttemptState:
    new_status = AttemptStatus(action.status)
    if state.is_completed and new_status != AttemptStatus.COMPLETED:
        logger.warning("Ignoring status change out of completed: the attempt is terminal")
        return state
    if state.status == new_status:
        return state
    return replace(
        state,
        status=new_status,
        newly_completed=new_status == AttemptStatus.COMPLETED,
    )


def attempt_reducer(state: AttemptState, action: Action) -> AttemptState:
    """
    Apply one action to the attempt state.

    Args:
        state: Current attempt state
        action: Action to apply

    Returns:
        The next attempt state (the same object when the action is a no-op)

    Raises:
        InvalidActionError: If the action type is not recognised
    """
    action_type = getattr(action, "type", None)

    if action_type == ActionType.SELECT_ANSWER:
        return _select_answer(state, action)

    if action_type == ActionType.NEXT_QUESTION:
        return _move_to(state, state.current_question_index + 1)

    if action_type == ActionType.PREVIOUS_QUESTION:
        return _move_to(state, state.current_question_index - 1)

    if action_type == ActionType.SAVE_ANSWER:
        return _save_answer(state, action)

    if action_type == ActionType.UPDATE_ATTEMPT_STATUS:
        return _update_status(state, action)

    if action_type == ActionType.LOAD_SAVED_ANSWERS:
        return replace(state, answers=_known_answers(action.answers, state.questions))

    if action_type == ActionType.SET_TIME:
        return replace(state, time_spent=int(action.seconds))

    if action_type == ActionType.SET_QUESTIONS:
        questions = list(action.questions)
        return replace(state, questions=questions, answers=_known_answers(state.answers, questions))

    if action_type == ActionType.SET_SUBMITTING:
        return replace(state, is_submitting=bool(action.is_submitting))

    if action_type == ActionType.SET_QUESTION_INDEX:
        return _move_to(state, int(action.index))

    if action_type == ActionType.ACKNOWLEDGE_COMPLETION:
        return replace(state, newly_completed=False)

    if action_type == ActionType.RESET_STATE:
        return AttemptState(questions=state.questions)

    raise InvalidActionError(f"Unknown action: {action!r}")
