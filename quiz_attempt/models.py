"""
Core data models for the quiz attempt client.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class AttemptStatus(str, Enum):
    """Lifecycle states of a quiz attempt."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp coming from a backend row."""
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass(frozen=True)
class QuestionOption:
    """One selectable choice of a question."""
    id: str
    value: str


@dataclass(frozen=True)
class Question:
    """Represents a single quiz question. Read-only for the client."""
    id: int
    order: int
    is_multiple: bool
    correct: List[str]
    options: List[QuestionOption] = field(default_factory=list)
    title: Optional[str] = None
    justification: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Question":
        """Build a question from a `quiz_questions` row."""
        options = [
            QuestionOption(id=str(option.get("id")), value=str(option.get("value", "")))
            for option in (row.get("options") or [])
        ]
        return cls(
            id=int(row["id"]),
            order=int(row.get("order") or 0),
            is_multiple=bool(row.get("isMultiple", row.get("is_multiple", False))),
            correct=[str(c) for c in (row.get("correct") or [])],
            options=options,
            title=row.get("title"),
            justification=row.get("justificatif", row.get("justification")),
        )


@dataclass(frozen=True)
class AnswerRecord:
    """The stored answer to one question of an attempt."""
    selected_options: List[str]
    is_correct: bool
    time_spent: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnswerRecord":
        return cls(
            selected_options=[str(o) for o in (data.get("selectedOptions") or [])],
            is_correct=bool(data.get("isCorrect", False)),
            time_spent=int(data.get("timeSpent") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selectedOptions": list(self.selected_options),
            "isCorrect": self.is_correct,
            "timeSpent": self.time_spent,
        }


@dataclass
class Attempt:
    """A user's run through a quiz, as stored in the `quiz_attempts` table."""
    id: int
    quiz_id: str
    user_id: str
    status: AttemptStatus
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    current_question_index: int = 0
    time_spent: int = 0
    score: Optional[float] = None
    answers: Dict[str, AnswerRecord] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == AttemptStatus.COMPLETED

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Attempt":
        """Build an attempt from a `quiz_attempts` row."""
        raw_answers = row.get("answers") or {}
        answers = {
            str(question_id): AnswerRecord.from_dict(record)
            for question_id, record in raw_answers.items()
        }
        score = row.get("score")
        return cls(
            id=int(row["id"]),
            quiz_id=str(row.get("quiz_id")),
            user_id=str(row.get("user_id")),
            status=AttemptStatus(row.get("status") or AttemptStatus.IN_PROGRESS.value),
            start_time=parse_timestamp(row.get("start_time")),
            end_time=parse_timestamp(row.get("end_time")),
            current_question_index=int(row.get("current_question_index") or 0),
            time_spent=int(row.get("time_spent", row.get("timeSpent")) or 0),
            score=float(score) if score is not None else None,
            answers=answers,
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "current_question_index": self.current_question_index,
            "time_spent": self.time_spent,
            "score": self.score,
            "answers": {qid: record.to_dict() for qid, record in self.answers.items()},
        }


@dataclass
class QuizResults:
    """Result payload returned by the finish-quiz procedure."""
    attempt_id: int
    quiz_id: str
    user_id: str
    score: float
    total_questions: int
    correct_answers: int
    accuracy: float
    time_spent: int
    average_time_per_question: float
    xp_gained: int
    status: str
    completed_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "QuizResults":
        """Build results from the finish procedure's JSON payload."""
        return cls(
            attempt_id=int(payload.get("attempt_id", payload.get("attemptId"))),
            quiz_id=str(payload.get("quiz_id", payload.get("quizId"))),
            user_id=str(payload.get("user_id", payload.get("userId"))),
            score=float(payload.get("score") or 0),
            total_questions=int(payload.get("total_questions", payload.get("totalQuestions")) or 0),
            correct_answers=int(payload.get("correct_answers", payload.get("correctAnswers")) or 0),
            accuracy=float(payload.get("accuracy") or 0),
            time_spent=int(payload.get("time_spent", payload.get("timeSpent")) or 0),
            average_time_per_question=float(
                payload.get("average_time_per_question", payload.get("averageTimePerQuestion")) or 0
            ),
            xp_gained=int(payload.get("xp_gained", payload.get("xpGained")) or 0),
            status=str(payload.get("status") or "completed"),
            completed_at=parse_timestamp(payload.get("completed_at", payload.get("completedAt"))),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "quiz_id": self.quiz_id,
            "user_id": self.user_id,
            "score": self.score,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "accuracy": self.accuracy,
            "time_spent": self.time_spent,
            "average_time_per_question": self.average_time_per_question,
            "xp_gained": self.xp_gained,
            "status": self.status,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class QuizProgress:
    """A user's attempt history on one quiz."""
    attempts: List[Attempt]
    total_attempts: int
    best_score: float
    average_score: float
    last_attempt: Optional[Attempt]


@dataclass
class LeaderboardEntry:
    """One row of a quiz leaderboard."""
    attempt_id: int
    user_id: str
    score: float
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    time_spent: int


@dataclass
class SessionSettings:
    """Configuration settings for an attempt session."""
    tick_interval: float = 1.0
    progress_sync_interval: int = 10
    base_xp: int = 100
    pass_threshold: float = 70.0
    leaderboard_size: int = 10
    outbox_path: Optional[str] = None
    outbox_base_delay: float = 1.0
    outbox_max_delay: float = 60.0


@dataclass
class BackendSettings:
    """Connection settings and table/procedure names of the backend."""
    url: Optional[str] = None
    key: Optional[str] = None
    questions_table: str = "quiz_questions"
    attempts_table: str = "quiz_attempts"
    answers_table: str = "user_answers"
    finish_quiz_rpc: str = "finish_quiz"
    reset_attempt_rpc: str = "reset_attempt"
