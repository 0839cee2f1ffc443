"""
Answer correctness, result statistics and XP computation.

The finish procedure on the backend is the authority for a final score.
These helpers mirror its formula for display and for the in-memory store.
"""
from datetime import datetime
from typing import Iterable, List, Optional

from .models import Attempt, AttemptStatus, LeaderboardEntry, QuizProgress, QuizResults

DEFAULT_BASE_XP = 100
DEFAULT_PASS_THRESHOLD = 70.0
SECONDS_PER_QUESTION = 60


def is_answer_correct(selected: Iterable, correct: Iterable) -> bool:
    """
    Check a selection against the correct option ids.

    Both sides are coerced to strings. The selection must contain exactly the
    correct options, no more and no fewer.
    """
    selected_ids = [str(option) for option in selected]
    correct_ids = [str(option) for option in correct]
    return len(selected_ids) == len(correct_ids) and set(selected_ids) == set(correct_ids)


def elapsed_seconds(start_time: Optional[datetime], end_time: Optional[datetime]) -> int:
    """Whole seconds between two timestamps, 0 if either is missing."""
    if start_time is None or end_time is None:
        return 0
    return max(0, int((end_time - start_time).total_seconds()))


def time_bonus(time_spent: int, question_count: int) -> float:
    """Diminishing bonus for fast completion, floored at zero."""
    if question_count <= 0:
        return 0.0
    return max(0.0, 1 - time_spent / (question_count * SECONDS_PER_QUESTION))


def compute_xp(score: float, time_spent: int, question_count: int,
               base_xp: int = DEFAULT_BASE_XP) -> int:
    """
    Compute experience points awarded for a completed attempt.

    Args:
        score: Percentage score (0-100)
        time_spent: Seconds taken to complete the attempt
        question_count: Number of questions in the quiz
        base_xp: XP awarded for a perfect score with no time bonus

    Returns:
        round(base_xp * score/100 * (1 + time_bonus))
    """
    return round(base_xp * (score / 100) * (1 + time_bonus(time_spent, question_count)))


def compute_results(
    attempt: Attempt,
    total_questions: Optional[int] = None,
    base_xp: int = DEFAULT_BASE_XP,
    pass_threshold: float = DEFAULT_PASS_THRESHOLD,
    completed_at: Optional[datetime] = None,
) -> QuizResults:
    """
    Compute the result statistics of an attempt.

    Args:
        attempt: Attempt whose answers are scored
        total_questions: Question count of the quiz, defaults to the answer count
        base_xp: Base XP for the XP formula
        pass_threshold: Minimum score for a "passed" status
        completed_at: Completion time, defaults to the attempt's end time

    Returns:
        QuizResults for the attempt
    """
    if total_questions is None:
        total_questions = len(attempt.answers)

    correct_answers = sum(1 for record in attempt.answers.values() if record.is_correct)
    accuracy = (correct_answers / total_questions) * 100 if total_questions else 0.0

    end_time = completed_at or attempt.end_time
    time_spent = elapsed_seconds(attempt.start_time, end_time) if end_time else attempt.time_spent

    score = accuracy
    return QuizResults(
        attempt_id=attempt.id,
        quiz_id=attempt.quiz_id,
        user_id=attempt.user_id,
        score=score,
        total_questions=total_questions,
        correct_answers=correct_answers,
        accuracy=accuracy,
        time_spent=time_spent,
        average_time_per_question=time_spent / total_questions if total_questions else 0.0,
        xp_gained=compute_xp(score, time_spent, total_questions, base_xp),
        status="passed" if score >= pass_threshold else "failed",
        completed_at=end_time,
    )


def summarize_attempts(attempts: List[Attempt]) -> QuizProgress:
    """
    Summarize a user's attempt history on one quiz.

    Args:
        attempts: Attempts ordered newest first

    Returns:
        QuizProgress with best and average score over completed attempts
    """
    scores = [a.score or 0 for a in attempts if a.status == AttemptStatus.COMPLETED]
    return QuizProgress(
        attempts=list(attempts),
        total_attempts=len(attempts),
        best_score=max([0.0] + scores),
        average_score=sum(scores) / len(scores) if scores else 0.0,
        last_attempt=attempts[0] if attempts else None,
    )


def leaderboard_entry(attempt: Attempt) -> LeaderboardEntry:
    return LeaderboardEntry(
        attempt_id=attempt.id,
        user_id=attempt.user_id,
        score=attempt.score or 0.0,
        start_time=attempt.start_time,
        end_time=attempt.end_time,
        time_spent=elapsed_seconds(attempt.start_time, attempt.end_time),
    )
