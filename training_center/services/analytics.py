"""Per-quiz statistics for admins, computed from graded results."""

import math
from typing import Iterable

from pydantic import BaseModel

from training_center.schemas import Quiz, QuizResult


class QuestionStat(BaseModel):
    question_id: str
    question: str
    correct_attempts: int = 0
    total_attempts: int = 0
    correct_percentage: int = 0


class QuizAnalytics(BaseModel):
    quiz_id: int
    title: str
    attempts: int
    average_score: int
    questions: list[QuestionStat]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_analytics(quiz: Quiz, results: Iterable[QuizResult]) -> QuizAnalytics:
    """Average percentage and per-question correctness. Practice results are ignored."""
    graded = [r for r in results if not r.is_practice]

    stats = {q.id: QuestionStat(question_id=q.id, question=q.question) for q in quiz.questions}
    for result in graded:
        for aq in result.answered_questions:
            stat = stats.get(aq.question_id)
            # questions removed from the quiz since the attempt are not reported
            if stat is None:
                continue
            stat.total_attempts += 1
            if aq.is_correct:
                stat.correct_attempts += 1

    for stat in stats.values():
        if stat.total_attempts:
            stat.correct_percentage = _round_half_up(
                stat.correct_attempts / stat.total_attempts * 100
            )

    average = 0
    percentages = [r.score / r.total * 100 for r in graded if r.total > 0]
    if percentages:
        average = _round_half_up(sum(percentages) / len(percentages))

    return QuizAnalytics(
        quiz_id=quiz.id,
        title=quiz.title,
        attempts=len(graded),
        average_score=average,
        questions=list(stats.values()),
    )
