"""Scoring of a finished attempt against the quiz answer key."""

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from training_center.schemas import (
    AnsweredQuestion,
    CheckboxQuestion,
    MultipleChoiceQuestion,
    QuizResult,
    ShortAnswerQuestion,
)


class ScoringPolicy(BaseModel):
    """Comparison rules that are configurable rather than hard-coded.

    Multiple-choice answers are picked from the options, so they are compared
    exactly (after trimming). Short answers are typed by the student and are
    compared case-insensitively unless ``short_answer_case_sensitive`` is set.
    """

    model_config = ConfigDict(frozen=True)

    short_answer_case_sensitive: bool = False


DEFAULT_POLICY = ScoringPolicy()


def _norm(text: str, case_sensitive: bool = True) -> str:
    text = text.strip()
    return text if case_sensitive else text.casefold()


def is_correct(question, answer, policy: ScoringPolicy = DEFAULT_POLICY) -> bool:
    if answer is None:
        return False

    if isinstance(question, CheckboxQuestion):
        if isinstance(answer, str):
            return False
        return frozenset(_norm(a) for a in answer) == frozenset(
            _norm(a) for a in question.answer
        )

    if not isinstance(answer, str):
        return False

    if isinstance(question, ShortAnswerQuestion):
        case_sensitive = policy.short_answer_case_sensitive
        given = _norm(answer, case_sensitive)
        return given != "" and given == _norm(question.answer, case_sensitive)

    if isinstance(question, MultipleChoiceQuestion):
        given = _norm(answer)
        return given != "" and given == _norm(question.answer)

    raise TypeError(f"Unknown question type: {type(question).__name__}")


def score(
    questions: Sequence,
    answers: Mapping[str, object],
    *,
    policy: ScoringPolicy = DEFAULT_POLICY,
    is_practice: bool = False,
    date: Optional[datetime] = None,
) -> QuizResult:
    """Score ``answers`` (question id -> answer) against ``questions``.

    Unanswered questions count as incorrect. The function has no side
    effects; the same inputs always produce the same result.
    """
    answered = []
    correct_count = 0
    for question in questions:
        user_answer = answers.get(question.id)
        correct = is_correct(question, user_answer, policy)
        if correct:
            correct_count += 1
        answered.append(
            AnsweredQuestion(
                question_id=question.id,
                question=question.question,
                user_answer=user_answer,
                correct_answer=question.answer,
                is_correct=correct,
            )
        )

    return QuizResult(
        date=date,
        score=correct_count,
        total=len(questions),
        answered_questions=tuple(answered),
        is_practice=is_practice,
    )
