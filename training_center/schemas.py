"""Pydantic models shared by the quiz engine, the services and the API.

Questions are a tagged variant keyed by ``type`` so that the answer key has a
single, known shape per question type: a string for ``multiple-choice`` and
``short-answer``, a set of strings for ``checkbox``.
"""

from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

QuestionTypeName = Literal["multiple-choice", "checkbox", "short-answer"]

# A user answer: one string for single-answer types, a set for checkbox questions.
Answer = Union[str, frozenset[str]]

QuizStatus = Literal["Draft", "Published", "Archived"]

QUIZ_TITLE_MAX_LENGTH = 200
QUESTION_TEXT_MAX_LENGTH = 5000
OPTION_MAX_LENGTH = 1000


class _QuestionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    question: str
    options: tuple[str, ...] = ()
    image_url: Optional[str] = None


class MultipleChoiceQuestion(_QuestionBase):
    type: Literal["multiple-choice"] = "multiple-choice"
    answer: str


class CheckboxQuestion(_QuestionBase):
    type: Literal["checkbox"] = "checkbox"
    answer: frozenset[str]

    @field_serializer("answer")
    def _serialize_answer(self, value: frozenset[str]) -> list[str]:
        return sorted(value)


class ShortAnswerQuestion(_QuestionBase):
    type: Literal["short-answer"] = "short-answer"
    answer: str


Question = Annotated[
    Union[MultipleChoiceQuestion, CheckboxQuestion, ShortAnswerQuestion],
    Field(discriminator="type"),
]


class Quiz(BaseModel):
    """A quiz as the quiz runner sees it."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: Optional[str] = None
    questions: tuple[Question, ...] = ()
    time_limit: Optional[int] = None  # minutes
    shuffle_questions: bool = False
    shuffle_answers: bool = False
    status: QuizStatus = "Published"

    @property
    def limit_seconds(self) -> Optional[int]:
        return self.time_limit * 60 if self.time_limit else None

    def question_by_id(self, question_id: str):
        for q in self.questions:
            if q.id == question_id:
                return q
        return None


class AnsweredQuestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: str
    question: str
    user_answer: Optional[Answer] = None
    correct_answer: Answer
    is_correct: bool

    @field_serializer("user_answer", "correct_answer")
    def _serialize_answer(self, value):
        if isinstance(value, frozenset):
            return sorted(value)
        return value


class QuizResult(BaseModel):
    """Outcome of one attempt. Results are append-only per student per quiz."""

    model_config = ConfigDict(frozen=True)

    date: Optional[datetime] = None
    score: int
    total: int
    answered_questions: tuple[AnsweredQuestion, ...] = ()
    is_practice: bool = False

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(self.score / self.total * 100, 2)


# ---------------------------------------------------------------------------
# Quiz authoring
# ---------------------------------------------------------------------------


class QuizIn(BaseModel):
    """Payload used by admins to create or replace a quiz."""

    title: str = Field(min_length=1, max_length=QUIZ_TITLE_MAX_LENGTH)
    description: Optional[str] = None
    questions: list[Question] = Field(default_factory=list)
    time_limit: Optional[int] = Field(default=None, ge=1)
    shuffle_questions: bool = False
    shuffle_answers: bool = False
    status: QuizStatus = "Published"

    @model_validator(mode="after")
    def _check_questions(self) -> "QuizIn":
        seen: set[str] = set()
        for q in self.questions:
            if q.id in seen:
                raise ValueError(f"Duplicate question id: {q.id}")
            seen.add(q.id)
            if not q.question.strip():
                raise ValueError(f"Question {q.id}: question text is required.")
            if len(q.question) > QUESTION_TEXT_MAX_LENGTH:
                raise ValueError(
                    f"Question {q.id}: text must be at most {QUESTION_TEXT_MAX_LENGTH} characters."
                )
            if any(len(o) > OPTION_MAX_LENGTH for o in q.options):
                raise ValueError(
                    f"Question {q.id}: options must be at most {OPTION_MAX_LENGTH} characters."
                )
            if q.type == "short-answer":
                if not q.answer.strip():
                    raise ValueError(f"Question {q.id}: an expected answer is required.")
                continue
            if len(q.options) < 2:
                raise ValueError(f"Question {q.id}: at least two options are required.")
            if len({o.strip().lower() for o in q.options}) != len(q.options):
                raise ValueError(f"Question {q.id}: all options must be unique.")
            if q.type == "multiple-choice" and q.answer not in q.options:
                raise ValueError(f"Question {q.id}: the answer must be one of the options.")
            if q.type == "checkbox":
                if not q.answer:
                    raise ValueError(f"Question {q.id}: select at least one correct option.")
                if not q.answer <= set(q.options):
                    raise ValueError(f"Question {q.id}: answers must be taken from the options.")
        return self


# ---------------------------------------------------------------------------
# Evaluations
# ---------------------------------------------------------------------------

OverallRating = Literal["Excellent", "Very Good", "Good", "Acceptable", "Needs Improvement"]


class CriterionScore(BaseModel):
    score: int = Field(default=3, ge=1, le=5)
    notes: str = ""


class EvaluationIn(BaseModel):
    student_id: int
    date: date_type
    training_topic: str = Field(min_length=1)
    criteria: dict[str, CriterionScore]
    overall_rating: OverallRating = "Good"


FinalRecommendation = Literal[
    "Ready for Security+ exam", "Needs review before exam", "Re-study recommended"
]


class FinalEvaluationIn(BaseModel):
    student_id: int
    date: date_type
    course_name: str = Field(default="Cybersecurity+", min_length=1)
    trainer_name: str = Field(min_length=1)
    training_period_start: date_type
    training_period_end: date_type
    criteria: dict[str, CriterionScore]
    trainer_notes: str = ""
    overall_rating: OverallRating = "Good"
    final_recommendation: FinalRecommendation = "Needs review before exam"

    @model_validator(mode="after")
    def _check_period(self):
        if self.training_period_end < self.training_period_start:
            raise ValueError("Training period cannot end before it starts.")
        return self


class CriterionForNotes(BaseModel):
    id: str
    name: str
    score: int = Field(ge=1, le=5)


class GeneratedNote(BaseModel):
    id: str
    note: str
