"""SQLModel models for the Training Center.

Quizzes, sessions and evaluations are document shaped; their nested parts
(questions, answers, criteria) are kept in JSON columns.
"""

from datetime import date as date_type
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """Application user that can log in with a role (admin / student)."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    password_hash: str
    role: str = Field(default="student")  # "admin", "student"
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Quiz(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    questions: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    time_limit: Optional[int] = None  # minutes
    shuffle_questions: bool = Field(default=False)
    shuffle_answers: bool = Field(default=False)
    status: str = Field(default="Published")  # Draft | Published | Archived
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class QuizSessionRecord(SQLModel, table=True):
    """Persisted progress of a graded attempt, one row per quiz and user."""

    __table_args__ = (UniqueConstraint("quiz_id", "user_id", name="uq_session_quiz_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id")
    user_id: int = Field(foreign_key="user.id")
    started_at: datetime
    order: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    option_order: dict[str, list[str]] = Field(default_factory=dict, sa_column=Column(JSON))
    # checkbox answers are stored as sorted lists
    answers: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    current_index: int = Field(default=0)
    last_saved_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None


class QuizResultRecord(SQLModel, table=True):
    """A scored attempt. Rows are only ever inserted."""

    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id")
    user_id: int = Field(foreign_key="user.id")
    date: datetime
    score: int
    total: int
    answered_questions: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON)
    )
    is_practice: bool = Field(default=False)


class Evaluation(SQLModel, table=True):
    """Daily evaluation of a student across the fixed criteria catalog."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="user.id")
    student_name: str
    type: str = Field(default="daily")
    date: date_type
    training_topic: str
    # {"personalSkills.teamwork": {"score": 4, "notes": "..."}, ...}
    criteria: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    overall_rating: str = Field(default="Good")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class FinalEvaluation(SQLModel, table=True):
    """End-of-course evaluation with a recommendation for the certification exam."""

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="user.id")
    student_name: str
    type: str = Field(default="final")
    date: date_type
    course_name: str = Field(default="Cybersecurity+")
    trainer_name: str
    training_period_start: date_type
    training_period_end: date_type
    # {"technicalSkills.forensics": {"score": 4, "notes": "..."}, ...}
    criteria: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    trainer_notes: str = Field(default="")
    overall_rating: str = Field(default="Good")
    final_recommendation: str = Field(default="Needs review before exam")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
