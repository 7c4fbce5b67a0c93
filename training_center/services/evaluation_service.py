"""Daily evaluations: criteria catalog, storage and co-authored drafts."""

import logging
from datetime import date as date_type
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel
from sqlmodel import Session, select

from training_center.engine.notes import NoteOwnershipTracker, NoteSuggestionScheduler
from training_center.errors import NotFound
from training_center.models import Evaluation, User
from training_center.schemas import (
    CriterionForNotes,
    CriterionScore,
    EvaluationIn,
    GeneratedNote,
    OverallRating,
)
from training_center.utils import sanitize_note

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 3


class Criterion(BaseModel):
    id: str
    name: str
    description: str = ""


class CriteriaSection(BaseModel):
    id: str
    title: str
    criteria: List[Criterion]


CRITERIA_SECTIONS: List[CriteriaSection] = [
    CriteriaSection(
        id="personalSkills",
        title="المهارات الشخصية",
        criteria=[
            Criterion(id="professionalCommitment", name="الالتزام المهني", description="الالتزام الكامل بالمواعيد والتعليمات والمعايير التنظيمية"),
            Criterion(id="behavioralMaturity", name="النضج السلوكي", description="إظهار سلوك مهني، وتقبل الملاحظات، والتعامل الإيجابي مع المواقف"),
            Criterion(id="communicationSkills", name="مهارات التواصل", description="القدرة على التعبير بوضوح وفعالية، شفهيًا وكتابيًا"),
            Criterion(id="initiativeAndResponsibility", name="المبادرة والمسؤولية", description="التفاعل الاستباقي وتحمل مسؤولية التعلم الذاتي"),
        ],
    ),
    CriteriaSection(
        id="classroomSkills",
        title="المهارات الصفية",
        criteria=[
            Criterion(id="participationQuality", name="جودة المشاركة", description="المساهمة الفاعلة في الحوارات التقنية والتحليل الجماعي"),
            Criterion(id="dialogueManagement", name="إدارة الحوار", description="استخدام مهارات التفكير النقدي أثناء المناقشة"),
            Criterion(id="teamwork", name="التعاون ضمن الفريق", description="التفاعل بإيجابية ضمن أنشطة الفرق وأداء المهام المشتركة"),
            Criterion(id="cyberRulesCommitment", name="الالتزام بقواعد الصف السيبراني", description="احترام قواعد الخصوصية والضبط الإلكتروني أثناء الأنشطة"),
        ],
    ),
    CriteriaSection(
        id="technicalSkills",
        title="المهارات التقنية",
        criteria=[
            Criterion(id="contentComprehension", name="استيعاب محتوى الدرس", description="فهم المعلومات التي تم شرحها خلال المحاضرة"),
            Criterion(id="focusAndAttention", name="التركيز والانتباه", description="متابعة الشرح والمشاركة في النقاشات"),
            Criterion(id="activityParticipation", name="المشاركة في الأنشطة", description="التفاعل مع الأسئلة أو التمارين أثناء المحاضرة"),
            Criterion(id="askingQuestions", name="طرح الأسئلة", description="إبداء الاهتمام وطرح أسئلة تدل على الفهم"),
            Criterion(id="summarizationAbility", name="القدرة على التلخيص", description="التعبير عن الفهم من خلال تلخيص النقاط الأساسية"),
            Criterion(id="deviceUsage", name="استخدام الجهاز", description="استخدام الحاسوب أو المنصة الإلكترونية بشكل جيد أثناء التدريب"),
        ],
    ),
]

# "personalSkills.teamwork" -> criterion
CRITERIA_BY_ID: Dict[str, Criterion] = {
    f"{section.id}.{c.id}": c for section in CRITERIA_SECTIONS for c in section.criteria
}


def normalize_criteria(
    criteria: Mapping[str, CriterionScore], catalog: Mapping[str, Criterion] = CRITERIA_BY_ID
) -> Dict[str, CriterionScore]:
    """Fill missing criteria with the default score and clean up notes.

    Raises:
        ValueError: If an unknown criterion id is given
    """
    unknown = sorted(set(criteria) - set(catalog))
    if unknown:
        raise ValueError(f"Unknown criteria: {', '.join(unknown)}")
    out = {}
    for cid in catalog:
        value = criteria.get(cid) or CriterionScore()
        out[cid] = CriterionScore(score=value.score, notes=sanitize_note(value.notes))
    return out


def criteria_for_notes(
    criteria: Mapping[str, CriterionScore], catalog: Mapping[str, Criterion] = CRITERIA_BY_ID
) -> List[CriterionForNotes]:
    return [
        CriterionForNotes(id=cid, name=c.name, score=criteria[cid].score if cid in criteria else DEFAULT_SCORE)
        for cid, c in catalog.items()
    ]


# --- Storage ---


def require_student(session: Session, student_id: int) -> User:
    """Raises NotFound unless ``student_id`` names a student account."""
    student = session.get(User, student_id)
    if student is None or student.role != "student":
        raise NotFound(f"Student with id={student_id} does not exist")
    return student


def save_evaluation(
    session: Session, data: EvaluationIn, evaluation_id: Optional[int] = None
) -> Evaluation:
    """Create an evaluation, or replace the one with ``evaluation_id``.

    Raises:
        NotFound: If the student or the evaluation doesn't exist
        ValueError: If the criteria contain unknown ids
    """
    student = require_student(session, data.student_id)

    criteria = normalize_criteria(data.criteria)

    if evaluation_id is not None:
        evaluation = session.get(Evaluation, evaluation_id)
        if evaluation is None:
            raise NotFound(f"Evaluation with id={evaluation_id} does not exist")
    else:
        evaluation = Evaluation(
            student_id=student.id,
            student_name=student.name,
            date=data.date,
            training_topic=data.training_topic,
        )

    evaluation.student_id = student.id
    evaluation.student_name = student.name
    evaluation.date = data.date
    evaluation.training_topic = data.training_topic.strip()
    evaluation.criteria = {cid: c.model_dump() for cid, c in criteria.items()}
    evaluation.overall_rating = data.overall_rating
    evaluation.updated_at = datetime.utcnow()

    session.add(evaluation)
    session.commit()
    session.refresh(evaluation)
    return evaluation


def get_evaluation(session: Session, evaluation_id: int) -> Optional[Evaluation]:
    return session.get(Evaluation, evaluation_id)


def list_evaluations_for_student(session: Session, student_id: int) -> List[Evaluation]:
    """Evaluations of one student, newest first."""
    stmt = (
        select(Evaluation)
        .where(Evaluation.student_id == student_id)
        .order_by(Evaluation.date.desc(), Evaluation.created_at.desc())
    )
    return session.exec(stmt).all()


def delete_evaluation(session: Session, evaluation_id: int) -> None:
    evaluation = session.get(Evaluation, evaluation_id)
    if evaluation is None:
        raise NotFound(f"Evaluation with id={evaluation_id} does not exist")
    session.delete(evaluation)
    session.commit()


# --- Drafts ---

RequestNotes = Callable[[Sequence[CriterionForNotes]], Awaitable[Sequence[GeneratedNote]]]


class CriteriaDraft:
    """Scores and notes over a criteria catalog, with AI notes suggested as scores change.

    Creating a draft never asks for suggestions; changing a score or the
    overall rating schedules a debounced request. Subclasses set ``catalog``
    and add the fields of the form they back.
    """

    catalog: Mapping[str, Criterion] = CRITERIA_BY_ID

    def __init__(
        self,
        request_notes: RequestNotes,
        *,
        overall_rating: OverallRating = "Good",
        criteria: Optional[Mapping[str, CriterionScore]] = None,
        delay: float = 0.5,
    ):
        self.overall_rating = overall_rating

        criteria = criteria or {}
        self.scores: Dict[str, int] = {}
        self.tracker = NoteOwnershipTracker(self.catalog)
        for cid in self.catalog:
            existing = criteria.get(cid)
            self.scores[cid] = existing.score if existing else DEFAULT_SCORE
            self.tracker.load(cid, existing.notes if existing else "")

        self.scheduler = NoteSuggestionScheduler(
            self.tracker,
            request_notes,
            lambda: criteria_for_notes(self.criteria(), self.catalog),
            delay=delay,
        )

    @classmethod
    def _known_criteria(cls, stored: Optional[Mapping[str, Any]]) -> Dict[str, CriterionScore]:
        return {
            cid: CriterionScore.model_validate(value)
            for cid, value in (stored or {}).items()
            if cid in cls.catalog
        }

    def criteria(self) -> Dict[str, CriterionScore]:
        texts = self.tracker.texts()
        return {
            cid: CriterionScore(score=self.scores[cid], notes=texts.get(cid, ""))
            for cid in self.catalog
        }

    def _apply(
        self,
        scores: Optional[Mapping[str, int]],
        notes: Optional[Mapping[str, str]],
        overall_rating: Optional[OverallRating],
    ) -> bool:
        """Check the whole change, then apply it. Returns True if a score or the rating moved.

        Raises:
            ValueError: If an unknown criterion id or an out of range score is given;
                nothing is changed in that case
        """
        for cid in list(scores or {}) + list(notes or {}):
            if cid not in self.catalog:
                raise ValueError(f"Unknown criterion: {cid}")
        new_scores = {}
        for cid, value in (scores or {}).items():
            value = int(value)
            if not 1 <= value <= 5:
                raise ValueError(f"Score for {cid} must be between 1 and 5")
            new_scores[cid] = value

        changed = False
        for cid, value in new_scores.items():
            if self.scores[cid] != value:
                self.scores[cid] = value
                changed = True
        if overall_rating is not None and overall_rating != self.overall_rating:
            self.overall_rating = overall_rating
            changed = True
        for cid, text in (notes or {}).items():
            self.tracker.on_user_edit(cid, text)
        return changed

    def _criteria_view(self) -> dict:
        return {
            "overall_rating": self.overall_rating,
            "criteria": {cid: c.model_dump() for cid, c in self.criteria().items()},
            "owners": self.tracker.owners(),
            "is_generating": self.scheduler.is_generating,
            "last_error": self.scheduler.last_error,
        }

    async def aclose(self) -> None:
        await self.scheduler.aclose()


class EvaluationDraft(CriteriaDraft):
    """A daily evaluation being filled in."""

    catalog = CRITERIA_BY_ID

    def __init__(
        self,
        student_id: int,
        request_notes: RequestNotes,
        *,
        evaluation_id: Optional[int] = None,
        date: Optional[date_type] = None,
        training_topic: str = "",
        overall_rating: OverallRating = "Good",
        criteria: Optional[Mapping[str, CriterionScore]] = None,
        delay: float = 0.5,
    ):
        super().__init__(request_notes, overall_rating=overall_rating, criteria=criteria, delay=delay)
        self.student_id = student_id
        self.evaluation_id = evaluation_id
        self.date = date or date_type.today()
        self.training_topic = training_topic

    @classmethod
    def from_evaluation(cls, evaluation: Evaluation, request_notes: RequestNotes, *, delay: float = 0.5):
        return cls(
            evaluation.student_id,
            request_notes,
            evaluation_id=evaluation.id,
            date=evaluation.date,
            training_topic=evaluation.training_topic,
            overall_rating=evaluation.overall_rating,
            criteria=cls._known_criteria(evaluation.criteria),
            delay=delay,
        )

    def update(
        self,
        *,
        scores: Optional[Mapping[str, int]] = None,
        notes: Optional[Mapping[str, str]] = None,
        overall_rating: Optional[OverallRating] = None,
        training_topic: Optional[str] = None,
        date: Optional[date_type] = None,
    ) -> bool:
        """Apply a form change. Returns True if new AI notes were scheduled.

        Raises:
            ValueError: If an unknown criterion id or an out of range score is given
        """
        changed = self._apply(scores, notes, overall_rating)
        if training_topic is not None:
            self.training_topic = training_topic
        if date is not None:
            self.date = date

        if changed:
            self.scheduler.schedule()
        return changed

    def to_evaluation_in(self) -> EvaluationIn:
        return EvaluationIn(
            student_id=self.student_id,
            date=self.date,
            training_topic=self.training_topic,
            criteria=self.criteria(),
            overall_rating=self.overall_rating,
        )

    def view(self) -> dict:
        return {
            "student_id": self.student_id,
            "evaluation_id": self.evaluation_id,
            "date": self.date.isoformat(),
            "training_topic": self.training_topic,
            **self._criteria_view(),
        }


async def close_draft(draft: CriteriaDraft) -> None:
    await draft.aclose()
