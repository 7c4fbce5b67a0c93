"""Final (end-of-course) evaluations: their own criteria catalog, storage and drafts."""

import logging
from datetime import date as date_type
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from sqlmodel import Session, select

from training_center.errors import NotFound
from training_center.models import FinalEvaluation
from training_center.schemas import (
    CriterionScore,
    FinalEvaluationIn,
    FinalRecommendation,
    OverallRating,
)
from training_center.services.evaluation_service import (
    CriteriaDraft,
    CriteriaSection,
    Criterion,
    RequestNotes,
    normalize_criteria,
    require_student,
)
from training_center.utils import sanitize_note

logger = logging.getLogger(__name__)

DEFAULT_COURSE = "Cybersecurity+"
FINAL_RECOMMENDATIONS = ["Ready for Security+ exam", "Needs review before exam", "Re-study recommended"]

FINAL_CRITERIA_SECTIONS: List[CriteriaSection] = [
    CriteriaSection(
        id="technicalSkills",
        title="المهارات التقنية",
        criteria=[
            Criterion(id="cybersecurityPrinciples", name="فهم مبادئ الأمن السيبراني"),
            Criterion(id="threatTypes", name="التعرف على أنواع التهديدات السيبرانية"),
            Criterion(id="protectionTools", name="التعامل مع أدوات الحماية"),
            Criterion(id="vulnerabilityAnalysis", name="تحليل الثغرات وتقييم المخاطر"),
            Criterion(id="incidentResponse", name="استجابة الحوادث وإجراءات الطوارئ"),
            Criterion(id="networkProtocols", name="فهم الشبكات والبروتوكولات الآمنة"),
            Criterion(id="policyImplementation", name="تطبيق السياسات الأمنية داخل النظام"),
            Criterion(id="forensics", name="استخدام أدوات التحقيق والتحليل الجنائي الرقمي"),
        ],
    ),
    CriteriaSection(
        id="analyticalSkills",
        title="المهارات التحليلية",
        criteria=[
            Criterion(id="analyticalThinking", name="التفكير التحليلي"),
            Criterion(id="problemSolving", name="حل المشكلات بطريقة منطقية"),
            Criterion(id="attentionToDetail", name="دقة الملاحظة والانتباه للتفاصيل"),
            Criterion(id="decisionMaking", name="اتخاذ القرار في مواقف أمنية افتراضية"),
        ],
    ),
    CriteriaSection(
        id="behavioralSkills",
        title="المهارات السلوكية",
        criteria=[
            Criterion(id="discipline", name="الانضباط والالتزام بالحضور"),
            Criterion(id="respectForRules", name="احترام القواعد وسلوكيات التدريب"),
            Criterion(id="interaction", name="التفاعل مع المدرب والزملاء"),
            Criterion(id="teamwork", name="العمل الجماعي وتحمل المسؤولية"),
        ],
    ),
    CriteriaSection(
        id="communicationSkills",
        title="مهارات التواصل",
        criteria=[
            Criterion(id="speakingAndExplanation", name="مهارات التحدث والشرح أثناء التمارين"),
            Criterion(id="clarity", name="توصيل المعلومة بوضوح"),
        ],
    ),
]

FINAL_CRITERIA_BY_ID: Dict[str, Criterion] = {
    f"{section.id}.{c.id}": c for section in FINAL_CRITERIA_SECTIONS for c in section.criteria
}


# --- Storage ---


def save_final_evaluation(
    session: Session, data: FinalEvaluationIn, evaluation_id: Optional[int] = None
) -> FinalEvaluation:
    """Create a final evaluation, or replace the one with ``evaluation_id``.

    Raises:
        NotFound: If the student or the evaluation doesn't exist
        ValueError: If the criteria contain unknown ids
    """
    student = require_student(session, data.student_id)
    criteria = normalize_criteria(data.criteria, FINAL_CRITERIA_BY_ID)

    if evaluation_id is not None:
        evaluation = session.get(FinalEvaluation, evaluation_id)
        if evaluation is None:
            raise NotFound(f"Final evaluation with id={evaluation_id} does not exist")
    else:
        evaluation = FinalEvaluation(
            student_id=student.id,
            student_name=student.name,
            date=data.date,
            trainer_name=data.trainer_name,
            training_period_start=data.training_period_start,
            training_period_end=data.training_period_end,
        )

    evaluation.student_id = student.id
    evaluation.student_name = student.name
    evaluation.date = data.date
    evaluation.course_name = data.course_name.strip()
    evaluation.trainer_name = data.trainer_name.strip()
    evaluation.training_period_start = data.training_period_start
    evaluation.training_period_end = data.training_period_end
    evaluation.criteria = {cid: c.model_dump() for cid, c in criteria.items()}
    evaluation.trainer_notes = sanitize_note(data.trainer_notes)
    evaluation.overall_rating = data.overall_rating
    evaluation.final_recommendation = data.final_recommendation
    evaluation.updated_at = datetime.utcnow()

    session.add(evaluation)
    session.commit()
    session.refresh(evaluation)
    logger.info("Final evaluation %s saved for student %s", evaluation.id, student.id)
    return evaluation


def get_final_evaluation(session: Session, evaluation_id: int) -> Optional[FinalEvaluation]:
    return session.get(FinalEvaluation, evaluation_id)


def list_final_evaluations_for_student(session: Session, student_id: int) -> List[FinalEvaluation]:
    """Final evaluations of one student, newest first."""
    stmt = (
        select(FinalEvaluation)
        .where(FinalEvaluation.student_id == student_id)
        .order_by(FinalEvaluation.date.desc(), FinalEvaluation.created_at.desc())
    )
    return session.exec(stmt).all()


def delete_final_evaluation(session: Session, evaluation_id: int) -> None:
    evaluation = session.get(FinalEvaluation, evaluation_id)
    if evaluation is None:
        raise NotFound(f"Final evaluation with id={evaluation_id} does not exist")
    session.delete(evaluation)
    session.commit()


# --- Drafts ---


class FinalEvaluationDraft(CriteriaDraft):
    """A final evaluation being filled in. Notes are co-authored like daily ones."""

    catalog = FINAL_CRITERIA_BY_ID

    def __init__(
        self,
        student_id: int,
        request_notes: RequestNotes,
        *,
        evaluation_id: Optional[int] = None,
        date: Optional[date_type] = None,
        course_name: str = DEFAULT_COURSE,
        trainer_name: str = "",
        training_period_start: Optional[date_type] = None,
        training_period_end: Optional[date_type] = None,
        trainer_notes: str = "",
        overall_rating: OverallRating = "Good",
        final_recommendation: FinalRecommendation = "Needs review before exam",
        criteria: Optional[Mapping[str, CriterionScore]] = None,
        delay: float = 0.5,
    ):
        super().__init__(request_notes, overall_rating=overall_rating, criteria=criteria, delay=delay)
        self.student_id = student_id
        self.evaluation_id = evaluation_id
        self.date = date or date_type.today()
        self.course_name = course_name
        self.trainer_name = trainer_name
        self.training_period_start = training_period_start
        self.training_period_end = training_period_end
        self.trainer_notes = trainer_notes
        self.final_recommendation = final_recommendation

    @classmethod
    def from_evaluation(
        cls, evaluation: FinalEvaluation, request_notes: RequestNotes, *, delay: float = 0.5
    ):
        return cls(
            evaluation.student_id,
            request_notes,
            evaluation_id=evaluation.id,
            date=evaluation.date,
            course_name=evaluation.course_name,
            trainer_name=evaluation.trainer_name,
            training_period_start=evaluation.training_period_start,
            training_period_end=evaluation.training_period_end,
            trainer_notes=evaluation.trainer_notes,
            overall_rating=evaluation.overall_rating,
            final_recommendation=evaluation.final_recommendation,
            criteria=cls._known_criteria(evaluation.criteria),
            delay=delay,
        )

    def update(
        self,
        *,
        scores: Optional[Mapping[str, int]] = None,
        notes: Optional[Mapping[str, str]] = None,
        overall_rating: Optional[OverallRating] = None,
        date: Optional[date_type] = None,
        course_name: Optional[str] = None,
        trainer_name: Optional[str] = None,
        training_period_start: Optional[date_type] = None,
        training_period_end: Optional[date_type] = None,
        trainer_notes: Optional[str] = None,
        final_recommendation: Optional[FinalRecommendation] = None,
    ) -> bool:
        """Apply a form change. Returns True if new AI notes were scheduled.

        Raises:
            ValueError: If an unknown criterion id or an out of range score is given
        """
        changed = self._apply(scores, notes, overall_rating)
        fields = {
            "date": date,
            "course_name": course_name,
            "trainer_name": trainer_name,
            "training_period_start": training_period_start,
            "training_period_end": training_period_end,
            "trainer_notes": trainer_notes,
            "final_recommendation": final_recommendation,
        }
        for name, value in fields.items():
            if value is not None:
                setattr(self, name, value)

        if changed:
            self.scheduler.schedule()
        return changed

    def missing_fields(self) -> List[str]:
        """Form fields that must be filled before the draft can be saved."""
        missing = []
        if not self.trainer_name.strip():
            missing.append("trainer_name")
        if self.training_period_start is None:
            missing.append("training_period_start")
        if self.training_period_end is None:
            missing.append("training_period_end")
        return missing

    def to_final_evaluation_in(self) -> FinalEvaluationIn:
        return FinalEvaluationIn(
            student_id=self.student_id,
            date=self.date,
            course_name=self.course_name,
            trainer_name=self.trainer_name,
            training_period_start=self.training_period_start,
            training_period_end=self.training_period_end,
            criteria=self.criteria(),
            trainer_notes=self.trainer_notes,
            overall_rating=self.overall_rating,
            final_recommendation=self.final_recommendation,
        )

    def view(self) -> dict:
        start, end = self.training_period_start, self.training_period_end
        return {
            "student_id": self.student_id,
            "evaluation_id": self.evaluation_id,
            "date": self.date.isoformat(),
            "course_name": self.course_name,
            "trainer_name": self.trainer_name,
            "training_period_start": start.isoformat() if start else None,
            "training_period_end": end.isoformat() if end else None,
            "trainer_notes": self.trainer_notes,
            "final_recommendation": self.final_recommendation,
            **self._criteria_view(),
        }
