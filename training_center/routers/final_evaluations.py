"""Final (end-of-course) evaluations and their drafts (admin only)."""

import logging
from datetime import date as date_type
from typing import Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import Response
from pydantic import BaseModel
from sqlmodel import Session

from training_center.database import get_session
from training_center.deps import get_ai_client, get_draft_registry, require_role
from training_center.engine.registry import DraftRegistry
from training_center.errors import NotFound
from training_center.models import FinalEvaluation, User
from training_center.routers.evaluations import OVERALL_RATINGS, DraftIn
from training_center.schemas import FinalEvaluationIn, FinalRecommendation, OverallRating
from training_center.services import evaluation_service, final_evaluation_service
from training_center.services.final_evaluation_service import FinalEvaluationDraft
from training_center.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()

admin_only = require_role(["admin"])


class FinalDraftPatch(BaseModel):
    scores: Dict[str, int] = {}
    notes: Dict[str, str] = {}
    overall_rating: Optional[OverallRating] = None
    date: Optional[date_type] = None
    course_name: Optional[str] = None
    trainer_name: Optional[str] = None
    training_period_start: Optional[date_type] = None
    training_period_end: Optional[date_type] = None
    trainer_notes: Optional[str] = None
    final_recommendation: Optional[FinalRecommendation] = None


def _final_evaluation_out(evaluation: FinalEvaluation) -> dict:
    return {
        "id": evaluation.id,
        "student_id": evaluation.student_id,
        "student_name": evaluation.student_name,
        "type": evaluation.type,
        "date": evaluation.date.isoformat(),
        "course_name": evaluation.course_name,
        "trainer_name": evaluation.trainer_name,
        "training_period_start": evaluation.training_period_start.isoformat(),
        "training_period_end": evaluation.training_period_end.isoformat(),
        "criteria": evaluation.criteria,
        "trainer_notes": evaluation.trainer_notes,
        "overall_rating": evaluation.overall_rating,
        "final_recommendation": evaluation.final_recommendation,
        "created_at": evaluation.created_at.isoformat(),
        "updated_at": evaluation.updated_at.isoformat(),
    }


def _save(
    session: Session, data: FinalEvaluationIn, evaluation_id: Optional[int] = None
) -> FinalEvaluation:
    try:
        return final_evaluation_service.save_final_evaluation(session, data, evaluation_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/criteria")
def api_final_criteria(current_user: User = Depends(admin_only)):
    return {
        "sections": [s.model_dump() for s in final_evaluation_service.FINAL_CRITERIA_SECTIONS],
        "overall_ratings": OVERALL_RATINGS,
        "final_recommendations": final_evaluation_service.FINAL_RECOMMENDATIONS,
        "default_score": evaluation_service.DEFAULT_SCORE,
        "default_course": final_evaluation_service.DEFAULT_COURSE,
    }


# --- Drafts ---


def _get_draft(drafts: DraftRegistry, draft_id: str) -> FinalEvaluationDraft:
    draft = drafts.get(draft_id)
    if not isinstance(draft, FinalEvaluationDraft):
        raise HTTPException(status_code=404, detail="Draft not found")
    return draft


@router.post("/drafts", status_code=status.HTTP_201_CREATED)
async def api_create_final_draft(
    payload: DraftIn = Body(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
    drafts: DraftRegistry = Depends(get_draft_registry),
    ai_client=Depends(get_ai_client),
):
    """Open a draft for a new final evaluation or for editing an existing one."""
    delay = settings.notes_debounce_ms / 1000
    if payload.evaluation_id is not None:
        evaluation = final_evaluation_service.get_final_evaluation(session, payload.evaluation_id)
        if evaluation is None:
            raise HTTPException(status_code=404, detail="Final evaluation not found")
        draft = FinalEvaluationDraft.from_evaluation(
            evaluation, ai_client.generate_evaluation_notes, delay=delay
        )
    else:
        student = session.get(User, payload.student_id) if payload.student_id else None
        if student is None or student.role != "student":
            raise HTTPException(status_code=404, detail="Student not found")
        draft = FinalEvaluationDraft(student.id, ai_client.generate_evaluation_notes, delay=delay)

    await drafts.sweep()
    draft_id = drafts.add(draft)
    return {"draft_id": draft_id, **draft.view()}


@router.get("/drafts/{draft_id}")
def api_get_final_draft(
    draft_id: str,
    current_user: User = Depends(admin_only),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    return {"draft_id": draft_id, **_get_draft(drafts, draft_id).view()}


@router.patch("/drafts/{draft_id}")
async def api_update_final_draft(
    draft_id: str,
    payload: FinalDraftPatch = Body(...),
    current_user: User = Depends(admin_only),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    draft = _get_draft(drafts, draft_id)
    try:
        scheduled = draft.update(**payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"draft_id": draft_id, "scheduled": scheduled, **draft.view()}


@router.post("/drafts/{draft_id}/suggest")
async def api_suggest_final_notes(
    draft_id: str,
    current_user: User = Depends(admin_only),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    draft = _get_draft(drafts, draft_id)
    applied = await draft.scheduler.flush()
    return {"draft_id": draft_id, "applied": applied, **draft.view()}


@router.post("/drafts/{draft_id}/save")
async def api_save_final_draft(
    draft_id: str,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    draft = _get_draft(drafts, draft_id)
    missing = draft.missing_fields()
    if missing:
        raise HTTPException(status_code=400, detail=f"Required fields are missing: {', '.join(missing)}")
    try:
        data = draft.to_final_evaluation_in()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    evaluation = _save(session, data, draft.evaluation_id)
    await drafts.discard(draft_id)
    return _final_evaluation_out(evaluation)


@router.delete("/drafts/{draft_id}", status_code=status.HTTP_204_NO_CONTENT)
async def api_discard_final_draft(
    draft_id: str,
    current_user: User = Depends(admin_only),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    if isinstance(drafts.get(draft_id), FinalEvaluationDraft):
        await drafts.discard(draft_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Stored final evaluations ---


@router.get("")
def api_list_final_evaluations(
    student_id: int = Query(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    return [
        _final_evaluation_out(e)
        for e in final_evaluation_service.list_final_evaluations_for_student(session, student_id)
    ]


@router.post("", status_code=status.HTTP_201_CREATED)
def api_create_final_evaluation(
    payload: FinalEvaluationIn = Body(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    return _final_evaluation_out(_save(session, payload))


@router.get("/{evaluation_id}")
def api_get_final_evaluation(
    evaluation_id: int,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    evaluation = final_evaluation_service.get_final_evaluation(session, evaluation_id)
    if evaluation is None:
        raise HTTPException(status_code=404, detail="Final evaluation not found")
    return _final_evaluation_out(evaluation)


@router.put("/{evaluation_id}")
def api_update_final_evaluation(
    evaluation_id: int,
    payload: FinalEvaluationIn = Body(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    return _final_evaluation_out(_save(session, payload, evaluation_id))


@router.delete("/{evaluation_id}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_final_evaluation(
    evaluation_id: int,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    try:
        final_evaluation_service.delete_final_evaluation(session, evaluation_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Final evaluation not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
