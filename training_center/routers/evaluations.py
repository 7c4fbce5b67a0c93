"""Daily evaluations and AI-assisted notes (admin only)."""

import logging
from datetime import date as date_type
from typing import Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from sqlmodel import Session

from training_center.database import get_session
from training_center.deps import get_ai_client, get_draft_registry, require_role
from training_center.engine.registry import DraftRegistry
from training_center.errors import NotFound, SuggestionFailure
from training_center.models import Evaluation, User
from training_center.schemas import CriterionForNotes, EvaluationIn, OverallRating
from training_center.services import evaluation_service
from training_center.services.evaluation_service import EvaluationDraft
from training_center.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()

admin_only = require_role(["admin"])

OVERALL_RATINGS = ["Excellent", "Very Good", "Good", "Acceptable", "Needs Improvement"]


class GenerateNotesIn(BaseModel):
    criteria: List[CriterionForNotes]


class DraftIn(BaseModel):
    student_id: Optional[int] = None
    evaluation_id: Optional[int] = None


class DraftPatch(BaseModel):
    scores: Dict[str, int] = {}
    notes: Dict[str, str] = {}
    overall_rating: Optional[OverallRating] = None
    training_topic: Optional[str] = None
    date: Optional[date_type] = None


def _evaluation_out(evaluation: Evaluation) -> dict:
    return {
        "id": evaluation.id,
        "student_id": evaluation.student_id,
        "student_name": evaluation.student_name,
        "type": evaluation.type,
        "date": evaluation.date.isoformat(),
        "training_topic": evaluation.training_topic,
        "criteria": evaluation.criteria,
        "overall_rating": evaluation.overall_rating,
        "created_at": evaluation.created_at.isoformat(),
        "updated_at": evaluation.updated_at.isoformat(),
    }


def _save(session: Session, data: EvaluationIn, evaluation_id: Optional[int] = None) -> Evaluation:
    try:
        return evaluation_service.save_evaluation(session, data, evaluation_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/criteria")
def api_criteria(current_user: User = Depends(admin_only)):
    return {
        "sections": [s.model_dump() for s in evaluation_service.CRITERIA_SECTIONS],
        "overall_ratings": OVERALL_RATINGS,
        "default_score": evaluation_service.DEFAULT_SCORE,
    }


@router.post("/generate-notes")
async def api_generate_notes(
    payload: GenerateNotesIn = Body(...),
    current_user: User = Depends(admin_only),
    ai_client=Depends(get_ai_client),
):
    try:
        notes = await ai_client.generate_evaluation_notes(payload.criteria)
    except SuggestionFailure as exc:
        logger.warning("generate-notes failed: %s", exc)
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})
    return {"ok": True, "result": {"notes": [n.model_dump() for n in notes]}}


# --- Drafts ---


def _get_draft(drafts: DraftRegistry, draft_id: str) -> EvaluationDraft:
    draft = drafts.get(draft_id)
    if not isinstance(draft, EvaluationDraft):
        raise HTTPException(status_code=404, detail="Draft not found")
    return draft


@router.post("/drafts", status_code=status.HTTP_201_CREATED)
async def api_create_draft(
    payload: DraftIn = Body(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
    drafts: DraftRegistry = Depends(get_draft_registry),
    ai_client=Depends(get_ai_client),
):
    """Open a draft for a new evaluation or for editing an existing one."""
    delay = settings.notes_debounce_ms / 1000
    if payload.evaluation_id is not None:
        evaluation = evaluation_service.get_evaluation(session, payload.evaluation_id)
        if evaluation is None:
            raise HTTPException(status_code=404, detail="Evaluation not found")
        draft = EvaluationDraft.from_evaluation(
            evaluation, ai_client.generate_evaluation_notes, delay=delay
        )
    else:
        student = session.get(User, payload.student_id) if payload.student_id else None
        if student is None or student.role != "student":
            raise HTTPException(status_code=404, detail="Student not found")
        draft = EvaluationDraft(student.id, ai_client.generate_evaluation_notes, delay=delay)

    await drafts.sweep()
    draft_id = drafts.add(draft)
    return {"draft_id": draft_id, **draft.view()}


@router.get("/drafts/{draft_id}")
def api_get_draft(
    draft_id: str,
    current_user: User = Depends(admin_only),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    return {"draft_id": draft_id, **_get_draft(drafts, draft_id).view()}


@router.patch("/drafts/{draft_id}")
async def api_update_draft(
    draft_id: str,
    payload: DraftPatch = Body(...),
    current_user: User = Depends(admin_only),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    draft = _get_draft(drafts, draft_id)
    try:
        scheduled = draft.update(
            scores=payload.scores,
            notes=payload.notes,
            overall_rating=payload.overall_rating,
            training_topic=payload.training_topic,
            date=payload.date,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"draft_id": draft_id, "scheduled": scheduled, **draft.view()}


@router.post("/drafts/{draft_id}/suggest")
async def api_suggest_notes(
    draft_id: str,
    current_user: User = Depends(admin_only),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    """Ask for AI notes right away instead of waiting for the debounce."""
    draft = _get_draft(drafts, draft_id)
    applied = await draft.scheduler.flush()
    return {"draft_id": draft_id, "applied": applied, **draft.view()}


@router.post("/drafts/{draft_id}/save")
async def api_save_draft(
    draft_id: str,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    draft = _get_draft(drafts, draft_id)
    if not draft.training_topic.strip():
        raise HTTPException(status_code=400, detail="Training topic is required.")
    evaluation = _save(session, draft.to_evaluation_in(), draft.evaluation_id)
    await drafts.discard(draft_id)
    return _evaluation_out(evaluation)


@router.delete("/drafts/{draft_id}", status_code=status.HTTP_204_NO_CONTENT)
async def api_discard_draft(
    draft_id: str,
    current_user: User = Depends(admin_only),
    drafts: DraftRegistry = Depends(get_draft_registry),
):
    if isinstance(drafts.get(draft_id), EvaluationDraft):
        await drafts.discard(draft_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Stored evaluations ---


@router.get("")
def api_list_evaluations(
    student_id: int = Query(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    return [
        _evaluation_out(e)
        for e in evaluation_service.list_evaluations_for_student(session, student_id)
    ]


@router.post("", status_code=status.HTTP_201_CREATED)
def api_create_evaluation(
    payload: EvaluationIn = Body(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    return _evaluation_out(_save(session, payload))


@router.get("/{evaluation_id}")
def api_get_evaluation(
    evaluation_id: int,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    evaluation = evaluation_service.get_evaluation(session, evaluation_id)
    if evaluation is None:
        raise HTTPException(status_code=404, detail="Evaluation not found")
    return _evaluation_out(evaluation)


@router.put("/{evaluation_id}")
def api_update_evaluation(
    evaluation_id: int,
    payload: EvaluationIn = Body(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    return _evaluation_out(_save(session, payload, evaluation_id))


@router.delete("/{evaluation_id}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_evaluation(
    evaluation_id: int,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    try:
        evaluation_service.delete_evaluation(session, evaluation_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Evaluation not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
