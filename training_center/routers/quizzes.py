"""Quiz authoring, quiz taking and results.

Attempts are driven by a ``QuizRunner`` kept in the app-scoped registry, so
the countdown keeps running between requests and expiry submits on its own.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ValidationError
from sqlmodel import Session

from training_center.database import get_session
from training_center.deps import (
    get_ai_client,
    get_quiz_gateway,
    get_runner_registry,
    require_login,
    require_role,
)
from training_center.engine.registry import RunnerRegistry
from training_center.engine.runner import (
    AttemptMode,
    QuizRunner,
    RunnerState,
    allow_reattempt,
    block_reattempt,
)
from training_center.engine.scoring import ScoringPolicy
from training_center.errors import AttemptNotAllowed, NotFound, PersistenceFailure, SessionClosed, SuggestionFailure
from training_center.models import Quiz as QuizRow
from training_center.models import User
from training_center.schemas import QuizIn
from training_center.services import quiz_service
from training_center.services.analytics import compute_analytics
from training_center.services.paste_parser import parse_pasted_question
from training_center.settings import settings
from training_center.utils import sanitize_text, validate_generation_inputs

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

admin_only = require_role(["admin"])


# --- Request/Response schemas ---


class AnswerIn(BaseModel):
    value: Union[str, List[str]]


class ToggleIn(BaseModel):
    option: str


class PositionIn(BaseModel):
    index: int


class PasteIn(BaseModel):
    text: str


def _quiz_summary(row: QuizRow) -> dict:
    return {
        "id": row.id,
        "title": row.title,
        "description": row.description,
        "question_count": len(row.questions or []),
        "time_limit": row.time_limit,
        "status": row.status,
    }


def _quiz_full(row: QuizRow) -> dict:
    return {
        **_quiz_summary(row),
        "questions": row.questions or [],
        "shuffle_questions": row.shuffle_questions,
        "shuffle_answers": row.shuffle_answers,
        "created_at": row.created_at.isoformat(),
        "updated_at": row.updated_at.isoformat(),
    }


def _quiz_for_student(row: QuizRow) -> dict:
    questions = [
        {
            "id": q.get("id"),
            "question": q.get("question"),
            "type": q.get("type"),
            "options": q.get("options") or [],
            "image_url": q.get("image_url"),
        }
        for q in row.questions or []
    ]
    return {**_quiz_summary(row), "questions": questions}


def _get_quiz_row(session: Session, quiz_id: int, user: User) -> QuizRow:
    row = quiz_service.get_quiz_row(session, quiz_id)
    # students only ever see published quizzes
    if row is None or (user.role != "admin" and row.status != "Published"):
        raise HTTPException(status_code=404, detail="Quiz not found")
    return row


def _clean_quiz_in(payload: QuizIn) -> QuizIn:
    return payload.model_copy(update={"description": sanitize_text(payload.description)})


# --- Authoring (admin) ---


@router.get("")
def api_list_quizzes(
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    if current_user.role == "admin":
        return [_quiz_summary(row) for row in quiz_service.list_quizzes(session)]
    rows = quiz_service.list_quizzes(session, include_unpublished=False)
    return [
        {
            **_quiz_summary(row),
            "user_status": quiz_service.quiz_status_for_user(session, row.id, current_user.id),
        }
        for row in rows
    ]


@router.post("", status_code=status.HTTP_201_CREATED)
def api_create_quiz(
    payload: QuizIn = Body(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    row = quiz_service.create_quiz(session, _clean_quiz_in(payload))
    logger.info("Quiz %s created by %s", row.id, current_user.email)
    return _quiz_full(row)


@router.post("/parse-question")
def api_parse_question(payload: PasteIn = Body(...), current_user: User = Depends(admin_only)):
    parsed = parse_pasted_question(payload.text)
    if parsed is None:
        raise HTTPException(status_code=400, detail="No question or options found in the pasted text.")
    return parsed.model_dump()


@router.post("/generate")
async def api_generate_quiz(
    topic: str = Form(""),
    num_questions: str = Form(""),
    pdf_file: Optional[UploadFile] = File(None),
    current_user: User = Depends(admin_only),
    ai_client=Depends(get_ai_client),
):
    """Draft a quiz from a PDF with the AI model. The draft is returned, not saved."""
    pdf_bytes = await pdf_file.read() if pdf_file is not None else b""
    errors = validate_generation_inputs(topic, num_questions, pdf_bytes)
    if errors:
        return JSONResponse(status_code=400, content={"errors": errors})

    topic = topic.strip()
    try:
        questions = await ai_client.generate_quiz_questions(topic, int(num_questions), pdf_bytes)
    except SuggestionFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    draft = {
        "title": topic,
        "description": f"An AI-generated quiz about {topic}",
        "questions": [q.model_dump(mode="json") for q in questions],
        "time_limit": None,
        "shuffle_questions": False,
        "shuffle_answers": False,
        "status": "Draft",
    }
    try:
        # make sure the draft can be saved as-is through POST /quizzes
        QuizIn.model_validate(draft)
    except ValidationError as exc:
        logger.warning("Generated quiz did not validate: %s", exc)
        raise HTTPException(status_code=503, detail="The AI model returned an unexpected result.")
    return {"quiz": draft}


@router.get("/{quiz_id}")
def api_get_quiz(
    quiz_id: int,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    row = _get_quiz_row(session, quiz_id, current_user)
    if current_user.role == "admin":
        return _quiz_full(row)
    return {
        **_quiz_for_student(row),
        "user_status": quiz_service.quiz_status_for_user(session, quiz_id, current_user.id),
    }


@router.put("/{quiz_id}")
def api_update_quiz(
    quiz_id: int,
    payload: QuizIn = Body(...),
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    try:
        row = quiz_service.update_quiz(session, quiz_id, _clean_quiz_in(payload))
    except NotFound:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return _quiz_full(row)


@router.delete("/{quiz_id}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_quiz(
    quiz_id: int,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    try:
        quiz_service.delete_quiz(session, quiz_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{quiz_id}/analytics")
def api_quiz_analytics(
    quiz_id: int,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    quiz = quiz_service.get_quiz(session, quiz_id)
    if quiz is None:
        raise HTTPException(status_code=404, detail="Quiz not found")
    results = quiz_service.get_all_results_for_quiz(session, quiz_id)
    return compute_analytics(quiz, results).model_dump()


# --- Taking a quiz ---


def _load_error_response(runner: QuizRunner) -> Optional[JSONResponse]:
    if runner.state is not RunnerState.ERROR or runner.store is not None:
        return None
    code = 503
    if isinstance(runner.error, NotFound):
        code = 404
    elif isinstance(runner.error, AttemptNotAllowed):
        code = 403
    return JSONResponse(status_code=code, content={"detail": str(runner.error), "attempt": runner.view()})


def _require_runner(registry: RunnerRegistry, quiz_id: int, user: User, mode: AttemptMode) -> QuizRunner:
    runner = registry.get(quiz_id, user.id, mode)
    if runner is None or runner.store is None:
        raise HTTPException(status_code=404, detail="No attempt in progress for this quiz")
    return runner


@router.post("/{quiz_id}/attempt")
async def api_start_attempt(
    quiz_id: int,
    mode: AttemptMode = Query(AttemptMode.GRADED),
    retake: bool = Query(False),
    current_user: User = Depends(require_login),
    registry: RunnerRegistry = Depends(get_runner_registry),
    gateway=Depends(get_quiz_gateway),
):
    """Start a new attempt, or resume the one in progress."""
    reattempt = allow_reattempt
    if not settings.allow_graded_retakes and current_user.role != "admin":
        reattempt = block_reattempt

    def factory() -> QuizRunner:
        return QuizRunner(
            quiz_id,
            current_user.id,
            gateway,
            mode=mode,
            retake=retake,
            policy=ScoringPolicy(short_answer_case_sensitive=settings.short_answer_case_sensitive),
            reattempt_policy=reattempt,
            include_unpublished=current_user.role == "admin",
        )

    runner = await registry.open(quiz_id, current_user.id, mode, factory, replace=retake)
    error = _load_error_response(runner)
    if error is not None:
        registry.discard(quiz_id, current_user.id, mode)
        return error
    return runner.view()


@router.get("/{quiz_id}/attempt")
def api_get_attempt(
    quiz_id: int,
    mode: AttemptMode = Query(AttemptMode.GRADED),
    current_user: User = Depends(require_login),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    return _require_runner(registry, quiz_id, current_user, mode).view()


@router.put("/{quiz_id}/attempt/answers/{question_id}")
async def api_set_answer(
    quiz_id: int,
    question_id: str,
    payload: AnswerIn = Body(...),
    mode: AttemptMode = Query(AttemptMode.GRADED),
    current_user: User = Depends(require_login),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    runner = _require_runner(registry, quiz_id, current_user, mode)
    try:
        await runner.set_answer(question_id, payload.value)
    except SessionClosed as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return runner.view()


@router.post("/{quiz_id}/attempt/answers/{question_id}/toggle")
async def api_toggle_option(
    quiz_id: int,
    question_id: str,
    payload: ToggleIn = Body(...),
    mode: AttemptMode = Query(AttemptMode.GRADED),
    current_user: User = Depends(require_login),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    runner = _require_runner(registry, quiz_id, current_user, mode)
    try:
        await runner.toggle_option(question_id, payload.option)
    except SessionClosed as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return runner.view()


@router.put("/{quiz_id}/attempt/position")
async def api_go_to(
    quiz_id: int,
    payload: PositionIn = Body(...),
    mode: AttemptMode = Query(AttemptMode.GRADED),
    current_user: User = Depends(require_login),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    runner = _require_runner(registry, quiz_id, current_user, mode)
    try:
        await runner.go_to(payload.index)
    except SessionClosed as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except IndexError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return runner.view()


def _after_submit(runner: QuizRunner):
    if runner.state is RunnerState.ERROR and isinstance(runner.error, PersistenceFailure):
        return JSONResponse(
            status_code=503,
            content={"detail": "Saving your result failed. Please try again.", "attempt": runner.view()},
        )
    return runner.view()


@router.post("/{quiz_id}/attempt/submit")
async def api_submit_attempt(
    quiz_id: int,
    mode: AttemptMode = Query(AttemptMode.GRADED),
    current_user: User = Depends(require_login),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    runner = _require_runner(registry, quiz_id, current_user, mode)
    try:
        await runner.submit()
    except SessionClosed as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _after_submit(runner)


@router.post("/{quiz_id}/attempt/timeout")
async def api_report_timeout(
    quiz_id: int,
    mode: AttemptMode = Query(AttemptMode.GRADED),
    current_user: User = Depends(require_login),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    """A client-side countdown reached zero. Honoured only close to the server deadline."""
    runner = _require_runner(registry, quiz_id, current_user, mode)
    if runner.state is RunnerState.ACTIVE:
        remaining = runner.remaining_seconds
        if remaining is None or remaining > settings.timeout_grace_seconds:
            return JSONResponse(
                status_code=409,
                content={"detail": "Time is not up yet", "remaining_seconds": remaining},
            )
        await runner.expire()
    elif runner.state is RunnerState.ERROR:
        # the timeout submission failed before; retry it
        await runner.submit()
    return _after_submit(runner)


@router.delete("/{quiz_id}/attempt", status_code=status.HTTP_204_NO_CONTENT)
def api_abandon_attempt(
    quiz_id: int,
    mode: AttemptMode = Query(AttemptMode.GRADED),
    current_user: User = Depends(require_login),
    registry: RunnerRegistry = Depends(get_runner_registry),
):
    """Leave the attempt page. A graded session stays stored and can be resumed.

    A submission that failed to save is kept in memory so it can still be retried.
    """
    registry.discard(quiz_id, current_user.id, mode)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Results ---


@router.get("/{quiz_id}/results")
def api_my_results(
    quiz_id: int,
    include_practice: bool = Query(True),
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    _get_quiz_row(session, quiz_id, current_user)
    records = quiz_service.list_results(session, quiz_id, current_user.id, include_practice)
    return [
        {"id": rec.id, **quiz_service.result_from_record(rec).model_dump(mode="json")}
        for rec in records
    ]


@router.get("/{quiz_id}/results/view")
def results_page(
    request: Request,
    quiz_id: int,
    current_user: User = Depends(require_login),
    session: Session = Depends(get_session),
):
    row = _get_quiz_row(session, quiz_id, current_user)
    records = quiz_service.list_results(session, quiz_id, current_user.id)
    results = [quiz_service.result_from_record(rec) for rec in records]
    context = {
        "current_user": current_user,
        "quiz": row,
        "latest": results[0] if results else None,
        "history": results[1:],
    }
    return templates.TemplateResponse(request, "quiz/results.html", context)
