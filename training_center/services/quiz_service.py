from datetime import datetime
from typing import List, Optional

from pydantic import TypeAdapter
from sqlmodel import Session, select

from training_center.engine.runner import SessionSnapshot
from training_center.errors import NotFound, SessionClosed
from training_center.models import Quiz as QuizRow
from training_center.models import QuizResultRecord, QuizSessionRecord
from training_center.schemas import Question, Quiz, QuizIn, QuizResult

_questions_adapter = TypeAdapter(list[Question])


def quiz_from_row(row: QuizRow) -> Quiz:
    return Quiz(
        id=row.id,
        title=row.title,
        description=row.description,
        questions=tuple(_questions_adapter.validate_python(row.questions or [])),
        time_limit=row.time_limit,
        shuffle_questions=row.shuffle_questions,
        shuffle_answers=row.shuffle_answers,
        status=row.status,
    )


def _questions_to_json(data: QuizIn) -> list[dict]:
    return _questions_adapter.dump_python(data.questions, mode="json")


def create_quiz(session: Session, data: QuizIn) -> QuizRow:
    row = QuizRow(
        title=data.title.strip(),
        description=data.description,
        questions=_questions_to_json(data),
        time_limit=data.time_limit,
        shuffle_questions=data.shuffle_questions,
        shuffle_answers=data.shuffle_answers,
        status=data.status,
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def get_quiz_row(session: Session, quiz_id: int) -> Optional[QuizRow]:
    return session.get(QuizRow, quiz_id)


def get_quiz(session: Session, quiz_id: int) -> Optional[Quiz]:
    row = session.get(QuizRow, quiz_id)
    if row is None:
        return None
    return quiz_from_row(row)


def list_quizzes(session: Session, include_unpublished: bool = True) -> List[QuizRow]:
    stmt = select(QuizRow).order_by(QuizRow.created_at.desc())
    if not include_unpublished:
        stmt = stmt.where(QuizRow.status == "Published")
    return session.exec(stmt).all()


def update_quiz(session: Session, quiz_id: int, data: QuizIn) -> QuizRow:
    """Replace the content of an existing quiz.

    Raises:
        NotFound: If the quiz doesn't exist
    """
    row = session.get(QuizRow, quiz_id)
    if row is None:
        raise NotFound(f"Quiz with id={quiz_id} does not exist")

    row.title = data.title.strip()
    row.description = data.description
    row.questions = _questions_to_json(data)
    row.time_limit = data.time_limit
    row.shuffle_questions = data.shuffle_questions
    row.shuffle_answers = data.shuffle_answers
    row.status = data.status
    row.updated_at = datetime.utcnow()
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def delete_quiz(session: Session, quiz_id: int) -> None:
    """Delete a quiz together with its sessions and results.

    Raises:
        NotFound: If the quiz doesn't exist
    """
    row = session.get(QuizRow, quiz_id)
    if row is None:
        raise NotFound(f"Quiz with id={quiz_id} does not exist")

    for rec in session.exec(select(QuizSessionRecord).where(QuizSessionRecord.quiz_id == quiz_id)).all():
        session.delete(rec)
    for rec in session.exec(select(QuizResultRecord).where(QuizResultRecord.quiz_id == quiz_id)).all():
        session.delete(rec)
    session.delete(row)
    session.commit()


# --- Sessions (resumable graded attempts) ---


def _find_session_record(session: Session, quiz_id: int, user_id: int) -> Optional[QuizSessionRecord]:
    stmt = select(QuizSessionRecord).where(
        (QuizSessionRecord.quiz_id == quiz_id) & (QuizSessionRecord.user_id == user_id)
    )
    return session.exec(stmt).first()


def snapshot_from_record(rec: QuizSessionRecord) -> SessionSnapshot:
    return SessionSnapshot(
        started_at=rec.started_at,
        order=list(rec.order or []),
        option_order=dict(rec.option_order or {}),
        answers=dict(rec.answers or {}),
        current_index=rec.current_index,
        last_saved_at=rec.last_saved_at,
        submitted_at=rec.submitted_at,
    )


def get_session_snapshot(session: Session, quiz_id: int, user_id: int) -> Optional[SessionSnapshot]:
    rec = _find_session_record(session, quiz_id, user_id)
    if rec is None:
        return None
    return snapshot_from_record(rec)


def start_session(
    session: Session, quiz_id: int, user_id: int, snapshot: SessionSnapshot
) -> QuizSessionRecord:
    """Create the session for a new graded attempt, replacing any earlier one."""
    rec = _find_session_record(session, quiz_id, user_id)
    if rec is None:
        rec = QuizSessionRecord(quiz_id=quiz_id, user_id=user_id, started_at=snapshot.started_at)
    rec.started_at = snapshot.started_at
    rec.order = list(snapshot.order)
    rec.option_order = {k: list(v) for k, v in snapshot.option_order.items()}
    rec.answers = dict(snapshot.answers)
    rec.current_index = snapshot.current_index
    rec.last_saved_at = snapshot.last_saved_at or snapshot.started_at
    rec.submitted_at = None
    session.add(rec)
    session.commit()
    session.refresh(rec)
    return rec


def save_progress(
    session: Session, quiz_id: int, user_id: int, snapshot: SessionSnapshot
) -> QuizSessionRecord:
    """Store answers and position of an in-progress attempt.

    Raises:
        NotFound: If no session was started for this quiz and user
        SessionClosed: If the attempt was already submitted
    """
    rec = _find_session_record(session, quiz_id, user_id)
    if rec is None:
        raise NotFound(f"No session for quiz {quiz_id} and user {user_id}")
    if rec.submitted_at is not None:
        raise SessionClosed("Attempt was already submitted")

    # JSON columns are replaced, never mutated in place
    rec.answers = dict(snapshot.answers)
    rec.current_index = snapshot.current_index
    rec.last_saved_at = snapshot.last_saved_at or datetime.utcnow()
    session.add(rec)
    session.commit()
    session.refresh(rec)
    return rec


def quiz_status_for_user(session: Session, quiz_id: int, user_id: int) -> str:
    has_result = session.exec(
        select(QuizResultRecord).where(
            (QuizResultRecord.quiz_id == quiz_id)
            & (QuizResultRecord.user_id == user_id)
            & (QuizResultRecord.is_practice == False)  # noqa: E712
        )
    ).first()
    if has_result:
        return "Completed"
    rec = _find_session_record(session, quiz_id, user_id)
    if rec is not None and rec.submitted_at is None:
        return "In Progress"
    return "Not Started"


# --- Results (append-only) ---


def result_from_record(rec: QuizResultRecord) -> QuizResult:
    return QuizResult.model_validate(
        {
            "date": rec.date,
            "score": rec.score,
            "total": rec.total,
            "answered_questions": rec.answered_questions or [],
            "is_practice": rec.is_practice,
        }
    )


def persist_result(
    session: Session, quiz_id: int, user_id: int, result: QuizResult
) -> QuizResultRecord:
    """Append a result. Graded results also close the user's session for the quiz."""
    payload = result.model_dump(mode="json")
    rec = QuizResultRecord(
        quiz_id=quiz_id,
        user_id=user_id,
        date=result.date or datetime.utcnow(),
        score=result.score,
        total=result.total,
        answered_questions=payload["answered_questions"],
        is_practice=result.is_practice,
    )
    session.add(rec)

    if not result.is_practice:
        sess = _find_session_record(session, quiz_id, user_id)
        if sess is not None and sess.submitted_at is None:
            sess.submitted_at = rec.date
            session.add(sess)

    session.commit()
    session.refresh(rec)
    return rec


def list_results(
    session: Session, quiz_id: int, user_id: int, include_practice: bool = True
) -> List[QuizResultRecord]:
    stmt = select(QuizResultRecord).where(
        (QuizResultRecord.quiz_id == quiz_id) & (QuizResultRecord.user_id == user_id)
    )
    if not include_practice:
        stmt = stmt.where(QuizResultRecord.is_practice == False)  # noqa: E712
    stmt = stmt.order_by(QuizResultRecord.date.desc(), QuizResultRecord.id.desc())
    return session.exec(stmt).all()


def get_prior_attempt(session: Session, quiz_id: int, user_id: int) -> Optional[QuizResult]:
    """Latest graded result of the user for the quiz, if any."""
    records = list_results(session, quiz_id, user_id, include_practice=False)
    if not records:
        return None
    return result_from_record(records[0])


def get_all_results_for_quiz(
    session: Session, quiz_id: int, include_practice: bool = False
) -> List[QuizResult]:
    stmt = select(QuizResultRecord).where(QuizResultRecord.quiz_id == quiz_id)
    if not include_practice:
        stmt = stmt.where(QuizResultRecord.is_practice == False)  # noqa: E712
    return [result_from_record(r) for r in session.exec(stmt).all()]
