"""Database-backed gateway used by quiz runners.

The runner is async while SQLModel sessions are blocking, so each call opens
its own short session in the threadpool.
"""

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from training_center.engine.runner import SessionSnapshot
from training_center.errors import PersistenceFailure
from training_center.schemas import Quiz, QuizResult
from training_center.services import quiz_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlQuizGateway:
    def __init__(self, engine: Engine):
        self.engine = engine

    def _call(self, fn: Callable[..., T], *args) -> T:
        with Session(self.engine) as session:
            try:
                return fn(session, *args)
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Database call %s failed", fn.__name__)
                raise PersistenceFailure(f"Database error in {fn.__name__}") from exc

    async def fetch_quiz(self, quiz_id: int) -> Optional[Quiz]:
        return await run_in_threadpool(self._call, quiz_service.get_quiz, quiz_id)

    async def fetch_prior_attempt(self, quiz_id: int, user_id: int) -> Optional[QuizResult]:
        return await run_in_threadpool(
            self._call, quiz_service.get_prior_attempt, quiz_id, user_id
        )

    async def fetch_session(self, quiz_id: int, user_id: int) -> Optional[SessionSnapshot]:
        return await run_in_threadpool(
            self._call, quiz_service.get_session_snapshot, quiz_id, user_id
        )

    async def start_session(self, quiz_id: int, user_id: int, snapshot: SessionSnapshot) -> None:
        await run_in_threadpool(self._call, quiz_service.start_session, quiz_id, user_id, snapshot)

    async def save_progress(self, quiz_id: int, user_id: int, snapshot: SessionSnapshot) -> None:
        await run_in_threadpool(self._call, quiz_service.save_progress, quiz_id, user_id, snapshot)

    async def persist_result(self, quiz_id: int, user_id: int, result: QuizResult) -> None:
        await run_in_threadpool(self._call, quiz_service.persist_result, quiz_id, user_id, result)
