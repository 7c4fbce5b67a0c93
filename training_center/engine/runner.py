"""Quiz runner: orchestrates one attempt from loading to a persisted result.

States::

    loading -> active -> submitting -> submitted
       |                     |
       +------> error <------+

Manual submission and timer expiry both end up in ``_submit``; a single
in-flight flag makes sure a result is persisted at most once per attempt.
"""

from __future__ import annotations

import inspect
import logging
import random
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from pydantic import BaseModel, Field

from training_center.engine.answer_store import AnswerStore
from training_center.engine.scoring import DEFAULT_POLICY, ScoringPolicy, score
from training_center.engine.timer import CountdownTimer
from training_center.errors import (
    AttemptNotAllowed,
    NotFound,
    PersistenceFailure,
    SessionClosed,
)
from training_center.schemas import Quiz, QuizResult

logger = logging.getLogger(__name__)


class RunnerState(str, Enum):
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    ERROR = "error"


class AttemptMode(str, Enum):
    GRADED = "graded"
    PRACTICE = "practice"


class SessionSnapshot(BaseModel):
    """Persistable copy of an attempt in progress."""

    started_at: datetime
    order: list[str] = Field(default_factory=list)
    option_order: dict[str, list[str]] = Field(default_factory=dict)
    answers: dict[str, Any] = Field(default_factory=dict)
    current_index: int = 0
    last_saved_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None


class QuizGateway(Protocol):
    """Storage the runner talks to. Every method may suspend."""

    async def fetch_quiz(self, quiz_id: int) -> Optional[Quiz]: ...

    async def fetch_prior_attempt(self, quiz_id: int, user_id: int) -> Optional[QuizResult]: ...

    async def fetch_session(self, quiz_id: int, user_id: int) -> Optional[SessionSnapshot]: ...

    async def start_session(self, quiz_id: int, user_id: int, snapshot: SessionSnapshot) -> None: ...

    async def save_progress(self, quiz_id: int, user_id: int, snapshot: SessionSnapshot) -> None: ...

    async def persist_result(self, quiz_id: int, user_id: int, result: QuizResult) -> None: ...


def allow_reattempt(prior: Optional[QuizResult]) -> bool:
    return True


def block_reattempt(prior: Optional[QuizResult]) -> bool:
    return prior is None


def utcnow() -> datetime:
    return datetime.utcnow()


def serialize_answer(value):
    if isinstance(value, frozenset):
        return sorted(value)
    return value


class QuizRunner:
    """Drives a single attempt of one user at one quiz."""

    def __init__(
        self,
        quiz_id: int,
        user_id: int,
        gateway: QuizGateway,
        *,
        mode: AttemptMode = AttemptMode.GRADED,
        retake: bool = False,
        policy: ScoringPolicy = DEFAULT_POLICY,
        reattempt_policy: Callable[[Optional[QuizResult]], bool] = allow_reattempt,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
        on_tick: Optional[Callable[[int], Any]] = None,
        include_unpublished: bool = False,
    ):
        self.quiz_id = quiz_id
        self.user_id = user_id
        self.gateway = gateway
        self.mode = AttemptMode(mode)
        self.retake = retake
        self.policy = policy
        self.reattempt_policy = reattempt_policy
        self.rng = rng or random.Random()
        self.clock = clock
        self.on_tick = on_tick
        self.include_unpublished = include_unpublished

        self.state = RunnerState.LOADING
        self.quiz: Optional[Quiz] = None
        self.store: Optional[AnswerStore] = None
        self.timer: Optional[CountdownTimer] = None
        self.option_order: dict[str, tuple[str, ...]] = {}
        self.result: Optional[QuizResult] = None
        self.error: Optional[Exception] = None
        self.time_up = False
        self.abandoned = False
        self.submit_reason: Optional[str] = None
        self._pending_result: Optional[QuizResult] = None
        self._submit_in_flight = False

    # -- properties ----------------------------------------------------------

    @property
    def is_practice(self) -> bool:
        return self.mode is AttemptMode.PRACTICE

    @property
    def remaining_seconds(self) -> Optional[int]:
        if self.timer is None:
            return None
        return self.timer.remaining_seconds

    @property
    def has_pending_result(self) -> bool:
        """A scored submission that failed to save and still waits for a retry."""
        return self.state is RunnerState.ERROR and self._pending_result is not None

    @property
    def accepting_answers(self) -> bool:
        return (
            self.state is RunnerState.ACTIVE
            and not self.time_up
            and self.store is not None
            and self.store.accepting_answers
        )

    # -- loading -------------------------------------------------------------

    async def load(self) -> RunnerState:
        """Fetch the quiz, build or restore the session and start the clock."""
        if self.state is not RunnerState.LOADING:
            return self.state
        try:
            quiz = await self.gateway.fetch_quiz(self.quiz_id)
            if quiz is None:
                raise NotFound(f"Quiz {self.quiz_id} not found")
            if quiz.status != "Published" and not self.include_unpublished:
                raise NotFound(f"Quiz {self.quiz_id} not found")
            if not quiz.questions:
                raise NotFound(f"Quiz {self.quiz_id} has no questions")
            self.quiz = quiz

            snapshot = None
            if not self.is_practice:
                if not self.retake:
                    snapshot = await self.gateway.fetch_session(self.quiz_id, self.user_id)
                    if snapshot is not None and snapshot.submitted_at is not None:
                        snapshot = None
                if snapshot is None:
                    prior = await self.gateway.fetch_prior_attempt(self.quiz_id, self.user_id)
                    if prior is not None and not self.reattempt_policy(prior):
                        raise AttemptNotAllowed("You have already completed this quiz")

            if snapshot is None:
                snapshot = self._fresh_snapshot(quiz)
                if not self.is_practice:
                    await self.gateway.start_session(self.quiz_id, self.user_id, snapshot)
            self._restore(quiz, snapshot)
        except (NotFound, AttemptNotAllowed, PersistenceFailure) as exc:
            logger.info("Quiz %s could not be loaded for user %s: %s", self.quiz_id, self.user_id, exc)
            self.error = exc
            self.state = RunnerState.ERROR
            return self.state

        remaining = None
        limit = quiz.limit_seconds
        if limit is not None:
            elapsed = int((self.clock() - self.store.started_at).total_seconds())
            remaining = max(limit - max(elapsed, 0), 0)
        self.timer = CountdownTimer(
            limit,
            on_tick=self._handle_tick,
            on_expire=self._handle_expiry,
            remaining_seconds=remaining,
        )
        self.state = RunnerState.ACTIVE

        if remaining == 0:
            # The deadline passed while nobody was connected.
            await self._handle_expiry()
        else:
            self.timer.start()
        return self.state

    def _fresh_snapshot(self, quiz: Quiz) -> SessionSnapshot:
        order = [q.id for q in quiz.questions]
        if quiz.shuffle_questions:
            self.rng.shuffle(order)
        option_order: dict[str, list[str]] = {}
        for q in quiz.questions:
            options = list(q.options)
            if quiz.shuffle_answers and q.type != "short-answer":
                self.rng.shuffle(options)
            option_order[q.id] = options
        return SessionSnapshot(
            started_at=self.clock(),
            order=order,
            option_order=option_order,
            answers={},
            current_index=0,
            last_saved_at=None,
        )

    def _restore(self, quiz: Quiz, snapshot: SessionSnapshot) -> None:
        known = [q.id for q in quiz.questions]
        # The quiz may have been edited since the session was saved.
        order = [qid for qid in snapshot.order if qid in known]
        order += [qid for qid in known if qid not in order]
        answers = {qid: value for qid, value in snapshot.answers.items() if qid in known}

        self.option_order = {}
        for q in quiz.questions:
            saved = snapshot.option_order.get(q.id)
            if saved is not None and sorted(saved) == sorted(q.options):
                self.option_order[q.id] = tuple(saved)
            else:
                self.option_order[q.id] = tuple(q.options)

        self.store = AnswerStore(
            order,
            started_at=snapshot.started_at,
            answers=answers,
            current_index=snapshot.current_index,
            last_saved_at=snapshot.last_saved_at,
        )

    # -- answering -----------------------------------------------------------

    def _require_active(self) -> None:
        if not self.accepting_answers:
            raise SessionClosed("This attempt no longer accepts answers")

    def _require_question(self, question_id: str) -> None:
        if self.quiz.question_by_id(question_id) is None:
            raise NotFound(f"Question {question_id} is not part of this quiz")

    async def set_answer(self, question_id: str, value) -> None:
        self._require_active()
        self._require_question(question_id)
        self.store.set_answer(question_id, value)
        await self._save_progress()

    async def toggle_option(self, question_id: str, option: str) -> frozenset[str]:
        self._require_active()
        self._require_question(question_id)
        selected = self.store.toggle_option(question_id, option)
        await self._save_progress()
        return selected

    async def go_to(self, index: int) -> int:
        self._require_active()
        self.store.go_to(index)
        await self._save_progress()
        return self.store.current_index

    def snapshot(self) -> SessionSnapshot:
        store = self.store
        return SessionSnapshot(
            started_at=store.started_at,
            order=list(store.order),
            option_order={qid: list(opts) for qid, opts in self.option_order.items()},
            answers={qid: serialize_answer(v) for qid, v in store.get_snapshot().items()},
            current_index=store.current_index,
            last_saved_at=store.last_saved_at,
            submitted_at=store.submitted_at,
        )

    async def _save_progress(self) -> None:
        """Persist partial progress. Failures are logged and do not stop the attempt."""
        if self.is_practice or self.abandoned:
            return
        saved_at = self.clock()
        snapshot = self.snapshot()
        snapshot.last_saved_at = saved_at
        try:
            await self.gateway.save_progress(self.quiz_id, self.user_id, snapshot)
        except Exception as exc:
            logger.warning(
                "Saving progress of quiz %s for user %s failed: %s", self.quiz_id, self.user_id, exc
            )
            return
        self.store.mark_saved(saved_at)

    # -- submission ----------------------------------------------------------

    async def _handle_tick(self, remaining: int) -> None:
        if self.on_tick is not None and not self.abandoned:
            outcome = self.on_tick(remaining)
            if inspect.isawaitable(outcome):
                await outcome

    async def _handle_expiry(self) -> None:
        if self.state is not RunnerState.ACTIVE:
            return
        # Time is up: input stops even if saving the result fails afterwards.
        self.time_up = True
        self.store.close()
        logger.info("Time is up on quiz %s for user %s", self.quiz_id, self.user_id)
        await self._submit("timeout")

    async def expire(self) -> RunnerState:
        """Force the expiry path, e.g. when a client-side countdown reports zero."""
        if self.timer is not None:
            self.timer.stop()
        await self._handle_expiry()
        return self.state

    async def submit(self) -> RunnerState:
        """Manual submission. Retries a failed save when called from ``error``."""
        if self.state is RunnerState.SUBMITTED or self._submit_in_flight:
            return self.state
        if self.state is RunnerState.ERROR and self._pending_result is None:
            raise SessionClosed("This attempt could not be started")
        if self.state not in (RunnerState.ACTIVE, RunnerState.ERROR):
            raise SessionClosed(f"Cannot submit an attempt in state '{self.state.value}'")
        return await self._submit("manual")

    async def _submit(self, reason: str) -> RunnerState:
        if self._submit_in_flight or self.state is RunnerState.SUBMITTED:
            return self.state
        self._submit_in_flight = True
        if self.submit_reason is None:
            self.submit_reason = reason
        self.state = RunnerState.SUBMITTING
        if self.timer is not None:
            self.timer.stop()
        self.store.close()

        if self._pending_result is None:
            questions = [self.quiz.question_by_id(qid) for qid in self.store.order]
            self._pending_result = score(
                questions,
                self.store.get_snapshot(),
                policy=self.policy,
                is_practice=self.is_practice,
                date=self.clock(),
            )

        try:
            await self.gateway.persist_result(self.quiz_id, self.user_id, self._pending_result)
        except Exception as exc:
            failure = exc if isinstance(exc, PersistenceFailure) else PersistenceFailure(str(exc))
            logger.error(
                "Saving result of quiz %s for user %s failed: %s", self.quiz_id, self.user_id, exc
            )
            if not self.abandoned:
                self.error = failure
                self.state = RunnerState.ERROR
            return self.state
        finally:
            self._submit_in_flight = False

        if self.abandoned:
            return self.state
        self.store.mark_submitted(self._pending_result.date)
        self.result = self._pending_result
        self.error = None
        self.state = RunnerState.SUBMITTED
        logger.info(
            "Quiz %s submitted for user %s (%s): %s/%s",
            self.quiz_id,
            self.user_id,
            reason,
            self.result.score,
            self.result.total,
        )
        return self.state

    def abandon(self) -> None:
        """Stop the clock and ignore whatever is still in flight (user navigated away)."""
        self.abandoned = True
        if self.timer is not None:
            self.timer.stop()

    # -- presentation --------------------------------------------------------

    def view(self) -> dict:
        """JSON-ready description of the attempt for the student. Answer keys are omitted."""
        data: dict[str, Any] = {
            "quiz_id": self.quiz_id,
            "mode": self.mode.value,
            "state": self.state.value,
            "error": str(self.error) if self.error else None,
        }
        if self.quiz is None or self.store is None:
            return data
        questions = []
        for qid in self.store.order:
            q = self.quiz.question_by_id(qid)
            questions.append(
                {
                    "id": q.id,
                    "question": q.question,
                    "type": q.type,
                    "options": list(self.option_order.get(q.id, q.options)),
                    "image_url": q.image_url,
                }
            )
        data.update(
            {
                "title": self.quiz.title,
                "questions": questions,
                "answers": {
                    qid: serialize_answer(v) for qid, v in self.store.get_snapshot().items()
                },
                "current_index": self.store.current_index,
                "progress": round(self.store.progress * 100, 2),
                "time_limit": self.quiz.time_limit,
                "remaining_seconds": self.remaining_seconds,
                "time_up": self.time_up,
                "started_at": self.store.started_at.isoformat(),
                "last_saved_at": (
                    self.store.last_saved_at.isoformat() if self.store.last_saved_at else None
                ),
                "result": self.result.model_dump(mode="json") if self.result else None,
            }
        )
        return data
