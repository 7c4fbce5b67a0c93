"""App-scoped containers for long-lived per-user objects (quiz runners, evaluation drafts).

They are created when the application starts and closed on shutdown, and
are handed to request handlers through dependencies rather than imported as
module globals. Entries that nobody touched for a while are dropped so that
abandoned browser tabs do not pile up in memory.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Generic, Hashable, Optional, TypeVar

from training_center.engine.runner import AttemptMode, QuizRunner, RunnerState

logger = logging.getLogger(__name__)

T = TypeVar("T")

RunnerKey = tuple[int, int, AttemptMode]


class RunnerRegistry:
    """Active quiz runners keyed by (quiz id, user id, mode).

    Args:
        idle_seconds: Drop a runner nobody touched for this long (None keeps it)
        finished_seconds: How long a submitted runner is kept for viewing
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(
        self,
        *,
        idle_seconds: Optional[float] = None,
        finished_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._runners: dict[RunnerKey, QuizRunner] = {}
        self._touched: dict[RunnerKey, float] = {}
        self._lock = asyncio.Lock()
        self.idle_seconds = idle_seconds
        self.finished_seconds = finished_seconds
        self.clock = clock

    def get(self, quiz_id: int, user_id: int, mode: AttemptMode) -> Optional[QuizRunner]:
        self.sweep()
        key = (quiz_id, user_id, AttemptMode(mode))
        runner = self._runners.get(key)
        if runner is not None:
            self._touched[key] = self.clock()
        return runner

    async def open(
        self,
        quiz_id: int,
        user_id: int,
        mode: AttemptMode,
        factory: Callable[[], QuizRunner],
        *,
        replace: bool = False,
    ) -> QuizRunner:
        """Return the live runner for the key, or create and load a new one.

        Runners that finished (submitted, or failed to load) are replaced. A
        runner whose submission failed is kept so the save can be retried,
        even when a fresh attempt is asked for.
        """
        key = (quiz_id, user_id, AttemptMode(mode))
        async with self._lock:
            self.sweep()
            existing = self._runners.get(key)
            if existing is not None and (
                existing.has_pending_result or (not replace and self._is_reusable(existing))
            ):
                self._touched[key] = self.clock()
                return existing
            if existing is not None:
                existing.abandon()
            runner = factory()
            self._runners[key] = runner
            self._touched[key] = self.clock()
            await runner.load()
            return runner

    @staticmethod
    def _is_reusable(runner: QuizRunner) -> bool:
        if runner.state in (RunnerState.ACTIVE, RunnerState.SUBMITTING):
            return True
        # a failed save stays around for a retry
        return runner.state is RunnerState.ERROR and runner.quiz is not None and runner.store is not None

    def discard(self, quiz_id: int, user_id: int, mode: AttemptMode) -> Optional[QuizRunner]:
        """Forget the runner for the key and stop its clock.

        A runner holding a submission that failed to save is kept: leaving
        the page must not lose the scored attempt. Returns the removed runner.
        """
        key = (quiz_id, user_id, AttemptMode(mode))
        runner = self._runners.get(key)
        if runner is None:
            return None
        if runner.has_pending_result:
            logger.info("Keeping unsaved submission of quiz %s for user %s", quiz_id, user_id)
            return None
        self._remove(key)
        return runner

    def _remove(self, key: RunnerKey) -> None:
        runner = self._runners.pop(key)
        self._touched.pop(key, None)
        runner.abandon()

    def _expired(self, key: RunnerKey, runner: QuizRunner, now: float) -> bool:
        if runner.has_pending_result or runner.state is RunnerState.SUBMITTING:
            return False
        age = now - self._touched.get(key, now)
        if runner.state is RunnerState.SUBMITTED:
            return age >= self.finished_seconds
        # a running countdown submits the attempt by itself
        if runner.state is RunnerState.ACTIVE and runner.remaining_seconds is not None:
            return False
        return self.idle_seconds is not None and age >= self.idle_seconds

    def sweep(self) -> int:
        """Drop finished and idle runners. Returns how many were dropped."""
        now = self.clock()
        stale = [key for key, runner in self._runners.items() if self._expired(key, runner, now)]
        for key in stale:
            self._remove(key)
        if stale:
            logger.debug("Dropped %d quiz runners", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._runners)

    async def aclose(self) -> None:
        for (quiz_id, user_id, _), runner in self._runners.items():
            if runner.has_pending_result:
                logger.warning("Unsaved submission of quiz %s for user %s is lost", quiz_id, user_id)
            runner.abandon()
        self._runners.clear()
        self._touched.clear()


class DraftRegistry(Generic[T]):
    """Objects addressed by a random id, each with an async close hook.

    A draft not touched for ``idle_seconds`` is no longer handed out and is
    closed by the next ``sweep``.
    """

    def __init__(
        self,
        close: Optional[Callable[[T], Awaitable[None]]] = None,
        *,
        idle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._items: dict[str, T] = {}
        self._touched: dict[str, float] = {}
        self._close = close
        self.idle_seconds = idle_seconds
        self.clock = clock

    def add(self, item: T) -> str:
        draft_id = uuid.uuid4().hex
        self._items[draft_id] = item
        self._touched[draft_id] = self.clock()
        return draft_id

    def _is_expired(self, draft_id: Hashable, now: float) -> bool:
        if self.idle_seconds is None:
            return False
        return now - self._touched.get(draft_id, now) >= self.idle_seconds

    def get(self, draft_id: Hashable) -> Optional[T]:
        item = self._items.get(draft_id)
        if item is None:
            return None
        now = self.clock()
        if self._is_expired(draft_id, now):
            return None
        self._touched[draft_id] = now
        return item

    async def discard(self, draft_id: str) -> Optional[T]:
        item = self._items.pop(draft_id, None)
        self._touched.pop(draft_id, None)
        if item is not None and self._close is not None:
            await self._close(item)
        return item

    async def sweep(self) -> int:
        """Close drafts that sat idle too long. Returns how many were closed."""
        now = self.clock()
        stale = [draft_id for draft_id in self._items if self._is_expired(draft_id, now)]
        for draft_id in stale:
            await self.discard(draft_id)
        if stale:
            logger.info("Closed %d idle drafts", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._items)

    async def aclose(self) -> None:
        for draft_id in list(self._items):
            try:
                await self.discard(draft_id)
            except Exception:
                logger.exception("Closing draft %s failed", draft_id)
