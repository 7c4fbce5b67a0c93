"""In-progress state of one quiz attempt."""

from __future__ import annotations

from datetime import datetime
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from training_center.errors import SessionClosed

AnswerValue = Union[str, frozenset[str]]


def freeze_answer(value) -> AnswerValue:
    """Normalise an incoming answer: strings stay strings, collections become frozensets."""
    if isinstance(value, str):
        return value
    if isinstance(value, (set, frozenset, list, tuple)):
        return frozenset(str(v) for v in value)
    raise TypeError(f"Unsupported answer value: {value!r}")


def is_answered(value: Optional[AnswerValue]) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return len(value) > 0


class AnswerStore:
    """Answers, question order and position for a single attempt.

    The order is fixed when the store is created. Once ``mark_submitted`` has
    been called, or input has been closed because time ran out, every mutation
    raises :class:`SessionClosed`.
    """

    def __init__(
        self,
        order: Iterable[str],
        started_at: datetime,
        answers: Optional[Mapping[str, object]] = None,
        current_index: int = 0,
        last_saved_at: Optional[datetime] = None,
    ):
        self.order: tuple[str, ...] = tuple(order)
        self.started_at = started_at
        self.last_saved_at = last_saved_at
        self.submitted_at: Optional[datetime] = None
        self._accepting = True
        self._answers: dict[str, AnswerValue] = {}
        for qid, value in (answers or {}).items():
            self._answers[qid] = freeze_answer(value)
        self.current_index = self._clamp(current_index)

    # -- state -------------------------------------------------------------

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    @property
    def accepting_answers(self) -> bool:
        return self._accepting and not self.is_submitted

    def close(self) -> None:
        """Stop accepting input without finalising the attempt (time is up)."""
        self._accepting = False

    def _ensure_open(self) -> None:
        if not self.accepting_answers:
            raise SessionClosed("This attempt no longer accepts answers")

    # -- answers -----------------------------------------------------------

    def set_answer(self, question_id: str, value) -> None:
        self._ensure_open()
        self._answers[question_id] = freeze_answer(value)

    def toggle_option(self, question_id: str, option: str) -> frozenset[str]:
        """Add or remove one option of a checkbox answer and return the new selection."""
        self._ensure_open()
        current = self._answers.get(question_id)
        selected = set(current) if isinstance(current, frozenset) else set()
        if option in selected:
            selected.remove(option)
        else:
            selected.add(option)
        frozen = frozenset(selected)
        self._answers[question_id] = frozen
        return frozen

    def get_answer(self, question_id: str) -> Optional[AnswerValue]:
        return self._answers.get(question_id)

    def get_snapshot(self) -> Mapping[str, AnswerValue]:
        return MappingProxyType(dict(self._answers))

    @property
    def answered_count(self) -> int:
        return sum(1 for qid in self.order if is_answered(self._answers.get(qid)))

    @property
    def progress(self) -> float:
        if not self.order:
            return 0.0
        return self.answered_count / len(self.order)

    # -- navigation --------------------------------------------------------

    def _clamp(self, index: int) -> int:
        if not self.order:
            return 0
        return max(0, min(index, len(self.order) - 1))

    @property
    def current_question_id(self) -> Optional[str]:
        if not self.order:
            return None
        return self.order[self.current_index]

    def go_to(self, index: int) -> int:
        self._ensure_open()
        if not 0 <= index < len(self.order):
            raise IndexError(f"Question index {index} out of range")
        self.current_index = index
        return index

    def next(self) -> int:
        self._ensure_open()
        self.current_index = self._clamp(self.current_index + 1)
        return self.current_index

    def previous(self) -> int:
        self._ensure_open()
        self.current_index = self._clamp(self.current_index - 1)
        return self.current_index

    # -- lifecycle ---------------------------------------------------------

    def mark_saved(self, at: datetime) -> None:
        self.last_saved_at = at

    def mark_submitted(self, at: datetime) -> None:
        if self.submitted_at is not None:
            raise SessionClosed("Attempt was already submitted")
        self.submitted_at = at
        self._accepting = False
