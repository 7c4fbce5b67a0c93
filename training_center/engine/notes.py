"""Co-authoring of evaluation notes between a human and the AI note generator.

Each note field is ``empty``, ``ai-owned`` or ``user-owned``. Human edits
always win: an AI suggestion only lands on a field that is empty or that the
AI wrote itself. Suggestion requests are debounced and numbered, and only the
response to the latest request may change any field.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Iterable, Mapping, Optional, Sequence

from training_center.errors import SuggestionFailure
from training_center.schemas import CriterionForNotes, GeneratedNote

logger = logging.getLogger(__name__)


class NoteOwner(str, Enum):
    EMPTY = "empty"
    AI = "ai-owned"
    USER = "user-owned"


class NoteField:
    __slots__ = ("text", "owner")

    def __init__(self, text: str = "", owner: NoteOwner = NoteOwner.EMPTY):
        self.text = text
        self.owner = owner

    def __repr__(self) -> str:
        return f"NoteField(text={self.text!r}, owner={self.owner.value})"


class NoteOwnershipTracker:
    def __init__(self, field_ids: Iterable[str] = ()):
        self._fields: dict[str, NoteField] = {fid: NoteField() for fid in field_ids}

    def load(self, field_id: str, text: Optional[str]) -> None:
        """Seed a field with stored text. Existing notes count as written by a human."""
        text = text or ""
        owner = NoteOwner.USER if text.strip() else NoteOwner.EMPTY
        self._fields[field_id] = NoteField(text, owner)

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    def field(self, field_id: str) -> NoteField:
        return self._fields.setdefault(field_id, NoteField())

    def text(self, field_id: str) -> str:
        return self.field(field_id).text

    def owner(self, field_id: str) -> NoteOwner:
        return self.field(field_id).owner

    def on_user_edit(self, field_id: str, new_text: str) -> None:
        f = self.field(field_id)
        f.text = new_text
        f.owner = NoteOwner.USER if new_text.strip() else NoteOwner.EMPTY

    def on_ai_suggestion(self, field_id: str, suggested_text: str) -> bool:
        """Apply an AI suggestion unless a human owns the field. Returns True if applied."""
        f = self.field(field_id)
        if f.owner is NoteOwner.USER:
            return False
        if f.text != suggested_text:
            f.text = suggested_text
        f.owner = NoteOwner.AI
        return True

    def texts(self) -> dict[str, str]:
        return {fid: f.text for fid, f in self._fields.items()}

    def owners(self) -> dict[str, str]:
        return {fid: f.owner.value for fid, f in self._fields.items()}


RequestNotes = Callable[[Sequence[CriterionForNotes]], Awaitable[Sequence[GeneratedNote]]]
CriteriaProvider = Callable[[], Sequence[CriterionForNotes]]


class NoteSuggestionScheduler:
    """Debounces AI note requests and drops responses that are no longer current.

    ``schedule()`` cancels any pending delay and starts a new one; when the
    delay elapses a request is issued with the next sequence number. A
    response is applied only if its number is still the latest issued.
    """

    def __init__(
        self,
        tracker: NoteOwnershipTracker,
        request_notes: RequestNotes,
        criteria: CriteriaProvider,
        *,
        delay: float = 0.5,
    ):
        self.tracker = tracker
        self.request_notes = request_notes
        self.criteria = criteria
        self.delay = delay
        self.issued_seq = 0
        self.applied_seq = 0
        self.in_flight = 0
        self.last_error: Optional[str] = None
        self._pending: Optional[asyncio.Task] = None
        self._requests: set[asyncio.Task] = set()

    @property
    def is_generating(self) -> bool:
        return self.in_flight > 0 or (self._pending is not None and not self._pending.done())

    def schedule(self) -> None:
        self.cancel_pending()
        self._pending = asyncio.get_running_loop().create_task(self._delayed())

    def cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def _delayed(self) -> None:
        await asyncio.sleep(self.delay)
        self._pending = None
        task = asyncio.current_task()
        self._requests.add(task)
        try:
            await self.run()
        finally:
            self._requests.discard(task)

    async def flush(self) -> bool:
        """Skip the debounce delay and request suggestions right away."""
        self.cancel_pending()
        return await self.run()

    async def run(self) -> bool:
        self.issued_seq += 1
        seq = self.issued_seq
        self.in_flight += 1
        try:
            criteria = list(self.criteria())
            notes = await self.request_notes(criteria)
        except SuggestionFailure as exc:
            logger.warning("AI note suggestion #%s failed: %s", seq, exc)
            self.last_error = str(exc)
            return False
        finally:
            self.in_flight -= 1

        if seq != self.issued_seq:
            logger.debug("Discarding stale AI note suggestion #%s (latest is #%s)", seq, self.issued_seq)
            return False
        self.apply(notes)
        self.applied_seq = seq
        self.last_error = None
        return True

    def apply(self, notes: Iterable[GeneratedNote] | Mapping[str, str]) -> list[str]:
        if isinstance(notes, Mapping):
            items = list(notes.items())
        else:
            items = [(n.id, n.note) for n in notes]
        applied = []
        for field_id, text in items:
            if field_id not in self.tracker:
                continue
            if self.tracker.on_ai_suggestion(field_id, text):
                applied.append(field_id)
        return applied

    async def aclose(self) -> None:
        self.cancel_pending()
        for task in list(self._requests):
            task.cancel()
        for task in list(self._requests):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._requests.clear()
