"""Co-authoring of evaluation notes with the AI note generator."""

import asyncio

import pytest

from training_center.engine.notes import NoteOwner, NoteOwnershipTracker, NoteSuggestionScheduler
from training_center.errors import SuggestionFailure
from training_center.schemas import CriterionForNotes, GeneratedNote
from training_center.services.evaluation_service import EvaluationDraft
from training_center.services.final_evaluation_service import FINAL_CRITERIA_BY_ID, FinalEvaluationDraft

CRITERIA = [CriterionForNotes(id="x", name="Teamwork", score=4), CriterionForNotes(id="y", name="Focus", score=2)]


def test_user_text_wins_over_ai():
    tracker = NoteOwnershipTracker(["x"])
    tracker.on_user_edit("x", "hello")

    assert tracker.on_ai_suggestion("x", "ai text") is False
    assert tracker.text("x") == "hello"
    assert tracker.owner("x") is NoteOwner.USER


def test_clearing_a_note_hands_it_back_to_ai():
    tracker = NoteOwnershipTracker(["x"])
    tracker.on_user_edit("x", "hello")
    tracker.on_user_edit("x", "")

    assert tracker.owner("x") is NoteOwner.EMPTY
    assert tracker.on_ai_suggestion("x", "ai text") is True
    assert tracker.text("x") == "ai text"
    assert tracker.owner("x") is NoteOwner.AI


def test_whitespace_only_edit_counts_as_empty():
    tracker = NoteOwnershipTracker(["x"])
    tracker.on_user_edit("x", "   ")
    assert tracker.owner("x") is NoteOwner.EMPTY


def test_ai_may_replace_its_own_text():
    tracker = NoteOwnershipTracker(["x"])
    tracker.on_ai_suggestion("x", "first")
    tracker.on_ai_suggestion("x", "second")
    assert tracker.text("x") == "second"
    assert tracker.owner("x") is NoteOwner.AI


def test_loaded_notes_are_user_owned():
    tracker = NoteOwnershipTracker()
    tracker.load("x", "saved before")
    tracker.load("y", "")

    assert tracker.owner("x") is NoteOwner.USER
    assert tracker.owner("y") is NoteOwner.EMPTY
    assert tracker.on_ai_suggestion("x", "ai") is False


class ControlledNotes:
    """request_notes double whose responses are released by the test."""

    def __init__(self):
        self.calls = []
        self.gates = []

    async def __call__(self, criteria):
        gate = asyncio.Event()
        index = len(self.calls)
        self.calls.append(list(criteria))
        self.gates.append(gate)
        await gate.wait()
        return [GeneratedNote(id=c.id, note=f"response {index + 1} for {c.id}") for c in criteria]


def test_stale_response_is_discarded():
    tracker = NoteOwnershipTracker(["x", "y"])
    notes = ControlledNotes()
    scheduler = NoteSuggestionScheduler(tracker, notes, lambda: CRITERIA, delay=0)

    async def scenario():
        first = asyncio.ensure_future(scheduler.run())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(scheduler.run())
        await asyncio.sleep(0)
        # #2 resolves first, then #1 arrives late
        notes.gates[1].set()
        assert await second is True
        notes.gates[0].set()
        assert await first is False

    asyncio.run(scenario())

    assert tracker.text("x") == "response 2 for x"
    assert tracker.text("y") == "response 2 for y"
    assert scheduler.applied_seq == 2


def test_out_of_date_response_is_discarded_even_in_order():
    tracker = NoteOwnershipTracker(["x"])
    notes = ControlledNotes()
    scheduler = NoteSuggestionScheduler(tracker, notes, lambda: CRITERIA[:1], delay=0)

    async def scenario():
        first = asyncio.ensure_future(scheduler.run())
        await asyncio.sleep(0)
        second = asyncio.ensure_future(scheduler.run())
        await asyncio.sleep(0)
        notes.gates[0].set()
        assert await first is False
        notes.gates[1].set()
        assert await second is True

    asyncio.run(scenario())
    assert tracker.text("x") == "response 2 for x"


def test_debounce_sends_one_request_for_a_burst_of_changes():
    tracker = NoteOwnershipTracker(["x", "y"])
    calls = []

    async def request_notes(criteria):
        calls.append(list(criteria))
        return [GeneratedNote(id="x", note="ai x"), GeneratedNote(id="y", note="ai y")]

    scheduler = NoteSuggestionScheduler(tracker, request_notes, lambda: CRITERIA, delay=0.05)

    async def scenario():
        tracker.on_user_edit("y", "mine")
        for _ in range(5):
            scheduler.schedule()
            await asyncio.sleep(0.01)
        assert calls == []
        assert scheduler.is_generating is True
        await asyncio.sleep(0.15)

    asyncio.run(scenario())

    assert len(calls) == 1
    assert tracker.text("x") == "ai x"
    assert tracker.text("y") == "mine"
    assert scheduler.is_generating is False


def test_failure_is_swallowed_and_fields_untouched():
    tracker = NoteOwnershipTracker(["x"])
    tracker.on_ai_suggestion("x", "previous")

    async def failing(criteria):
        raise SuggestionFailure("quota exceeded")

    scheduler = NoteSuggestionScheduler(tracker, failing, lambda: CRITERIA, delay=0)

    assert asyncio.run(scheduler.flush()) is False
    assert scheduler.last_error == "quota exceeded"
    assert tracker.text("x") == "previous"


def test_unknown_fields_in_response_are_ignored():
    tracker = NoteOwnershipTracker(["x"])
    scheduler = NoteSuggestionScheduler(tracker, None, lambda: [], delay=0)

    applied = scheduler.apply({"x": "ok", "zzz": "ignored"})

    assert applied == ["x"]
    assert "zzz" not in tracker


def test_aclose_cancels_pending_request():
    tracker = NoteOwnershipTracker(["x"])
    calls = []

    async def request_notes(criteria):
        calls.append(criteria)
        return []

    scheduler = NoteSuggestionScheduler(tracker, request_notes, lambda: CRITERIA, delay=0.05)

    async def scenario():
        scheduler.schedule()
        await scheduler.aclose()
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert calls == []


async def _no_notes(criteria):
    return []


def test_rejected_draft_change_leaves_draft_untouched():
    draft = EvaluationDraft(1, _no_notes)

    with pytest.raises(ValueError):
        draft.update(
            scores={"classroomSkills.teamwork": 5, "technicalSkills.deviceUsage": 9},
            notes={"classroomSkills.teamwork": "typed"},
            overall_rating="Excellent",
        )

    assert draft.scores["classroomSkills.teamwork"] == 3
    assert draft.tracker.text("classroomSkills.teamwork") == ""
    assert draft.overall_rating == "Good"
    assert draft.scheduler.is_generating is False


def test_final_draft_uses_its_own_catalog():
    draft = FinalEvaluationDraft(1, _no_notes)

    assert set(draft.criteria()) == set(FINAL_CRITERIA_BY_ID)
    with pytest.raises(ValueError):
        draft.update(scores={"classroomSkills.teamwork": 4})
    assert draft.missing_fields() == ["trainer_name", "training_period_start", "training_period_end"]
