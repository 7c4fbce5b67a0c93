"""Quiz-taking and note co-authoring engine (no web or database code in here)."""

from training_center.engine.answer_store import AnswerStore
from training_center.engine.notes import (
    NoteOwner,
    NoteOwnershipTracker,
    NoteSuggestionScheduler,
)
from training_center.engine.runner import (
    AttemptMode,
    QuizGateway,
    QuizRunner,
    RunnerState,
    SessionSnapshot,
)
from training_center.engine.scoring import DEFAULT_POLICY, ScoringPolicy, score
from training_center.engine.timer import CountdownTimer

__all__ = [
    "AnswerStore",
    "AttemptMode",
    "CountdownTimer",
    "DEFAULT_POLICY",
    "NoteOwner",
    "NoteOwnershipTracker",
    "NoteSuggestionScheduler",
    "QuizGateway",
    "QuizRunner",
    "RunnerState",
    "ScoringPolicy",
    "SessionSnapshot",
    "score",
]
