"""Error taxonomy shared by the quiz engine, services and routers."""


class TrainingCenterError(Exception):
    """Base class for all application errors."""


class NotFound(TrainingCenterError):
    """A quiz, session or evaluation that was asked for does not exist."""


class PersistenceFailure(TrainingCenterError):
    """Saving a result or session failed. The caller may retry."""


class SuggestionFailure(TrainingCenterError):
    """The AI note / question generator could not produce a usable answer."""


class SessionClosed(TrainingCenterError):
    """An answer change was attempted after the attempt stopped accepting input."""


class AttemptNotAllowed(TrainingCenterError):
    """The re-attempt policy refused to start a new graded attempt."""
