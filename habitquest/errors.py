from __future__ import annotations
from typing import Optional


class HabitQuestError(Exception):
    """Base class for domain errors raised by the services."""


class NotFoundError(HabitQuestError, ValueError):
    """A session, chain, habit, profile or group does not resolve for the caller."""


class InvalidIndexError(HabitQuestError, ValueError):
    """Step index out of bounds, or the step is already terminal."""


class ValidationError(HabitQuestError, ValueError):
    """Input rejected before anything was written."""


class SessionStateError(ValidationError):
    """The action does not apply to the session in its current state."""


class ActiveSessionExistsError(SessionStateError):
    def __init__(self, user_id: str, session_id: Optional[int]):
        self.user_id = user_id
        self.session_id = session_id
        super().__init__(
            f"User {user_id} already has an active chain session ({session_id}); complete or abandon it first"
        )


class ConcurrencyConflict(HabitQuestError):
    """Optimistic version check kept failing; the caller may retry."""


class TransactionFailure(HabitQuestError):
    """A multi-part write could not be applied and was rolled back."""
