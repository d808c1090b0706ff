# tasktracker/core/errors.py
from typing import Optional


class TaskTrackerError(Exception):
    """Base class for errors raised by the service layer."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFound(TaskTrackerError):
    """Entity is absent, or invisible because it is soft-deleted."""


class InvalidState(NotFound):
    """Entity exists but is not in the state the operation requires.

    Subclasses NotFound so handlers report both the same way.
    """


class StoreFailure(TaskTrackerError):
    """A database operation failed. Transient; safe to retry."""


class PartialSweepFailure(TaskTrackerError):
    """One purge unit of a sweep failed. Other units are unaffected."""

    def __init__(self, user_id: int, cause: Optional[BaseException] = None):
        super().__init__(f"purge of user {user_id} failed: {cause!r}")
        self.user_id = user_id
        self.cause = cause
