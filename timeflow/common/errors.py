from dataclasses import dataclass
from typing import Any


# Base for everything the core raises on purpose. Anything else escaping the core is a bug.
class TimeflowError(Exception):
    pass

# Caller handed us data that breaks a precondition (end before start, missing project, unknown id...).
# Raised before any persistence call is made.
class ValidationError(TimeflowError):
    pass

# The persistence gateway failed. In-memory state is left exactly as it was before the call.
class PersistenceError(TimeflowError):

    def __init__(self, message, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause

# Insert refused because a record with that id is already stored. `existing` is the stored row, when
# the backend can hand it over.
class DuplicateKeyError(PersistenceError):

    def __init__(self, message, existing: dict | None = None):
        super().__init__(message)
        self.existing = existing

# Update or delete aimed at an id the backend doesn't hold.
class RecordNotFoundError(PersistenceError):
    pass

# Something that can't happen under correct use did happen (two running entries, amending while idle).
# We refuse the operation instead of guessing.
class InvariantViolation(TimeflowError):
    pass


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one action run through the session boundary.

    Exactly one of ``value``/``error`` is meaningful, decided by ``ok``.
    ``value`` may still be ``None`` on success for no-op actions such as
    stopping an idle timer.
    """
    ok: bool
    value: Any = None
    error: TimeflowError | None = None

    @staticmethod
    def success(value=None):
        return ActionResult(ok=True, value=value)

    @staticmethod
    def failure(error):
        return ActionResult(ok=False, error=error)

    @property
    def message(self):
        return str(self.error) if self.error is not None else ""

    # Returns the value, or raises the stored error. Handy in scripts and tests.
    def unwrap(self):
        if not self.ok:
            raise self.error
        return self.value
