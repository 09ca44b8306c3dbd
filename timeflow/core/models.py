"""Entity types for the time-tracking core.

Entities are frozen dataclasses. The store swaps whole instances on every
mutation, so anything handed out to callers is a stable read view.
"""

import re
import uuid
from dataclasses import dataclass, replace
from enum import Enum

from timeflow.common.errors import ValidationError

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

DEFAULT_PROJECT_COLOR = "#1677ff"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            raise ValidationError(f"Unknown task status '{value}'") from None


def new_id() -> str:
    return str(uuid.uuid4())


# Normalizes "#abc" / "#AABBCC" to lowercase 6-digit form, refusing anything else.
def normalize_color(value) -> str:
    if not isinstance(value, str) or not _HEX_COLOR.match(value):
        raise ValidationError(f"Color must be an RGB hex string like '#1677ff', got {value!r}")
    value = value.lower()
    if len(value) == 4:
        value = "#" + "".join(ch * 2 for ch in value[1:])
    return value


class _Entity:

    # Returns a copy with the given fields changed.
    def evolve(self, **changes):
        return replace(self, **changes)

    # Camel-style mapping for presentation consumers, driven by the same schema as persistence.
    def to_view(self) -> dict:
        from timeflow.core.mapping import to_view
        return to_view(self)


@dataclass(frozen=True)
class Client(_Entity):
    id: str
    user_id: str
    name: str


@dataclass(frozen=True)
class Project(_Entity):
    id: str
    user_id: str
    client_id: str
    name: str
    color: str = DEFAULT_PROJECT_COLOR
    is_shared: bool = False


@dataclass(frozen=True)
class Task(_Entity):
    id: str
    project_id: str
    title: str
    created_by: str
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: str | None = None
    created_at: int | None = None


@dataclass(frozen=True)
class TimeEntry(_Entity):
    id: str
    user_id: str
    project_id: str
    start_time: int
    end_time: int | None = None
    description: str = ""
    task_id: str | None = None

    @property
    def is_running(self) -> bool:
        return self.end_time is None

    # Zero while running; historical totals only count closed entries.
    @property
    def duration_ms(self) -> int:
        if self.end_time is None:
            return 0
        return self.end_time - self.start_time
