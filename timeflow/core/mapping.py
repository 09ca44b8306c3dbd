"""Bidirectional mapping between persisted records and entities.

Persisted records use underscore column names and integer epoch
milliseconds (some transports hand numbers back as text, so those are
parsed). Each entity has an explicit schema below; nothing is mapped by
guessing attribute names, so a column the schema doesn't know about is
reported instead of silently becoming a new attribute.
"""

from dataclasses import dataclass

from timeflow.common.errors import PersistenceError, ValidationError
from timeflow.common.logger import log
from timeflow.core.models import Client, Project, Task, TaskStatus, TimeEntry


@dataclass(frozen=True)
class FieldSpec:
    attr: str           # dataclass attribute
    column: str         # persisted column
    view: str           # camel-style key handed to presentation
    kind: str           # "str", "millis", "bool" or "status"
    required: bool = True
    nullable: bool = False
    null_as: str | None = None  # stored null is read back as this


SCHEMAS = {
    Client: (
        FieldSpec("id", "id", "id", "str"),
        FieldSpec("user_id", "user_id", "userId", "str"),
        FieldSpec("name", "name", "name", "str"),
    ),
    Project: (
        FieldSpec("id", "id", "id", "str"),
        FieldSpec("user_id", "user_id", "userId", "str"),
        FieldSpec("client_id", "client_id", "clientId", "str"),
        FieldSpec("name", "name", "name", "str"),
        FieldSpec("color", "color", "color", "str", required=False),
        FieldSpec("is_shared", "is_shared", "isShared", "bool", required=False),
    ),
    Task: (
        FieldSpec("id", "id", "id", "str"),
        FieldSpec("project_id", "project_id", "projectId", "str"),
        FieldSpec("title", "title", "title", "str"),
        FieldSpec("description", "description", "description", "str", required=False, nullable=True),
        FieldSpec("status", "status", "status", "status", required=False),
        FieldSpec("assigned_to", "assigned_to", "assignedTo", "str", required=False, nullable=True),
        FieldSpec("created_by", "created_by", "createdBy", "str"),
        FieldSpec("created_at", "created_at", "createdAt", "millis", required=False, nullable=True),
    ),
    TimeEntry: (
        FieldSpec("id", "id", "id", "str"),
        FieldSpec("user_id", "user_id", "userId", "str"),
        FieldSpec("project_id", "project_id", "projectId", "str"),
        FieldSpec("task_id", "task_id", "taskId", "str", required=False, nullable=True),
        FieldSpec("description", "description", "description", "str", required=False, null_as=""),
        FieldSpec("start_time", "start_time", "startTime", "millis"),
        FieldSpec("end_time", "end_time", "endTime", "millis", nullable=True),
    ),
}

TABLES = {
    Client: "clients",
    Project: "projects",
    Task: "tasks",
    TimeEntry: "time_entries",
}

#region === Value codecs ===

def parse_millis(value) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Expected epoch milliseconds, got boolean {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Expected whole epoch milliseconds, got {value!r}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        # Some transports send "1700000000000.0"
        if "." in text:
            return parse_millis(float(text))
        return int(text)
    raise ValueError(f"Expected epoch milliseconds, got {type(value).__name__}")

def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0", "t", "f"):
        return value.strip().lower() in ("true", "1", "t")
    raise ValueError(f"Expected a boolean, got {value!r}")

def _decode(spec: FieldSpec, value):
    if value is None:
        if spec.null_as is not None:
            return spec.null_as
        if spec.nullable:
            return None
        raise ValueError("null is not allowed")
    if spec.kind == "millis":
        return parse_millis(value)
    if spec.kind == "bool":
        return parse_bool(value)
    if spec.kind == "status":
        return TaskStatus(str(value))
    if not isinstance(value, str):
        raise ValueError(f"Expected text, got {type(value).__name__}")
    return value

def _encode(spec: FieldSpec, value):
    if isinstance(value, TaskStatus):
        return value.value
    return value

#endregion === Value codecs ===

# Builds an entity of type `cls` from a persisted record. Raises PersistenceError when the record can't
# be trusted, since it came from the system of record rather than the caller.
def from_record(cls, record: dict):
    schema = SCHEMAS[cls]
    kwargs = {}
    for spec in schema:
        if spec.column not in record:
            if spec.required:
                raise PersistenceError(f"{TABLES[cls]} record is missing required column '{spec.column}'")
            continue
        try:
            kwargs[spec.attr] = _decode(spec, record[spec.column])
        except ValueError as e:
            raise PersistenceError(f"{TABLES[cls]}.{spec.column} has an invalid value: {e}", cause=e) from e
    unknown = set(record) - {spec.column for spec in schema}
    if unknown:
        log.debug(f"Ignoring unmapped {TABLES[cls]} columns: {', '.join(sorted(unknown))}")
    return cls(**kwargs)

def to_record(entity) -> dict:
    return {spec.column: _encode(spec, getattr(entity, spec.attr)) for spec in SCHEMAS[type(entity)]}

def to_view(entity) -> dict:
    return {spec.view: _encode(spec, getattr(entity, spec.attr)) for spec in SCHEMAS[type(entity)]}

# Translates attribute-named changes into a column-named partial record for gateway updates.
def changes_to_record(cls, changes: dict) -> dict:
    by_attr = {spec.attr: spec for spec in SCHEMAS[cls]}
    record = {}
    for attr, value in changes.items():
        spec = by_attr.get(attr)
        if spec is None or attr == "id":
            raise ValidationError(f"'{attr}' is not an editable {cls.__name__} field")
        record[spec.column] = _encode(spec, value)
    return record
