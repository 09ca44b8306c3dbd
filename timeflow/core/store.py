"""In-memory mirror of one user's clients, projects, tasks and time entries.

Every mutator validates first, writes through the persistence gateway,
and only then touches the in-memory collections. A failed gateway call
raises ``PersistenceError`` with the collections untouched.
"""

from dataclasses import dataclass
from datetime import date, tzinfo

from timeflow.common.errors import InvariantViolation, PersistenceError, ValidationError
from timeflow.common.logger import log
from timeflow.core.gateway import PersistenceGateway
from timeflow.core.mapping import TABLES, changes_to_record, from_record, to_record
from timeflow.core.models import Client, Project, Task, TaskStatus, TimeEntry, new_id, normalize_color
from timeflow.util.formatting import day_end_ms, day_start_ms, now_ms

# Marks "argument not given" where None is itself a meaningful value (clearing a task link).
UNSET = object()

_PROJECT_FIELDS = ("name", "client_id", "color", "is_shared")
_TASK_FIELDS = ("title", "description", "project_id", "assigned_to", "status")


def require_text(value, what):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{what} is required")
    return value.strip()

def _require_millis(value, what):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{what} must be integer epoch milliseconds, got {value!r}")
    return value

# A closed entry has to end strictly after it starts.
def check_interval(start_time, end_time):
    _require_millis(start_time, "Start time")
    _require_millis(end_time, "End time")
    if end_time <= start_time:
        raise ValidationError("End time must be after start time")


@dataclass(frozen=True)
class EntryFilter:
    """Filter for ``EntityStore.list_entries``.

    Date bounds are inclusive local calendar days, matched against the
    entry's start time.
    """
    date_from: date | None = None
    date_to: date | None = None
    project_id: str | None = None
    closed_only: bool = False
    tz: tzinfo | None = None

    def matches(self, entry: TimeEntry) -> bool:
        if self.closed_only and entry.is_running:
            return False
        if self.project_id is not None and entry.project_id != self.project_id:
            return False
        if self.date_from is not None and entry.start_time < day_start_ms(self.date_from, self.tz):
            return False
        if self.date_to is not None and entry.start_time > day_end_ms(self.date_to, self.tz):
            return False
        return True


class EntityStore:

    def __init__(self, gateway: PersistenceGateway, clock=None):
        self.gateway = gateway
        self.clock = clock or now_ms
        self.user_id = None
        self._collections = {cls: {} for cls in TABLES}

    #region === Loading ===

    # Replaces every collection with what the gateway holds for `user_id`. Nothing is swapped in until
    # all four tables have been read, so a failed load keeps the previous contents.
    def load(self, user_id):
        fresh = {}
        for cls, table in TABLES.items():
            records = self.gateway.select(table, user_id)
            entities = {}
            for record in records:
                try:
                    entity = from_record(cls, record)
                except PersistenceError:
                    log.warning(f"Skipping unreadable {table} record {record.get('id')!r}", exc_info=True)
                    continue
                entities[entity.id] = entity
            fresh[cls] = entities
        self._collections = fresh
        self.user_id = user_id
        running = [e for e in self._collections[TimeEntry].values() if e.is_running and e.user_id == user_id]
        if len(running) > 1:
            log.error(f"Loaded {len(running)} running entries for user '{user_id}': {', '.join(e.id for e in running)}")
        log.info(f"Loaded {len(fresh[Client])} clients, {len(fresh[Project])} projects, {len(fresh[Task])} tasks "
                 f"and {len(fresh[TimeEntry])} entries for user '{user_id}'")

    def clear(self):
        self._collections = {cls: {} for cls in TABLES}
        self.user_id = None
        log.info("Cleared in-memory store")

    def require_user(self):
        if self.user_id is None:
            raise ValidationError("No signed-in user")
        return self.user_id

    #endregion === Loading ===

    #region === Write-through helpers ===

    # Gateway first, memory second. The timer writes entries through these too, after doing its own
    # validation.
    def write_insert(self, entity):
        stored = self.gateway.insert(TABLES[type(entity)], to_record(entity))
        entity = from_record(type(entity), stored)
        self._collections[type(entity)][entity.id] = entity
        log.debug(f"Inserted {TABLES[type(entity)]} record '{entity.id}'")
        return entity

    def write_update(self, entity, **changes):
        cls = type(entity)
        if not changes:
            return entity
        stored = self.gateway.update(TABLES[cls], entity.id, changes_to_record(cls, changes))
        entity = from_record(cls, stored)
        self._collections[cls][entity.id] = entity
        log.debug(f"Updated {TABLES[cls]} record '{entity.id}': {', '.join(sorted(changes))}")
        return entity

    def write_delete(self, entity):
        cls = type(entity)
        self.gateway.delete(TABLES[cls], entity.id)
        self._collections[cls].pop(entity.id, None)
        log.debug(f"Deleted {TABLES[cls]} record '{entity.id}'")
        return entity

    def _existing(self, cls, entity_id):
        entity = self._collections[cls].get(entity_id)
        if entity is None:
            raise ValidationError(f"No {cls.__name__.lower()} with id '{entity_id}'")
        return entity

    #endregion === Write-through helpers ===

    #region === Queries ===

    @property
    def clients(self):
        return list(self._collections[Client].values())

    @property
    def projects(self):
        return list(self._collections[Project].values())

    @property
    def tasks(self):
        return list(self._collections[Task].values())

    # Entries in canonical order, newest start first.
    @property
    def entries(self):
        return sorted(self._collections[TimeEntry].values(), key=lambda e: e.start_time, reverse=True)

    def get_client(self, client_id):
        return self._collections[Client].get(client_id)

    def get_project(self, project_id):
        return self._collections[Project].get(project_id)

    def get_task(self, task_id):
        return self._collections[Task].get(task_id)

    def get_entry(self, entry_id):
        return self._collections[TimeEntry].get(entry_id)

    def tasks_for_project(self, project_id):
        return [t for t in self._collections[Task].values() if t.project_id == project_id]

    def list_entries(self, entry_filter: EntryFilter | None = None):
        entries = self.entries
        if entry_filter is None:
            return entries
        return [e for e in entries if entry_filter.matches(e)]

    # The running entry of the current user, derived by scanning. Two or more is data corruption and
    # the caller has to sort it out by hand.
    def active_entry(self):
        running = [e for e in self._collections[TimeEntry].values()
                   if e.is_running and e.user_id == self.user_id]
        if len(running) > 1:
            raise InvariantViolation(
                f"Found {len(running)} running entries ({', '.join(sorted(e.id for e in running))}); "
                "resolve them manually before using the timer")
        return running[0] if running else None

    # Last `limit` distinct projects used by entries, newest first. Deleted projects are skipped.
    def recent_projects(self, limit=5):
        seen = set()
        recent = []
        for entry in self.entries:
            if len(recent) >= limit:
                break
            if entry.project_id in seen:
                continue
            project = self.get_project(entry.project_id)
            if project is not None:
                recent.append(project)
                seen.add(entry.project_id)
        return recent

    #endregion === Queries ===

    #region === Clients ===

    def create_client(self, name):
        user_id = self.require_user()
        client = Client(id=new_id(), user_id=user_id, name=require_text(name, "Client name"))
        client = self.write_insert(client)
        log.info(f"Created client '{client.name}' ({client.id})")
        return client

    # Projects pointing at this client keep their client_id; readers fall back to "unknown".
    def delete_client(self, client_id):
        client = self._existing(Client, client_id)
        self.write_delete(client)
        log.info(f"Deleted client '{client.name}' ({client.id})")
        return client

    #endregion === Clients ===

    #region === Projects ===

    # The client reference isn't checked against known clients; that's up to the gateway or the caller.
    def create_project(self, name, client_id, color, is_shared=False):
        user_id = self.require_user()
        project = Project(
            id=new_id(),
            user_id=user_id,
            client_id=require_text(client_id, "Client"),
            name=require_text(name, "Project name"),
            color=normalize_color(color),
            is_shared=bool(is_shared),
        )
        project = self.write_insert(project)
        log.info(f"Created project '{project.name}' ({project.id}) for client {project.client_id}")
        return project

    def update_project(self, project_id, **fields):
        project = self._existing(Project, project_id)
        unknown = set(fields) - set(_PROJECT_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update project fields: {', '.join(sorted(unknown))}")
        if "name" in fields:
            fields["name"] = require_text(fields["name"], "Project name")
        if "client_id" in fields:
            fields["client_id"] = require_text(fields["client_id"], "Client")
        if "color" in fields:
            fields["color"] = normalize_color(fields["color"])
        if "is_shared" in fields:
            fields["is_shared"] = bool(fields["is_shared"])
        return self.write_update(project, **fields)

    # Entries keep pointing at the deleted project id.
    def delete_project(self, project_id):
        project = self._existing(Project, project_id)
        self.write_delete(project)
        log.info(f"Deleted project '{project.name}' ({project.id})")
        return project

    #endregion === Projects ===

    #region === Tasks ===

    def create_task(self, project_id, title, description=None, assigned_to=None):
        user_id = self.require_user()
        task = Task(
            id=new_id(),
            project_id=require_text(project_id, "Project"),
            title=require_text(title, "Task title"),
            created_by=user_id,
            description=description or None,
            status=TaskStatus.PENDING,
            assigned_to=assigned_to or user_id,
            created_at=self.clock(),
        )
        task = self.write_insert(task)
        log.info(f"Created task '{task.title}' ({task.id}) on project {task.project_id}")
        return task

    def update_task(self, task_id, **fields):
        task = self._existing(Task, task_id)
        unknown = set(fields) - set(_TASK_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update task fields: {', '.join(sorted(unknown))}")
        if "title" in fields:
            fields["title"] = require_text(fields["title"], "Task title")
        if "project_id" in fields:
            fields["project_id"] = require_text(fields["project_id"], "Project")
        if "status" in fields:
            fields["status"] = TaskStatus.parse(fields["status"])
        if "description" in fields:
            fields["description"] = fields["description"] or None
        return self.write_update(task, **fields)

    def set_task_status(self, task_id, status):
        return self.update_task(task_id, status=status)

    def delete_task(self, task_id):
        task = self._existing(Task, task_id)
        self.write_delete(task)
        log.info(f"Deleted task '{task.title}' ({task.id})")
        return task

    #endregion === Tasks ===

    #region === Time entries ===

    def add_manual_entry(self, project_id, description, start_time, end_time, task_id=None):
        user_id = self.require_user()
        project_id = require_text(project_id, "Project")
        check_interval(start_time, end_time)
        entry = TimeEntry(
            id=new_id(),
            user_id=user_id,
            project_id=project_id,
            task_id=task_id or None,
            description=description or "",
            start_time=start_time,
            end_time=end_time,
        )
        entry = self.write_insert(entry)
        log.info(f"Added manual entry {entry.id} on project {project_id} ({start_time} -> {end_time})")
        return entry

    # Full edit of a closed entry. Running entries go through the timer's amend instead, which leaves
    # their timing alone.
    def update_entry(self, entry_id, project_id, description, start_time, end_time, task_id=UNSET):
        entry = self._existing(TimeEntry, entry_id)
        if entry.is_running:
            raise ValidationError("A running entry can't be edited directly; amend or stop it first")
        project_id = require_text(project_id, "Project")
        check_interval(start_time, end_time)
        changes = {
            "project_id": project_id,
            "description": description or "",
            "start_time": start_time,
            "end_time": end_time,
        }
        if task_id is not UNSET:
            changes["task_id"] = task_id or None
        changes = {k: v for k, v in changes.items() if getattr(entry, k) != v}
        return self.write_update(entry, **changes)

    def delete_entry(self, entry_id):
        entry = self._existing(TimeEntry, entry_id)
        self.write_delete(entry)
        log.info(f"Deleted entry {entry.id}")
        return entry

    #endregion === Time entries ===
