"""Session-scoped context that callers drive the core through.

A ``Session`` is built explicitly per signed-in user (or for the local
profile when there is no identity provider) and owns its own store and
timer; nothing is process-global, so several sessions can live side by
side. Mutations go through ``perform``, which runs them one at a time and
turns every expected failure into an ``ActionResult`` instead of an
exception.
"""

import threading
from dataclasses import dataclass

from timeflow.common.errors import ActionResult, InvariantViolation, PersistenceError, ValidationError
from timeflow.common.logger import log
from timeflow.core import aggregation, calendar, export
from timeflow.core.gateway import PersistenceGateway
from timeflow.core.identity import LOCAL_USER_ID, IdentityProvider
from timeflow.core.store import EntityStore, EntryFilter
from timeflow.core.timer_state import TimerStateMachine
from timeflow.util.formatting import now_ms

# action name -> (component attribute, method name)
_ACTIONS = {
    "create_client": ("store", "create_client"),
    "delete_client": ("store", "delete_client"),
    "create_project": ("store", "create_project"),
    "update_project": ("store", "update_project"),
    "delete_project": ("store", "delete_project"),
    "create_task": ("store", "create_task"),
    "update_task": ("store", "update_task"),
    "delete_task": ("store", "delete_task"),
    "set_task_status": ("store", "set_task_status"),
    "add_manual_entry": ("store", "add_manual_entry"),
    "update_entry": ("store", "update_entry"),
    "delete_entry": ("store", "delete_entry"),
    "start": ("timer", "start"),
    "stop": ("timer", "stop"),
    "discard": ("timer", "discard"),
    "amend": ("timer", "amend"),
}

ACTION_NAMES = frozenset(_ACTIONS)


@dataclass(frozen=True)
class Report:
    summary: aggregation.ReportSummary
    by_client: list
    by_project: list


class Session:

    def __init__(self, gateway: PersistenceGateway, identity: IdentityProvider | None = None, clock=None,
                 recent_projects_limit=5):
        self.gateway = gateway
        self.identity = identity
        self.clock = clock or now_ms
        self.recent_projects_limit = recent_projects_limit
        self.store = EntityStore(gateway, self.clock)
        self.timer = TimerStateMachine(self.store, self.clock)
        self._lock = threading.RLock()
        self._unsubscribe = None

        if identity is None:
            self.reload(LOCAL_USER_ID)
        else:
            self._unsubscribe = identity.subscribe(self._on_identity_change)
            user_id = identity.current_user_id()
            if user_id is not None:
                self.reload(user_id)

    @property
    def user_id(self):
        return self.store.user_id

    @property
    def signed_in(self):
        return self.store.user_id is not None

    #region === Identity and loading ===

    def _on_identity_change(self, user_id):
        with self._lock:
            if user_id is None:
                self.store.clear()
            else:
                self.reload(user_id)

    # (Re)loads everything for `user_id`, defaulting to whoever is current. A failed load keeps the
    # previous contents and comes back as a failed result.
    def reload(self, user_id=None) -> ActionResult:
        with self._lock:
            if user_id is None:
                user_id = self.store.user_id
            if user_id is None and self.identity is not None:
                user_id = self.identity.current_user_id()
            if user_id is None:
                return ActionResult.failure(ValidationError("No signed-in user"))
            try:
                self.store.load(user_id)
            except PersistenceError as e:
                log.warning(f"Could not load data for user '{user_id}': {e}")
                return ActionResult.failure(e)
            return ActionResult.success(user_id)

    def close(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.gateway.close()

    #endregion === Identity and loading ===

    #region === Actions ===

    def perform(self, action, *args, **kwargs) -> ActionResult:
        if action not in _ACTIONS:
            raise ValueError(f"Unknown action '{action}'")
        component, method = _ACTIONS[action]
        handler = getattr(getattr(self, component), method)
        with self._lock:
            if not self.signed_in:
                log.warning(f"Action '{action}' refused, nobody is signed in")
                return ActionResult.failure(ValidationError("No signed-in user"))
            try:
                value = handler(*args, **kwargs)
            except InvariantViolation as e:
                log.error(f"Refused '{action}': {e}")
                return ActionResult.failure(e)
            except (ValidationError, PersistenceError) as e:
                log.warning(f"Action '{action}' failed: {e}")
                return ActionResult.failure(e)
        return ActionResult.success(value)

    #endregion === Actions ===

    #region === Queries ===

    @property
    def clients(self):
        return self.store.clients

    @property
    def projects(self):
        return self.store.projects

    @property
    def tasks(self):
        return self.store.tasks

    @property
    def entries(self):
        return self.store.entries

    # Raises InvariantViolation when the data holds more than one running entry.
    def active_entry(self):
        return self.store.active_entry()

    def list_entries(self, entry_filter: EntryFilter | None = None):
        return self.store.list_entries(entry_filter)

    def recent_projects(self):
        return self.store.recent_projects(self.recent_projects_limit)

    def report(self, entry_filter: EntryFilter | None = None) -> Report:
        entries = self.store.list_entries(entry_filter)
        projects, clients = self.store.projects, self.store.clients
        return Report(
            summary=aggregation.summarize(entries, projects, clients),
            by_client=aggregation.group_by_client(entries, projects, clients),
            by_project=aggregation.group_by_project(entries, projects, clients),
        )

    def calendar_view(self, mode, anchor, tz=None):
        return calendar.entries_by_view(self.store.entries, mode, anchor, tz)

    def export_rows(self, entry_filter: EntryFilter | None = None, tz=None):
        return export.export_rows(self.store.list_entries(entry_filter), self.store.projects, self.store.clients, tz)

    #endregion === Queries ===
