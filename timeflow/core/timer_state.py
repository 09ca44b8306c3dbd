from timeflow.common.errors import InvariantViolation, PersistenceError
from timeflow.common.logger import log
from timeflow.core.models import TimeEntry, new_id
from timeflow.core.store import UNSET, EntityStore, require_text
from timeflow.util.formatting import now_ms

IDLE = "idle"
RUNNING = "running"

# This object drives the single running timer of a user. It holds no state of its own: "running" is
# whatever entry in the store has no end time, so the store and the timer can never disagree.
class TimerStateMachine:

    def __init__(self, store: EntityStore, clock=None):
        self.store = store
        self.clock = clock or store.clock or now_ms

    @property
    def state(self):
        return RUNNING if self.store.active_entry() is not None else IDLE

    @property
    def active_entry(self):
        return self.store.active_entry()

    # Live elapsed milliseconds of the running entry, 0 when idle. Display only, never aggregated.
    def elapsed_ms(self, now=None):
        entry = self.store.active_entry()
        if entry is None:
            return 0
        now = self.clock() if now is None else now
        return max(0, now - entry.start_time)

    # Closes `entry` at `at`. If the clock went backwards past the start we clamp to one millisecond
    # after it rather than write an entry that ends before it begins.
    def _close(self, entry, at):
        end_time = at
        if end_time <= entry.start_time:
            end_time = entry.start_time + 1
            log.warning(f"Clock reads {at} which is not after entry {entry.id} start {entry.start_time}, "
                        f"clamping end time to {end_time}")
        closed = self.store.write_update(entry, end_time=end_time)
        log.info(f"Stopped entry {closed.id} after {closed.duration_ms} ms")
        return closed

    # Starts a new entry now. A running entry gets stopped first at the same instant, and the new one
    # starts exactly where it ended, so the two never overlap. If the stop goes through but the create
    # fails we stay idle and the error propagates.
    def start(self, project_id, description="", task_id=None):
        user_id = self.store.require_user()
        project_id = require_text(project_id, "Project")
        running = self.store.active_entry()
        start_time = self.clock()
        if running is not None:
            log.debug(f"Auto-stopping entry {running.id} before starting a new one")
            start_time = self._close(running, start_time).end_time

        entry = TimeEntry(
            id=new_id(),
            user_id=user_id,
            project_id=project_id,
            task_id=task_id or None,
            description=description or "",
            start_time=start_time,
            end_time=None,
        )
        try:
            entry = self.store.write_insert(entry)
        except PersistenceError:
            if running is not None:
                log.warning(f"Stopped entry {running.id} but could not start the new one, timer is now idle")
            raise
        log.info(f"Started entry {entry.id} on project {project_id} at {start_time}")
        return entry

    # Stopping an idle timer does nothing and returns None.
    def stop(self):
        running = self.store.active_entry()
        if running is None:
            log.debug("Stop requested while idle, nothing to do")
            return None
        return self._close(running, self.clock())

    # Throws the running entry away entirely. Not undoable.
    def discard(self):
        running = self.store.active_entry()
        if running is None:
            log.debug("Discard requested while idle, nothing to do")
            return None
        self.store.write_delete(running)
        log.info(f"Discarded running entry {running.id}")
        return running

    # Edits the running entry in place without touching its timing. None keeps the current project or
    # description; task_id=None unlinks the task.
    def amend(self, project_id=None, description=None, task_id=UNSET):
        running = self.store.active_entry()
        if running is None:
            raise InvariantViolation("There is no running entry to amend")
        changes = {}
        if project_id is not None:
            changes["project_id"] = require_text(project_id, "Project")
        if description is not None:
            changes["description"] = description
        if task_id is not UNSET:
            changes["task_id"] = task_id or None
        changes = {k: v for k, v in changes.items() if getattr(running, k) != v}
        if not changes:
            return running
        return self.store.write_update(running, **changes)
