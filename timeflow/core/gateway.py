"""Persistence gateway contract and the in-process implementations.

A gateway is the system of record. The entity store talks to it with
plain dict records (underscore column names, epoch-ms integers) and
expects every failure to come back as a ``PersistenceError``.
"""

import copy
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from timeflow.common.errors import DuplicateKeyError, PersistenceError, RecordNotFoundError
from timeflow.common.logger import log

TABLE_NAMES = ("clients", "projects", "tasks", "time_entries")


# Decides which rows of `table` a user gets to see. Own rows always; shared projects for everyone;
# tasks when the user created them, was assigned them, or can see their project.
def visible_records(tables: dict, table: str, user_id) -> list:
    rows = tables.get(table, [])
    if user_id is None:
        return list(rows)
    if table == "projects":
        return [r for r in rows if r.get("user_id") == user_id or r.get("is_shared")]
    if table == "tasks":
        project_ids = {p["id"] for p in visible_records(tables, "projects", user_id)}
        return [r for r in rows
                if r.get("created_by") == user_id
                or r.get("assigned_to") == user_id
                or r.get("project_id") in project_ids]
    return [r for r in rows if r.get("user_id") == user_id]


class PersistenceGateway:
    """Interface every storage backend implements.

    ``insert`` and ``update`` return the stored record as the backend now
    holds it. ``select`` applies the backend's visibility policy for the
    given user.
    """

    def insert(self, table: str, record: dict) -> dict:
        raise NotImplementedError

    def update(self, table: str, record_id: str, changes: dict) -> dict:
        raise NotImplementedError

    def delete(self, table: str, record_id: str) -> None:
        raise NotImplementedError

    def select(self, table: str, user_id=None) -> list:
        raise NotImplementedError

    def close(self):
        pass


# Dict-backed gateway. Good for tests and throwaway sessions; also the base for the JSON file store,
# which only adds loading and flushing around these same operations.
class InMemoryGateway(PersistenceGateway):

    def __init__(self, tables: dict | None = None):
        self._lock = threading.RLock()
        self.tables = {name: [] for name in TABLE_NAMES}
        if tables:
            for name, rows in tables.items():
                self.tables[self._check_table(name)] = copy.deepcopy(list(rows))

    @staticmethod
    def _check_table(table):
        if table not in TABLE_NAMES:
            raise PersistenceError(f"Unknown table '{table}'")
        return table

    def _find(self, table, record_id):
        for i, row in enumerate(self.tables[table]):
            if row.get("id") == record_id:
                return i
        raise RecordNotFoundError(f"No {table} record with id '{record_id}'")

    # Called after every successful write. Subclasses hook durability in here.
    def _commit(self):
        pass

    def insert(self, table, record):
        with self._lock:
            self._check_table(table)
            if not record.get("id"):
                raise PersistenceError(f"Refusing to insert a {table} record without an id")
            for row in self.tables[table]:
                if row.get("id") == record["id"]:
                    raise DuplicateKeyError(f"Duplicate key: {table} record '{record['id']}' already exists",
                                            existing=copy.deepcopy(row))
            stored = copy.deepcopy(record)
            self.tables[table].append(stored)
            self._commit_or_rollback(lambda: self.tables[table].remove(stored))
            return copy.deepcopy(stored)

    def update(self, table, record_id, changes):
        with self._lock:
            self._check_table(table)
            index = self._find(table, record_id)
            previous = self.tables[table][index]
            updated = {**previous, **copy.deepcopy(changes), "id": record_id}
            self.tables[table][index] = updated

            def undo():
                self.tables[table][index] = previous
            self._commit_or_rollback(undo)
            return copy.deepcopy(updated)

    def delete(self, table, record_id):
        with self._lock:
            self._check_table(table)
            index = self._find(table, record_id)
            removed = self.tables[table].pop(index)
            self._commit_or_rollback(lambda: self.tables[table].insert(index, removed))

    def select(self, table, user_id=None):
        with self._lock:
            self._check_table(table)
            return copy.deepcopy(visible_records(self.tables, table, user_id))

    def _commit_or_rollback(self, undo):
        try:
            self._commit()
        except PersistenceError:
            undo()
            raise


class RetryingGateway(PersistenceGateway):
    """Wraps a gateway with a per-call timeout and a bounded retry.

    A call that times out or raises ``PersistenceError`` is tried again
    up to ``retries`` more times; the last failure is surfaced. Timed-out
    calls keep running on the worker thread and may still land. So once
    an attempt has timed out, a retried ``insert`` that hits a duplicate
    key with identical content counts as stored, and a retried
    ``delete`` that finds nothing counts as deleted.
    """

    def __init__(self, inner: PersistenceGateway, timeout: float = 10.0, retries: int = 1):
        self.inner = inner
        self.timeout = timeout
        self.retries = max(0, int(retries))
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="timeflow-gateway")

    def _call(self, op_name, *args):
        attempts = self.retries + 1
        last_error = None
        timed_out = False
        for attempt in range(1, attempts + 1):
            future = self._pool.submit(getattr(self.inner, op_name), *args)
            try:
                return future.result(timeout=self.timeout)
            except FutureTimeout as e:
                timed_out = True
                last_error = PersistenceError(f"Gateway {op_name} timed out after {self.timeout}s", cause=e)
            except DuplicateKeyError as e:
                if timed_out and op_name == "insert" and e.existing == args[1]:
                    log.info(f"Insert into '{args[0]}' had already landed before timing out, keeping it")
                    return copy.deepcopy(e.existing)
                last_error = e
            except RecordNotFoundError as e:
                if timed_out and op_name == "delete":
                    log.info(f"Delete from '{args[0]}' had already landed before timing out")
                    return None
                last_error = e
            except PersistenceError as e:
                last_error = e
            log.warning(f"Gateway {op_name} on '{args[0]}' failed (attempt {attempt}/{attempts}): {last_error}")
        raise last_error

    def insert(self, table, record):
        return self._call("insert", table, record)

    def update(self, table, record_id, changes):
        return self._call("update", table, record_id, changes)

    def delete(self, table, record_id):
        return self._call("delete", table, record_id)

    def select(self, table, user_id=None):
        return self._call("select", table, user_id)

    def close(self):
        self._pool.shutdown(wait=False)
        self.inner.close()
