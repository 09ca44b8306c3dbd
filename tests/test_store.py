"""Tests for EntityStore: CRUD, write-through semantics and entry queries."""

import unittest
from datetime import date, timezone

from timeflow.common.errors import InvariantViolation, PersistenceError, ValidationError
from timeflow.core.gateway import InMemoryGateway
from timeflow.core.models import TaskStatus
from timeflow.core.store import EntityStore, EntryFilter, require_text

from fakes import FakeClock, FlakyGateway, utc_ms


class StoreTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.gateway = FlakyGateway()
        self.store = EntityStore(self.gateway, self.clock)
        self.store.load("alice")
        self.client = self.store.create_client("ACME")
        self.project = self.store.create_project("Website", self.client.id, "#ff0000")


# ──────────────────────────────────────────────────────────────────────────
# Clients and projects
# ──────────────────────────────────────────────────────────────────────────

class TestClientsAndProjects(StoreTestCase):

    def test_create_client_persists_and_caches(self):
        self.assertEqual(self.client.user_id, "alice")
        self.assertEqual(self.store.get_client(self.client.id), self.client)
        stored = self.gateway.inner.select("clients", "alice")
        self.assertEqual(stored, [{"id": self.client.id, "user_id": "alice", "name": "ACME"}])

    def test_blank_client_name_rejected_before_persisting(self):
        calls = len(self.gateway.calls)
        with self.assertRaises(ValidationError):
            self.store.create_client("   ")
        self.assertEqual(len(self.gateway.calls), calls)

    def test_project_color_normalized(self):
        project = self.store.create_project("Ops", self.client.id, "#ABC")
        self.assertEqual(project.color, "#aabbcc")
        with self.assertRaises(ValidationError):
            self.store.create_project("Ops", self.client.id, "red")

    def test_project_for_unknown_client_is_allowed(self):
        project = self.store.create_project("Orphan", "no-such-client", "#000000")
        self.assertEqual(project.client_id, "no-such-client")

    def test_deleting_client_keeps_its_projects(self):
        self.store.delete_client(self.client.id)
        self.assertIsNone(self.store.get_client(self.client.id))
        self.assertEqual(self.store.get_project(self.project.id).client_id, self.client.id)

    def test_update_project_fields(self):
        updated = self.store.update_project(self.project.id, name="Web 2", is_shared=True, color="#00FF00")
        self.assertEqual(updated.name, "Web 2")
        self.assertTrue(updated.is_shared)
        self.assertEqual(updated.color, "#00ff00")
        self.assertEqual(self.store.get_project(self.project.id), updated)

    def test_update_project_rejects_unknown_fields(self):
        with self.assertRaises(ValidationError):
            self.store.update_project(self.project.id, owner="bob")

    def test_deleting_project_keeps_its_entries(self):
        entry = self.store.add_manual_entry(self.project.id, "work", 1000, 5000)
        self.store.delete_project(self.project.id)
        self.assertEqual(self.store.get_entry(entry.id).project_id, self.project.id)

    def test_unknown_id_on_delete(self):
        with self.assertRaises(ValidationError):
            self.store.delete_project("missing")


# ──────────────────────────────────────────────────────────────────────────
# Tasks
# ──────────────────────────────────────────────────────────────────────────

class TestTasks(StoreTestCase):

    def test_create_task_defaults(self):
        task = self.store.create_task(self.project.id, "Design")
        self.assertEqual(task.status, TaskStatus.PENDING)
        self.assertEqual(task.assigned_to, "alice")
        self.assertEqual(task.created_by, "alice")
        self.assertEqual(task.created_at, self.clock.now)
        self.assertIsNone(task.description)

    def test_set_task_status(self):
        task = self.store.create_task(self.project.id, "Design")
        updated = self.store.set_task_status(task.id, "completed")
        self.assertIs(updated.status, TaskStatus.COMPLETED)
        with self.assertRaises(ValidationError):
            self.store.set_task_status(task.id, "blocked")

    def test_update_and_delete_task(self):
        task = self.store.create_task(self.project.id, "Design", "first pass", assigned_to="bob")
        updated = self.store.update_task(task.id, title="Redesign", description="")
        self.assertEqual(updated.title, "Redesign")
        self.assertIsNone(updated.description)
        self.assertEqual(self.store.tasks_for_project(self.project.id), [updated])
        self.store.delete_task(task.id)
        self.assertEqual(self.store.tasks, [])


# ──────────────────────────────────────────────────────────────────────────
# Time entries
# ──────────────────────────────────────────────────────────────────────────

class TestEntries(StoreTestCase):

    def test_manual_entry_round_trip(self):
        entry = self.store.add_manual_entry(self.project.id, "desc", 1000, 5000)
        read_back = self.store.get_entry(entry.id)
        self.assertEqual(read_back.start_time, 1000)
        self.assertEqual(read_back.end_time, 5000)
        self.assertEqual(read_back.description, "desc")
        self.assertEqual(read_back.project_id, self.project.id)

        fresh = EntityStore(self.gateway, self.clock)
        fresh.load("alice")
        self.assertEqual(fresh.get_entry(entry.id), read_back)

    def test_manual_entry_interval_must_be_positive(self):
        with self.assertRaises(ValidationError):
            self.store.add_manual_entry(self.project.id, "x", 5000, 5000)
        with self.assertRaises(ValidationError):
            self.store.add_manual_entry(self.project.id, "x", 5000, 1000)
        with self.assertRaises(ValidationError):
            self.store.add_manual_entry("", "x", 1000, 5000)

    def test_update_entry_revalidates_interval(self):
        entry = self.store.add_manual_entry(self.project.id, "x", 1000, 5000)
        with self.assertRaises(ValidationError):
            self.store.update_entry(entry.id, self.project.id, "x", 6000, 5000)
        updated = self.store.update_entry(entry.id, self.project.id, "y", 2000, 9000)
        self.assertEqual((updated.start_time, updated.end_time, updated.description), (2000, 9000, "y"))

    def test_update_entry_refuses_running_entry(self):
        base = self.store.add_manual_entry(self.project.id, "x", 1000, 2000)
        self.store.write_insert(base.evolve(id="running", end_time=None))
        with self.assertRaises(ValidationError):
            self.store.update_entry("running", self.project.id, "x", 1000, 2000)

    def test_entries_newest_first(self):
        a = self.store.add_manual_entry(self.project.id, "a", 1000, 2000)
        c = self.store.add_manual_entry(self.project.id, "c", 5000, 6000)
        b = self.store.add_manual_entry(self.project.id, "b", 3000, 4000)
        self.assertEqual([e.id for e in self.store.list_entries()], [c.id, b.id, a.id])

    def test_filter_by_day_range_and_project(self):
        other = self.store.create_project("Other", self.client.id, "#000000")
        monday = self.store.add_manual_entry(self.project.id, "mon", utc_ms(2026, 10, 19, 9), utc_ms(2026, 10, 19, 10))
        tuesday_late = self.store.add_manual_entry(
            self.project.id, "tue", utc_ms(2026, 10, 20, 23, 59), utc_ms(2026, 10, 21, 0, 30))
        self.store.add_manual_entry(self.project.id, "wed", utc_ms(2026, 10, 21, 9), utc_ms(2026, 10, 21, 10))
        self.store.add_manual_entry(other.id, "mon-other", utc_ms(2026, 10, 19, 11), utc_ms(2026, 10, 19, 12))

        window = EntryFilter(date_from=date(2026, 10, 19), date_to=date(2026, 10, 20),
                             project_id=self.project.id, tz=timezone.utc)
        self.assertEqual([e.id for e in self.store.list_entries(window)], [tuesday_late.id, monday.id])

    def test_closed_only_filter(self):
        self.store.add_manual_entry(self.project.id, "done", 1000, 2000)
        self.store.write_insert(self.store.entries[0].evolve(id="live", start_time=3000, end_time=None))
        self.assertEqual(len(self.store.list_entries()), 2)
        self.assertEqual(len(self.store.list_entries(EntryFilter(closed_only=True))), 1)

    def test_recent_projects_distinct_and_existing(self):
        p2 = self.store.create_project("Two", self.client.id, "#000000")
        p3 = self.store.create_project("Three", self.client.id, "#000000")
        self.store.add_manual_entry(self.project.id, "", 1000, 2000)
        self.store.add_manual_entry(p2.id, "", 3000, 4000)
        self.store.add_manual_entry(self.project.id, "", 5000, 6000)
        self.store.add_manual_entry(p3.id, "", 7000, 8000)
        self.store.delete_project(p3.id)
        self.assertEqual([p.id for p in self.store.recent_projects()], [self.project.id, p2.id])
        self.assertEqual(len(self.store.recent_projects(limit=1)), 1)

    def test_two_running_entries_is_an_invariant_violation(self):
        base = self.store.add_manual_entry(self.project.id, "", 1000, 2000)
        self.store.write_insert(base.evolve(id="r1", end_time=None))
        self.store.write_insert(base.evolve(id="r2", end_time=None))
        with self.assertRaises(InvariantViolation):
            self.store.active_entry()


# ──────────────────────────────────────────────────────────────────────────
# Persistence failures and loading
# ──────────────────────────────────────────────────────────────────────────

class TestWriteThroughHelpers(StoreTestCase):

    def test_write_helpers_hit_gateway_then_memory(self):
        entry = self.store.add_manual_entry(self.project.id, "x", 1000, 2000)
        calls = len(self.gateway.calls)
        updated = self.store.write_update(entry, description="y")
        self.assertEqual(self.gateway.calls[calls:], [("update", "time_entries")])
        self.assertEqual(self.store.get_entry(entry.id), updated)
        self.store.write_delete(updated)
        self.assertIsNone(self.store.get_entry(entry.id))
        self.assertEqual(self.gateway.select("time_entries", "alice"), [])

    def test_write_update_without_changes_skips_gateway(self):
        calls = len(self.gateway.calls)
        self.assertEqual(self.store.write_update(self.client), self.client)
        self.assertEqual(len(self.gateway.calls), calls)

    def test_require_text_strips_and_rejects_blank(self):
        self.assertEqual(require_text("  Web  ", "Project"), "Web")
        with self.assertRaises(ValidationError):
            require_text("   ", "Project")


class TestPersistenceFailures(StoreTestCase):

    def test_failed_insert_leaves_memory_untouched(self):
        self.gateway.fail_next("insert", "clients")
        with self.assertRaises(PersistenceError):
            self.store.create_client("Globex")
        self.assertEqual([c.name for c in self.store.clients], ["ACME"])

    def test_failed_update_leaves_memory_untouched(self):
        self.gateway.fail_next("update", "projects")
        with self.assertRaises(PersistenceError):
            self.store.update_project(self.project.id, name="Changed")
        self.assertEqual(self.store.get_project(self.project.id).name, "Website")

    def test_failed_delete_leaves_memory_untouched(self):
        self.gateway.fail_next("delete", "clients")
        with self.assertRaises(PersistenceError):
            self.store.delete_client(self.client.id)
        self.assertIsNotNone(self.store.get_client(self.client.id))

    def test_failed_load_keeps_previous_contents(self):
        self.gateway.fail_next("select", "time_entries")
        with self.assertRaises(PersistenceError):
            self.store.load("bob")
        self.assertEqual(self.store.user_id, "alice")
        self.assertEqual(len(self.store.clients), 1)

    def test_load_skips_unreadable_records(self):
        gateway = InMemoryGateway({"time_entries": [
            {"id": "ok", "user_id": "alice", "project_id": "p", "start_time": 1, "end_time": 2},
            {"id": "bad", "user_id": "alice", "project_id": "p", "start_time": "later", "end_time": None},
        ]})
        store = EntityStore(gateway)
        store.load("alice")
        self.assertEqual([e.id for e in store.entries], ["ok"])

    def test_load_applies_visibility(self):
        gateway = InMemoryGateway({
            "projects": [
                {"id": "mine", "user_id": "alice", "client_id": "c", "name": "Mine"},
                {"id": "shared", "user_id": "bob", "client_id": "c", "name": "Shared", "is_shared": True},
                {"id": "private", "user_id": "bob", "client_id": "c", "name": "Private"},
            ],
            "tasks": [
                {"id": "t1", "project_id": "shared", "title": "On shared", "created_by": "bob"},
                {"id": "t2", "project_id": "private", "title": "Assigned", "created_by": "bob", "assigned_to": "alice"},
                {"id": "t3", "project_id": "private", "title": "Hidden", "created_by": "bob"},
            ],
        })
        store = EntityStore(gateway)
        store.load("alice")
        self.assertEqual({p.id for p in store.projects}, {"mine", "shared"})
        self.assertEqual({t.id for t in store.tasks}, {"t1", "t2"})

    def test_clear_forgets_everything(self):
        self.store.clear()
        self.assertIsNone(self.store.user_id)
        self.assertEqual(self.store.clients, [])
        with self.assertRaises(ValidationError):
            self.store.create_client("Nobody")


if __name__ == "__main__":
    unittest.main()
