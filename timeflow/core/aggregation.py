"""Read-only aggregation over time entries.

Everything here is a pure function of its arguments. Only closed entries
are counted; a running entry adds nothing to historical totals.
Entries pointing at projects or clients that no longer exist are
collected into an "unknown" bucket instead of being dropped.
"""

from dataclasses import dataclass
from datetime import date, timedelta, tzinfo

from timeflow.core.models import Client, Project, TimeEntry
from timeflow.util.formatting import local_day, ms_to_hours

UNKNOWN_NAME = "Desconocido"
UNKNOWN_COLOR = "#8c8c8c"


@dataclass(frozen=True)
class ClientSummary:
    client: Client | None   # None is the unknown bucket
    total_ms: int
    count: int

    @property
    def name(self):
        return self.client.name if self.client is not None else UNKNOWN_NAME

    @property
    def hours(self):
        return ms_to_hours(self.total_ms)


@dataclass(frozen=True)
class ProjectSummary:
    project: Project | None
    client: Client | None
    color: str
    total_ms: int
    count: int

    @property
    def name(self):
        return self.project.name if self.project is not None else UNKNOWN_NAME

    @property
    def client_name(self):
        return self.client.name if self.client is not None else UNKNOWN_NAME

    @property
    def hours(self):
        return ms_to_hours(self.total_ms)


@dataclass(frozen=True)
class ReportSummary:
    total_ms: int
    active_clients: int
    active_projects: int
    entry_count: int

    @property
    def hours(self):
        return ms_to_hours(self.total_ms)


def closed(entries):
    return [e for e in entries if e.end_time is not None]

def total_duration(entries) -> int:
    return sum(e.end_time - e.start_time for e in closed(entries))

# Live elapsed time of a running entry. For "current session" displays; closed entries report their
# stored duration.
def elapsed_ms(entry: TimeEntry, now) -> int:
    if entry.end_time is not None:
        return entry.end_time - entry.start_time
    return max(0, now - entry.start_time)

def _index(items):
    return {item.id: item for item in items}

# Resolves entry -> project -> client. Either part comes back None when the reference dangles.
def resolve(entry, projects_by_id, clients_by_id):
    project = projects_by_id.get(entry.project_id)
    client = clients_by_id.get(project.client_id) if project is not None else None
    return project, client

def group_by_client(entries, projects, clients):
    projects_by_id, clients_by_id = _index(projects), _index(clients)
    totals = {}
    for entry in closed(entries):
        _, client = resolve(entry, projects_by_id, clients_by_id)
        key = client.id if client is not None else None
        total, count, _ = totals.get(key, (0, 0, client))
        totals[key] = (total + entry.end_time - entry.start_time, count + 1, client)

    summaries = [ClientSummary(client=client, total_ms=total, count=count)
                 for total, count, client in totals.values() if total > 0]
    summaries.sort(key=lambda s: (-s.total_ms, s.name))
    return summaries

def group_by_project(entries, projects, clients):
    projects_by_id, clients_by_id = _index(projects), _index(clients)
    totals = {}
    for entry in closed(entries):
        project, client = resolve(entry, projects_by_id, clients_by_id)
        key = project.id if project is not None else None
        total, count = totals.get(key, (0, 0))
        totals[key] = (total + entry.end_time - entry.start_time, count + 1)

    summaries = []
    for key, (total, count) in totals.items():
        if total <= 0:
            continue
        project = projects_by_id.get(key) if key is not None else None
        client = clients_by_id.get(project.client_id) if project is not None else None
        summaries.append(ProjectSummary(
            project=project,
            client=client,
            color=project.color if project is not None else UNKNOWN_COLOR,
            total_ms=total,
            count=count,
        ))
    summaries.sort(key=lambda s: (-s.total_ms, s.name))
    return summaries

# Buckets closed entries by the local calendar day they started on. Every day in the inclusive range
# gets a key, in order, even when empty; entries outside the range are left out.
def group_by_day(entries, date_range, tz: tzinfo | None = None):
    first, last = date_range
    grouped = {}
    day = first
    while day <= last:
        grouped[day] = []
        day += timedelta(days=1)
    for entry in closed(entries):
        key = local_day(entry.start_time, tz)
        if key in grouped:
            grouped[key].append(entry)
    return grouped

def summarize(entries, projects, clients):
    by_client = group_by_client(entries, projects, clients)
    by_project = group_by_project(entries, projects, clients)
    return ReportSummary(
        total_ms=sum(s.total_ms for s in by_client),
        active_clients=len(by_client),
        active_projects=len(by_project),
        entry_count=len(closed(entries)),
    )
