import argparse
import sys
from datetime import date, datetime
from pathlib import Path
from timeflow.common.errors import InvariantViolation, PersistenceError, ValidationError
from timeflow.common.logger import apply_level, log
from timeflow.common.setup import PATHS, ProjectPaths
from timeflow.core import config
from timeflow.core.export import default_export_name, write_csv
from timeflow.core.gateway import RetryingGateway
from timeflow.core.identity import StaticIdentity
from timeflow.core.local_store import JsonFileGateway
from timeflow.core.session import Session
from timeflow.core.store import EntryFilter
from timeflow.util.formatting import datetime_to_ms, format_duration, format_duration_hours, to_datetime


# Builds a session over the local JSON store described by `settings`. With no configured user the
# session runs on the anonymous local profile.
def build_session(settings=None, paths: ProjectPaths | None = None, clock=None):
    paths = paths or PATHS
    settings = settings or config.load_settings(paths.settings)
    apply_level(settings["log_level"])
    store_path = Path(settings["data_file"])
    if not store_path.is_absolute():
        store_path = paths.ensure().data / store_path
    gateway = RetryingGateway(
        JsonFileGateway(store_path),
        timeout=settings["persistence_timeout_seconds"],
        retries=settings["persistence_retries"],
    )
    identity = StaticIdentity(settings["user_id"]) if settings["user_id"] else None
    return Session(gateway, identity=identity, clock=clock,
                   recent_projects_limit=settings["recent_projects_limit"])

#region === Argument helpers ===

def _parse_day(text):
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got '{text}'") from None

def _parse_moment(text):
    try:
        return datetime_to_ms(datetime.strptime(text, "%Y-%m-%d %H:%M"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected 'YYYY-MM-DD HH:MM', got '{text}'") from None

# Finds an item by exact id first, then by case-insensitive name.
def _lookup(items, ref, what):
    for item in items:
        if item.id == ref:
            return item
    matches = [item for item in items if item.name.lower() == ref.lower()]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise ValidationError(f"More than one {what} is named '{ref}', use its id")
    raise ValidationError(f"No {what} matches '{ref}'")

def _describe(session, entry):
    project = session.store.get_project(entry.project_id)
    name = project.name if project is not None else "?"
    started = to_datetime(entry.start_time).strftime("%Y-%m-%d %H:%M")
    if entry.is_running:
        return f"{started}  running   {name}  {entry.description}"
    return f"{started}  {format_duration(entry.duration_ms):>8}  {name}  {entry.description}"

#endregion === Argument helpers ===

#region === Commands ===

def _cmd_status(session, args):
    entry = session.active_entry()
    if entry is None:
        print("Idle")
    else:
        print(f"Running: {_describe(session, entry)} ({format_duration(session.timer.elapsed_ms())})")
    recent = session.recent_projects()
    if recent:
        print("Recent projects: " + ", ".join(p.name for p in recent))

def _cmd_start(session, args):
    project = _lookup(session.projects, args.project, "project")
    entry = session.perform("start", project.id, args.message).unwrap()
    print(f"Started {project.name} at {to_datetime(entry.start_time):%H:%M:%S}")

def _cmd_stop(session, args):
    entry = session.perform("stop").unwrap()
    print("Nothing running" if entry is None else f"Stopped after {format_duration(entry.duration_ms)}")

def _cmd_discard(session, args):
    entry = session.perform("discard").unwrap()
    print("Nothing running" if entry is None else "Discarded running entry")

def _cmd_clients(session, args):
    for client in session.clients:
        print(f"{client.id}  {client.name}")

def _cmd_add_client(session, args):
    client = session.perform("create_client", args.name).unwrap()
    print(f"Created client {client.name} ({client.id})")

def _cmd_projects(session, args):
    for project in session.projects:
        client = session.store.get_client(project.client_id)
        print(f"{project.id}  {project.name}  [{client.name if client else '?'}]  {project.color}")

def _cmd_add_project(session, args):
    client = _lookup(session.clients, args.client, "client")
    project = session.perform("create_project", args.name, client.id, args.color, args.shared).unwrap()
    print(f"Created project {project.name} ({project.id})")

def _entry_filter(session, args, closed_only=False):
    project_id = _lookup(session.projects, args.project, "project").id if args.project else None
    return EntryFilter(date_from=args.date_from, date_to=args.date_to, project_id=project_id, closed_only=closed_only)

def _cmd_log(session, args):
    for entry in session.list_entries(_entry_filter(session, args)):
        print(_describe(session, entry))

def _cmd_add(session, args):
    project = _lookup(session.projects, args.project, "project")
    entry = session.perform("add_manual_entry", project.id, args.message, args.start, args.end).unwrap()
    print(f"Added {format_duration(entry.duration_ms)} on {project.name}")

def _cmd_report(session, args):
    report = session.report(_entry_filter(session, args, closed_only=True))
    print(f"Total: {format_duration_hours(report.summary.total_ms)} over {report.summary.entry_count} entries")
    print("By client:")
    for row in report.by_client:
        print(f"  {row.name:<30} {row.count:>5}  {row.hours:>8.2f} h")
    print("By project:")
    for row in report.by_project:
        print(f"  {row.name:<30} {row.client_name:<20} {row.count:>5}  {row.hours:>8.2f} h")

def _cmd_export(session, args):
    rows = session.export_rows(_entry_filter(session, args, closed_only=True))
    target = Path(args.path) if args.path else PATHS.exports / default_export_name()
    write_csv(rows, target)
    print(f"Exported {len(rows)} entries to {target}")

#endregion === Commands ===

def build_parser():
    parser = argparse.ArgumentParser(prog="timeflow", description="Track time against clients and projects.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="show the running timer").set_defaults(func=_cmd_status)

    p = sub.add_parser("start", help="start the timer on a project")
    p.add_argument("project")
    p.add_argument("-m", "--message", default="")
    p.set_defaults(func=_cmd_start)

    sub.add_parser("stop", help="stop the running timer").set_defaults(func=_cmd_stop)
    sub.add_parser("discard", help="throw away the running timer").set_defaults(func=_cmd_discard)
    sub.add_parser("clients", help="list clients").set_defaults(func=_cmd_clients)

    p = sub.add_parser("add-client", help="create a client")
    p.add_argument("name")
    p.set_defaults(func=_cmd_add_client)

    sub.add_parser("projects", help="list projects").set_defaults(func=_cmd_projects)

    p = sub.add_parser("add-project", help="create a project")
    p.add_argument("name")
    p.add_argument("--client", required=True)
    p.add_argument("--color", default="#1677ff")
    p.add_argument("--shared", action="store_true")
    p.set_defaults(func=_cmd_add_project)

    p = sub.add_parser("add", help="add a finished entry by hand")
    p.add_argument("project")
    p.add_argument("--start", type=_parse_moment, required=True)
    p.add_argument("--end", type=_parse_moment, required=True)
    p.add_argument("-m", "--message", default="")
    p.set_defaults(func=_cmd_add)

    for name, func, help_text in (("log", _cmd_log, "list entries"),
                                  ("report", _cmd_report, "hours by client and project"),
                                  ("export", _cmd_export, "write a CSV export")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--from", dest="date_from", type=_parse_day)
        p.add_argument("--to", dest="date_to", type=_parse_day)
        p.add_argument("--project")
        if name == "export":
            p.add_argument("path", nargs="?")
        p.set_defaults(func=func)
    return parser

def main(argv=None, session=None):
    args = build_parser().parse_args(argv)
    session = session or build_session()
    try:
        args.func(session, args)
    except ValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except (PersistenceError, InvariantViolation) as e:
        log.warning(f"Command '{args.command}' failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        session.close()
    return 0
