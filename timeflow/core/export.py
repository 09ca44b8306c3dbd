"""CSV export of closed time entries.

The file layout is fixed: a Spanish header row, UTF-8 with a byte-order
mark, the description always wrapped in double quotes with inner quotes
doubled, client and project names quoted only when they hold a comma,
quote or line break, hours with two decimals. Rows follow the order of
the entries passed in; callers normally hand over the store's newest-first
list.
"""

from dataclasses import dataclass
from datetime import date, tzinfo
from pathlib import Path

from timeflow.common.errors import ValidationError
from timeflow.common.logger import log
from timeflow.core.aggregation import UNKNOWN_NAME, closed, resolve
from timeflow.util.formatting import ms_to_hours, to_datetime

CSV_HEADER = ("Fecha", "Cliente", "Proyecto", "Descripción", "Hora Inicio", "Hora Fin", "Duración (horas)")
BOM = "\ufeff"
DATE_FORMAT = "%d/%m/%Y"
DATETIME_FORMAT = "%d/%m/%Y %H:%M:%S"


@dataclass(frozen=True)
class ExportRow:
    date: str
    client: str
    project: str
    description: str
    start: str
    end: str
    hours: str

    def cells(self):
        return (self.date, quote_if_needed(self.client), quote_if_needed(self.project), quote(self.description),
                self.start, self.end, self.hours)


def quote(text) -> str:
    return '"' + (text or "").replace('"', '""') + '"'

_SPECIAL = (",", '"', "\r", "\n")

def quote_if_needed(text) -> str:
    text = text or ""
    return quote(text) if any(c in text for c in _SPECIAL) else text

def export_rows(entries, projects, clients, tz: tzinfo | None = None):
    projects_by_id = {p.id: p for p in projects}
    clients_by_id = {c.id: c for c in clients}
    rows = []
    for entry in closed(entries):
        project, client = resolve(entry, projects_by_id, clients_by_id)
        start, end = to_datetime(entry.start_time, tz), to_datetime(entry.end_time, tz)
        rows.append(ExportRow(
            date=start.strftime(DATE_FORMAT),
            client=client.name if client is not None else UNKNOWN_NAME,
            project=project.name if project is not None else UNKNOWN_NAME,
            description=entry.description or "",
            start=start.strftime(DATETIME_FORMAT),
            end=end.strftime(DATETIME_FORMAT),
            hours=f"{ms_to_hours(entry.end_time - entry.start_time):.2f}",
        ))
    return rows

def render_csv(rows) -> str:
    if not rows:
        raise ValidationError("There is nothing to export")
    lines = [",".join(CSV_HEADER)]
    lines.extend(",".join(row.cells()) for row in rows)
    return BOM + "\n".join(lines)

def write_csv(rows, path) -> Path:
    path = Path(path)
    content = render_csv(rows)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    log.info(f"Exported {len(rows)} entries to '{path}'")
    return path

def default_export_name(today: date | None = None) -> str:
    today = today or date.today()
    return f"timeflow_export_{today.isoformat()}.csv"
