"""Tests for the CSV export."""

import csv
import io
import shutil
import tempfile
import unittest
from datetime import date, timezone
from pathlib import Path

from timeflow.common.errors import ValidationError
from timeflow.core.export import (
    BOM,
    CSV_HEADER,
    default_export_name,
    export_rows,
    quote,
    quote_if_needed,
    render_csv,
    write_csv,
)
from timeflow.core.models import Client, Project, TimeEntry

from fakes import utc_ms

CLIENTS = [Client(id="c1", user_id="u", name="ACME")]
PROJECTS = [Project(id="p1", user_id="u", client_id="c1", name="Website", color="#ff0000")]


def make_entry(entry_id, project_id, description, start, end):
    return TimeEntry(id=entry_id, user_id="u", project_id=project_id, description=description,
                     start_time=start, end_time=end)


class TestExport(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.entries = [
            make_entry("e2", "p1", 'He said "hi"', utc_ms(2026, 10, 20, 14), utc_ms(2026, 10, 20, 15, 30)),
            make_entry("e1", "gone", "", utc_ms(2026, 10, 19, 9), utc_ms(2026, 10, 19, 9, 20)),
            make_entry("live", "p1", "running", utc_ms(2026, 10, 21, 9), None),
        ]

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_quote_doubles_inner_quotes(self):
        self.assertEqual(quote('He said "hi"'), '"He said ""hi"""')
        self.assertEqual(quote(""), '""')

    def test_rows_follow_input_order_and_skip_running(self):
        rows = export_rows(self.entries, PROJECTS, CLIENTS, tz=timezone.utc)
        self.assertEqual(len(rows), 2)
        first, second = rows
        self.assertEqual(first.date, "20/10/2026")
        self.assertEqual((first.client, first.project), ("ACME", "Website"))
        self.assertEqual(first.start, "20/10/2026 14:00:00")
        self.assertEqual(first.end, "20/10/2026 15:30:00")
        self.assertEqual(first.hours, "1.50")
        self.assertEqual((second.client, second.project), ("Desconocido", "Desconocido"))
        self.assertEqual(second.hours, "0.33")

    def test_render_has_bom_header_and_quoted_description(self):
        content = render_csv(export_rows(self.entries, PROJECTS, CLIENTS, tz=timezone.utc))
        self.assertTrue(content.startswith(BOM))
        lines = content[len(BOM):].split("\n")
        self.assertEqual(lines[0], "Fecha,Cliente,Proyecto,Descripción,Hora Inicio,Hora Fin,Duración (horas)")
        self.assertEqual(lines[0].split(","), list(CSV_HEADER))
        self.assertEqual(lines[1], '20/10/2026,ACME,Website,"He said ""hi""",20/10/2026 14:00:00,20/10/2026 15:30:00,1.50')
        self.assertTrue(lines[2].endswith(',"",19/10/2026 09:00:00,19/10/2026 09:20:00,0.33'))
        self.assertEqual(len(lines), 3)

    def test_names_with_separators_stay_in_their_column(self):
        clients = [Client(id="c1", user_id="u", name="Acme, Inc.")]
        projects = [Project(id="p1", user_id="u", client_id="c1", name='The "Big" one', color="#ff0000")]
        content = render_csv(export_rows(self.entries[:1], projects, clients, tz=timezone.utc))
        line = content[len(BOM):].split("\n")[1]
        self.assertTrue(line.startswith('20/10/2026,"Acme, Inc.","The ""Big"" one",'))
        cells = next(csv.reader(io.StringIO(line)))
        self.assertEqual(len(cells), len(CSV_HEADER))
        self.assertEqual(cells[1:4], ["Acme, Inc.", 'The "Big" one', 'He said "hi"'])

    def test_quote_if_needed_leaves_plain_names_alone(self):
        self.assertEqual(quote_if_needed("ACME"), "ACME")
        self.assertEqual(quote_if_needed("two\nlines"), '"two\nlines"')
        self.assertEqual(quote_if_needed(None), "")

    def test_nothing_to_export(self):
        with self.assertRaises(ValidationError):
            render_csv(export_rows([self.entries[2]], PROJECTS, CLIENTS))

    def test_write_csv_is_utf8_with_bom(self):
        rows = export_rows(self.entries, PROJECTS, CLIENTS, tz=timezone.utc)
        path = write_csv(rows, Path(self.tmpdir) / "out" / "export.csv")
        raw = path.read_bytes()
        self.assertTrue(raw.startswith(b"\xef\xbb\xbf"))
        self.assertIn("Descripción".encode("utf-8"), raw)

    def test_default_name(self):
        self.assertEqual(default_export_name(date(2026, 10, 19)), "timeflow_export_2026-10-19.csv")


if __name__ == "__main__":
    unittest.main()
