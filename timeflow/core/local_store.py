import json
import os
from datetime import datetime
from pathlib import Path
from timeflow.common.errors import PersistenceError
from timeflow.common.logger import log
from timeflow.common.setup import ensure_directory
from timeflow.core.gateway import InMemoryGateway, TABLE_NAMES


_SCHEMA_VERSION = 1

#region === Helpers ===

# Simply returns the current local time as an ISO8601 string with timezone offset.
def now_iso():
    return datetime.now().astimezone().isoformat()

# Helper to return a truly fresh, empty store document.
def build_default_document():
    return {
        "meta": {
            "schema_version": _SCHEMA_VERSION,
            "saved_at": now_iso(),
        },
        "tables": {name: [] for name in TABLE_NAMES},
    }

#endregion === Helpers ===

#region === Loading and Saving ===

# Loads the store document from `path`, checking its shape and defaulting whatever is missing. A file
# that can't be parsed at all is moved aside (never overwritten) and a fresh document is used instead.
def load_document(path: Path):
    if not path.exists():
        log.info(f"No existing store found at '{path}', starting with an empty one.")
        return build_default_document()

    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
        if not isinstance(document, dict):
            raise TypeError(f"expected a JSON object, got {type(document).__name__}")
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        aside = path.with_name(f"{path.name}.corrupt-{datetime.now():%Y%m%d_%H%M%S}")
        log.warning(f"Store at '{path}' is unreadable, moving it to '{aside}' and starting fresh.", exc_info=True)
        try:
            os.replace(path, aside)
        except OSError as e:
            raise PersistenceError(f"Could not move corrupt store '{path}' aside", cause=e) from e
        return build_default_document()
    except OSError as e:
        raise PersistenceError(f"Could not read store '{path}': {e}", cause=e) from e

    defaulted_values = set()

    # Validate the meta dict
    if "meta" not in document or not isinstance(document["meta"], dict):
        defaulted_values.add("meta")
        document["meta"] = {}
    if not isinstance(document["meta"].get("schema_version"), int):
        defaulted_values.add("meta.schema_version")
        document["meta"]["schema_version"] = _SCHEMA_VERSION

    # Validate each table, dropping rows that aren't objects with an id
    if "tables" not in document or not isinstance(document["tables"], dict):
        defaulted_values.add("tables")
        document["tables"] = {}
    for name in TABLE_NAMES:
        rows = document["tables"].get(name)
        if not isinstance(rows, list):
            defaulted_values.add(f"tables.{name}")
            document["tables"][name] = []
            continue
        kept = [row for row in rows if isinstance(row, dict) and row.get("id")]
        if len(kept) != len(rows):
            defaulted_values.add(f"tables.{name}[{len(rows) - len(kept)} malformed rows]")
            document["tables"][name] = kept

    # Log results
    if defaulted_values:
        log.warning(f"Loaded store from '{path}', but with missing values that were defaulted: {', '.join(sorted(defaulted_values))}")
    else:
        log.info(f"Successfully loaded store from '{path}'.")
    return document

# Writes the document to `path` via a temp file so a crash mid-write never leaves a half file behind.
def save_document(document, path: Path):
    document["meta"]["saved_at"] = now_iso()
    ensure_directory(path.parent)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    os.replace(tmp_path, path)
    log.debug(f"Saved store to '{path}'")

#endregion === Loading and Saving ===


# Local single-file gateway: the whole store lives in one JSON document which is rewritten after every
# successful change.
class JsonFileGateway(InMemoryGateway):

    def __init__(self, path):
        self.path = Path(path)
        self._document = load_document(self.path)
        super().__init__({name: self._document["tables"][name] for name in TABLE_NAMES})

    def _commit(self):
        self._document["tables"] = self.tables
        try:
            save_document(self._document, self.path)
        except OSError as e:
            raise PersistenceError(f"Could not write store '{self.path}': {e}", cause=e) from e
