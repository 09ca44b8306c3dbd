import os
from pathlib import Path
from dataclasses import dataclass

# Lil helper function to create missing directories if missing, and optionally error out when a path
# doesn't exist.
def ensure_directory(path: Path,must_exist=False):
    if must_exist:
        if not path.exists():
            raise FileNotFoundError(f"Required directory is missing: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Expected a directory, got a file: {path}")
    else:
        path.mkdir(parents=True,exist_ok=True)
    return path

# Picks the base folder for all per-user timeflow files. TIMEFLOW_HOME wins outright, otherwise we go
# through the usual per-platform locations.
def _resolve_data_root() -> Path:
    override = os.getenv("TIMEFLOW_HOME")
    if override:
        return Path(override)
    appdata = os.getenv("APPDATA")
    if appdata:
        return Path(appdata) / "TimeFlow"
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "timeflow"
    return Path.home() / ".local" / "share" / "timeflow"

# Dataclass for accessing paths across program. Directories are only created on demand, so importing
# this never touches the disk.
@dataclass(frozen=False)
class ProjectPaths:

    root: Path
    logs: Path
    data: Path
    exports: Path

    @property
    def settings(self) -> Path:
        return self.root / "settings.json"

    @property
    def store(self) -> Path:
        return self.data / "store.json"

    # Creates every directory this layout points at.
    def ensure(self):
        for path in (self.root, self.logs, self.data, self.exports):
            ensure_directory(path)
        return self

    @staticmethod
    def build(root: Path | None = None):
        root = Path(root) if root is not None else _resolve_data_root()
        return ProjectPaths(
            root = root,
            logs = root / "logs",
            data = root / "data",
            exports = root / "exports",
        )
PATHS = ProjectPaths.build()
