import json
from pathlib import Path
from timeflow.common.logger import log
from timeflow.common.setup import PATHS, ensure_directory


SETTINGS_PATH = PATHS.settings

# Default values for every setting, also used as the type reference when validating a loaded file.
_SETTINGS_DEFAULTS = {
    "data_file": "store.json",
    "persistence_timeout_seconds": 10.0,
    "persistence_retries": 1,
    "log_level": "INFO",
    "user_id": None,
    "recent_projects_limit": 5,
}

# Settings that may legitimately be null, alongside the type they hold otherwise.
_NULLABLE = {"user_id": str}

def build_default_settings():
    return dict(_SETTINGS_DEFAULTS)

def _valid(key, value):
    if value is None:
        return key in _NULLABLE
    expected = _NULLABLE.get(key, type(_SETTINGS_DEFAULTS[key]))
    if expected is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0
    if expected is int:
        return isinstance(value, int) and not isinstance(value, bool) and value >= 0
    return isinstance(value, expected)

# Loads settings from `path`, filling in and logging any missing or mistyped keys. A missing or broken
# file just means defaults.
def load_settings(path: Path | None = None):
    path = Path(path) if path is not None else SETTINGS_PATH
    if not path.exists():
        log.info(f"No settings file at '{path}', using defaults.")
        return build_default_settings()
    try:
        with open(path, "r", encoding="utf-8") as f:
            settings = json.load(f)
        if not isinstance(settings, dict):
            raise TypeError("settings must be a JSON object")
    except (json.JSONDecodeError, OSError, TypeError):
        log.warning(f"Ran into an error while loading '{path}', falling back to default settings.", exc_info=True)
        return build_default_settings()

    defaulted_values = set()
    for key, default in _SETTINGS_DEFAULTS.items():
        if key not in settings or not _valid(key, settings[key]):
            defaulted_values.add(key)
            settings[key] = default
    if defaulted_values:
        log.warning(f"Loaded settings from '{path}', but with values that were defaulted: {', '.join(sorted(defaulted_values))}")
    else:
        log.info(f"Successfully loaded settings from '{path}'.")
    return settings

def save_settings(settings, path: Path | None = None):
    path = Path(path) if path is not None else SETTINGS_PATH
    ensure_directory(path.parent)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2)
    log.info(f"Successfully saved settings to '{path}'")
