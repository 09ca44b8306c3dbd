import logging
import os
from pathlib import Path
from logging.handlers import RotatingFileHandler
from timeflow.common.setup import PATHS, ensure_directory

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s:%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

def get_logger(
        name = "timeflow",
        level = logging.INFO,
        log_dir: Path | None = None,
        max_bytes = 5 * 1024 * 1024,
        backup_count = 5,
        persistent = True,
        console = False,
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT,LOG_DATE_FORMAT)

    # File handlers need a writable log dir. When there isn't one (read-only home, sandboxed runs) we
    # still want the messages somewhere, so the console takes over.
    if persistent:
        log_dir = log_dir or PATHS.logs
        try:
            ensure_directory(log_dir)
        except OSError:
            persistent = False
            console = True

    # Setup persistent handler
    persistent_handler_name = f"{name}:persistent"
    if persistent and not any(h.get_name() == persistent_handler_name for h in logger.handlers):
        persistent_handler = RotatingFileHandler(
            filename=log_dir / f"{name}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        persistent_handler.setLevel(level)
        persistent_handler.setFormatter(fmt)
        persistent_handler.set_name(persistent_handler_name)
        logger.addHandler(persistent_handler)

    # Setup latest-only handler (always overwritten each run)
    latest_handler_name = f"{name}:latest"
    if persistent and not any(h.get_name() == latest_handler_name for h in logger.handlers):
        latest_handler = logging.FileHandler(
            filename=log_dir / "latest.log",
            mode="w",             # overwrite on each run
            encoding="utf-8",
            delay=True
        )
        latest_handler.setLevel(level)
        latest_handler.setFormatter(fmt)
        latest_handler.set_name(latest_handler_name)
        logger.addHandler(latest_handler)

    # Setup console handler
    console_handler_name = f"{name}:console"
    if console and not any(h.get_name() == console_handler_name for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(max(level, logging.WARNING) if persistent else level)
        console_handler.setFormatter(fmt)
        console_handler.set_name(console_handler_name)
        logger.addHandler(console_handler)

    return logger

# Level can be forced from the environment, mostly for debugging the CLI.
_LEVEL = logging.getLevelName(os.getenv("TIMEFLOW_LOG_LEVEL", "DEBUG").upper())
log = get_logger(level=_LEVEL if isinstance(_LEVEL, int) else logging.DEBUG, console=False)

# Applies a level name coming from settings. TIMEFLOW_LOG_LEVEL, when set, keeps priority.
def apply_level(level_name):
    if os.getenv("TIMEFLOW_LOG_LEVEL"):
        return
    level = logging.getLevelName(str(level_name).upper())
    if isinstance(level, int):
        log.setLevel(level)
    else:
        log.warning(f"Ignoring unknown log level '{level_name}'")
