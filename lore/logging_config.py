"""Local logging setup for lore.

``setup_lore_logging`` attaches a daily file handler to the ``lore`` logger
(``<data_dir>/logs/local-YYYY-MM-DD.log``). ``log_cycle_event`` appends one
line per cycle phase to ``<data_dir>/logs/memory-events-YYYY-MM-DD.log`` so
reflection and maintenance runs can be audited without reading the debug log.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from lore.utils import get_lore_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir(log_dir: Optional[Path] = None) -> Path:
    path = Path(log_dir) if log_dir else get_lore_home() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def setup_lore_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> logging.Logger:
    """Configure the ``lore`` logger with a local file handler.

    Safe to call repeatedly: handlers are only added once. DEBUG also
    echoes to the console.
    """
    logger = logging.getLogger("lore")
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return logger

    date = datetime.now().strftime("%Y-%m-%d")
    file_handler = logging.FileHandler(_log_dir(log_dir) / f"local-{date}.log")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    # The file (and the console at DEBUG) replace the root handlers
    logger.propagate = False

    if resolved == logging.DEBUG:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)

    return logger


def log_cycle_event(event: str, log_dir: Optional[Path] = None, **fields) -> str:
    """Append one ``event | key=value ...`` line to the daily events log.

    Returns the line written (without timestamp).
    """
    details = ", ".join(f"{key}={value}" for key, value in fields.items())
    line = f"{event} | {details}" if details else event
    now = datetime.now()
    path = _log_dir(log_dir) / f"memory-events-{now.strftime('%Y-%m-%d')}.log"
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"{now.isoformat(timespec='seconds')} | {line}\n")
    logging.getLogger("lore").info(line)
    return line


def log_reflection(
    reflection_id: int, updates: int, failed: int = 0, cost: float = 0.0, **kwargs
) -> str:
    return log_cycle_event(
        "reflection",
        id=reflection_id,
        updates=updates,
        failed=failed,
        cost=f"{cost:.6f}",
        **kwargs,
    )


def log_maintenance(decayed: int, pruned: int, **kwargs) -> str:
    return log_cycle_event("maintenance", decayed=decayed, pruned=pruned, **kwargs)
