"""Logging for the API server, the CLI and the analysis jobs they run.

Several Auto-Analyze jobs can run in one process, and their stream tasks
interleave in the log.  Every record therefore carries the id of the job
that emitted it (``-`` outside a job): the runner calls
:func:`bind_analysis_id` once at the top of its task, and the tasks it
spawns inherit the id through :mod:`contextvars`.

- ``-v`` / ``--verbose`` sets the stderr handler to DEBUG (default WARNING).
- ``XOBCAT_LOG_LEVEL`` sets the log file level (default INFO).  The file is
  ``<data_dir>/logs/xobcat.log``, rotated at 5 MB.
"""

from __future__ import annotations

import contextvars
import logging
import os
from pathlib import Path

NO_ANALYSIS = "-"

_analysis_id: contextvars.ContextVar[str] = contextvars.ContextVar(
    "xobcat_analysis_id", default=NO_ANALYSIS
)

_LOG_FILENAME = "xobcat.log"
_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 2

# LLM SDKs and SQLAlchemy log every request/statement at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "sqlalchemy.engine")

_TERMINAL_FORMAT = "%(levelname)s | %(analysis_id)s | %(name)s | %(message)s"
_FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(analysis_id)s | %(name)s | %(message)s"


def bind_analysis_id(analysis_id: str) -> contextvars.Token[str]:
    """Tag log records from the current task (and tasks it spawns) with a job id."""
    return _analysis_id.set(analysis_id)


def unbind_analysis_id(token: contextvars.Token[str]) -> None:
    _analysis_id.reset(token)


def current_analysis_id() -> str:
    return _analysis_id.get()


class AnalysisIdFilter(logging.Filter):
    """Stamps ``record.analysis_id`` so formatters can include it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "analysis_id"):
            record.analysis_id = _analysis_id.get()
        return True


def _parse_log_level(level_str: str) -> int:
    """Parse a log level name case-insensitively; unknown names mean INFO."""
    numeric = getattr(logging, level_str.upper(), None)
    if isinstance(numeric, int):
        return numeric
    return logging.INFO


def setup_logging(
    *,
    data_dir: Path | None = None,
    verbose: bool = False,
) -> None:
    """Install the stderr handler and, with ``data_dir``, the job log file.

    Safe to call more than once: existing root handlers are replaced.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    # Handlers filter by level; the root passes everything through
    root.setLevel(logging.DEBUG)
    id_filter = AnalysisIdFilter()

    # ── Terminal handler (stderr) ──────────────────────────────────
    terminal = logging.StreamHandler()
    terminal.setLevel(logging.DEBUG if verbose else logging.WARNING)
    terminal.addFilter(id_filter)
    terminal.setFormatter(logging.Formatter(_TERMINAL_FORMAT))
    root.addHandler(terminal)

    # ── Log file handler ───────────────────────────────────────────
    if data_dir is not None:
        log_dir = data_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        from logging.handlers import RotatingFileHandler

        file_handler = RotatingFileHandler(
            log_dir / _LOG_FILENAME,
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(_parse_log_level(os.environ.get("XOBCAT_LOG_LEVEL", "INFO")))
        file_handler.addFilter(id_filter)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
