"""Audit logging.

Every decision the dispatcher makes — accepted or rejected signature,
ignored branch, resolved plan, each component result — is written as one
timestamped line to the console and to a dated log file:

    <LOG_DIR>/webhook-20250314.log
    [2025-03-14 09:12:03] [SUCCESS] core.executor: Deployment of backend completed in 41.2s

One file per calendar day, append-only. The directory is created on the
first write, not at startup, so a dispatcher started before the log volume
is mounted still comes up.

Modules log through the standard logging module
(logging.getLogger(__name__)); configure_logging() attaches the handlers
to the root logger once at process start. SUCCESS is registered as an
extra level between INFO and WARNING.

A failed write (disk full, directory not writable) is reported on stderr
and dropped. Logging never raises into the code that called it.
"""

import logging
import pathlib
import sys
from datetime import date, datetime
from enum import Enum

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_PREFIX = "webhook"


class AuditLevel(str, Enum):
    """Levels accepted by log()."""

    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"

    @property
    def numeric(self) -> int:
        return {
            AuditLevel.INFO: logging.INFO,
            AuditLevel.SUCCESS: SUCCESS,
            AuditLevel.WARNING: logging.WARNING,
            AuditLevel.ERROR: logging.ERROR,
        }[self]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

class _ConsoleFallbackMixin:
    """Report handler failures as a single stderr line instead of a traceback."""

    def handleError(self, record: logging.LogRecord) -> None:
        exc = sys.exc_info()[1]
        try:
            sys.__stderr__.write(
                f"[audit] failed to write log record ({exc}): {record.getMessage()}\n"
            )
        except Exception:
            pass


class DailyFileHandler(_ConsoleFallbackMixin, logging.FileHandler):
    """Append to <directory>/<prefix>-YYYYMMDD.log, switching files at midnight.

    Unlike TimedRotatingFileHandler, the file for the current day is always
    named after that day — nothing is renamed after the fact, so each day's
    file can be tailed or shipped by name.

    Attributes:
        directory: Log directory, created lazily on first write.
        prefix: File name prefix.
    """

    def __init__(self, directory: pathlib.Path | str, prefix: str = DEFAULT_PREFIX) -> None:
        self.directory = pathlib.Path(directory)
        self.prefix = prefix
        self._day = self._today()
        super().__init__(self._path_for(self._day), mode="a", encoding="utf-8", delay=True)

    def _today(self) -> date:
        return datetime.now().date()

    def _path_for(self, day: date) -> pathlib.Path:
        return self.directory / f"{self.prefix}-{day:%Y%m%d}.log"

    @property
    def current_path(self) -> pathlib.Path:
        return pathlib.Path(self.baseFilename)

    def _open(self):
        self.directory.mkdir(parents=True, exist_ok=True)
        return super()._open()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            day = self._today()
            if day != self._day:
                self._day = day
                if self.stream is not None:
                    self.stream.close()
                    self.stream = None
                self.baseFilename = str(self._path_for(day).absolute())
            # FileHandler opens the stream outside its own error handling,
            # so a failed mkdir/open would otherwise escape to the caller.
            super().emit(record)
        except Exception:
            self.handleError(record)


class ConsoleHandler(_ConsoleFallbackMixin, logging.StreamHandler):
    """StreamHandler to stdout with the same fallback behaviour."""

    def __init__(self) -> None:
        super().__init__(sys.stdout)


def configure_logging(
    log_dir: pathlib.Path | str,
    prefix: str = DEFAULT_PREFIX,
    level: int = logging.INFO,
    console: bool = True,
) -> DailyFileHandler:
    """Attach the console and daily-file handlers to the root logger.

    Safe to call more than once: handlers installed by a previous call are
    replaced, not duplicated.

    Returns:
        The file handler, so callers can report where logs are going.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, (DailyFileHandler, ConsoleHandler)):
            root.removeHandler(handler)
            handler.close()

    file_handler = DailyFileHandler(log_dir, prefix)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if console:
        console_handler = ConsoleHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    root.setLevel(level)
    return file_handler


# ---------------------------------------------------------------------------
# Audit lines
# ---------------------------------------------------------------------------

def log(logger: logging.Logger, level: AuditLevel | str, message: str) -> None:
    """Write one audit line at a level named by the caller.

    For call sites that pick the level at runtime, such as the dispatch
    outcome. Fixed-level lines go straight through the module logger.

    Example:
        log(logger, "SUCCESS" if run.success else "ERROR", "Deployment run 3f2a… finished")

    Raises:
        ValueError: If level is not one of INFO, SUCCESS, WARNING, ERROR.
    """
    logger.log(AuditLevel(level).numeric, message)
