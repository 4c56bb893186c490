# =============================================================================
# cloudtree_core/logging/config.py
# Logging Configuration for the CloudTree Offline Core
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Optional, TextIO, Union


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_DIR = Path("logs")

# Loggers whose output describes sync progress; see setup_logging(sync_level=...)
SYNC_LOGGERS = (
    "cloudtree_core.offline.sync_engine",
    "cloudtree_core.offline.connection_manager",
)

# Chatty third-party loggers held at WARNING
QUIET_LOGGERS = ("urllib3", "requests")


def log_file_path(log_dir: Union[str, Path] = LOG_DIR, day: Optional[datetime] = None) -> Path:
    """Dated log file: logs/cloudtree_YYYY-MM-DD.log"""
    day = day or datetime.now()
    return Path(log_dir) / f"cloudtree_{day.strftime('%Y-%m-%d')}.log"


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_dir: Union[str, Path] = LOG_DIR,
    sync_level: Optional[int] = None,
    stream: TextIO = sys.stdout,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Root logging level (default: INFO)
        log_to_file: Also write to the dated file under log_dir
        log_dir: Directory for the log file, created on demand
        sync_level: Level for SYNC_LOGGERS when it differs from level, e.g.
            INFO to keep pass summaries while everything else is at WARNING
        stream: Console stream; the CLI passes stderr so stdout stays JSON
    """
    handlers = [logging.StreamHandler(stream)]

    if log_to_file:
        path = log_file_path(log_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name in SYNC_LOGGERS:
        logging.getLogger(name).setLevel(sync_level if sync_level is not None else logging.NOTSET)

    logging.getLogger("cloudtree_core").debug(
        f"Logging initialized (level={logging.getLevelName(level)}, file={log_to_file})"
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; callers pass __name__."""
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for logging operation timing and status.

    Usage:
        with LogContext(logger, "Pushing pending changes") as ctx:
            engine.sync_to_server()
        ctx.elapsed  # seconds, also in the log line
        # Logs: "Pushing pending changes... started"
        # Logs: "Pushing pending changes... completed (0.84s)"
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.elapsed: Optional[float] = None
        self._start: Optional[float] = None

    def __enter__(self):
        self._start = time.perf_counter()
        self.logger.info(f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - self._start

        if exc_type is None:
            self.logger.info(f"{self.operation}... completed ({self.elapsed:.2f}s)")
        else:
            self.logger.error(
                f"{self.operation}... failed ({self.elapsed:.2f}s): {exc_val}",
                exc_info=True
            )

        return False
