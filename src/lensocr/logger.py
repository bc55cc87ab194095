# src/lensocr/logger.py

import logging
import sys
from pathlib import Path
from queue import Queue
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from typing import Union, Optional

# --- Custom Log Level for Progress ---
PROGRESS = 25
logging.addLevelName(PROGRESS, "PROGRESS")

def progress(self, msg, *args, **kwargs):
    if self.isEnabledFor(PROGRESS):
        self._log(PROGRESS, msg, args, **kwargs)

logging.Logger.progress = progress

# --- Custom Handlers (for the Listener) ---
class ProgressEventHandler(logging.Handler):
    """Emits structured events to a queue for progress bars, etc."""
    def __init__(self, q: Queue):
        super().__init__()
        self.q = q
    def emit(self, record: logging.LogRecord):
        try:
            evt = {
                "level": record.levelname,
                "msg": record.getMessage(),
                "phase": getattr(record, "phase", None),
                "pct": getattr(record, "pct", None),
                "current": getattr(record, "current", None),
                "total": getattr(record, "total", None),
            }
            self.q.put(evt)
        except Exception:
            self.handleError(record)

# --- Custom Filters ---
class OnlyLevelFilter(logging.Filter):
    def __init__(self, levelno: int):
        super().__init__()
        self.levelno = levelno
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno == self.levelno

class ExcludeLevelFilter(logging.Filter):
    def __init__(self, levelno: int):
        super().__init__()
        self.levelno = levelno
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno != self.levelno

# --- Main Configuration Function ---
def setup_logging(
    log_queue: Queue,
    *,
    event_queue: Optional[Queue] = None,
    level: int = logging.INFO,
    file_path: Optional[Union[str, Path]] = None,
    file_level: Optional[int] = None,
    console: bool = False,
) -> QueueListener:
    """
    Sets up the logging listener architecture.

    Args:
        log_queue: The queue that the lensocr logger writes to.
        event_queue: Queue receiving structured PROGRESS events.
        level: The base logging level for console and event outputs.
        file_path: Path to the persistent log file.
        file_level: The logging level for the file.
        console: Also write plain log lines to stderr.

    Returns:
        A QueueListener instance. You must call .start() on it.
    """
    handlers = []

    # File handler
    if file_path:
        fp = Path(file_path)
        fp.parent.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(fp, maxBytes=5*1024*1024, backupCount=2, encoding="utf-8")
        fh.setLevel(file_level if file_level is not None else level)
        fh.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-8s | %(message)s"))
        fh.addFilter(ExcludeLevelFilter(PROGRESS))
        handlers.append(fh)

    # Console handler
    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setLevel(level)
        ch.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        ch.addFilter(ExcludeLevelFilter(PROGRESS))
        handlers.append(ch)

    # Progress event handler
    if event_queue is not None:
        eh = ProgressEventHandler(event_queue)
        eh.setLevel(PROGRESS)
        eh.addFilter(OnlyLevelFilter(PROGRESS))
        handlers.append(eh)

    # The listener drains the queue on its own thread and feeds the handlers.
    listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    return listener

def configure_logging(log_queue: Queue, level: int = logging.DEBUG):
    """
    Routes the lensocr logger through a QueueHandler so that log calls made
    from the event loop never block on file or console I/O.
    Removes any handlers previously attached to the lensocr logger.
    """
    logger = logging.getLogger("lensocr")
    logger.setLevel(level)
    logger.handlers.clear()

    qh = QueueHandler(log_queue)
    logger.addHandler(qh)
    return qh
