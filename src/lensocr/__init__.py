# lensocr/__init__.py
from . import logger as _logger  # registers the PROGRESS level before anything logs

from .cancellation import CancellationToken
from .config import ExtractionConfig
from .controller import RunController
from .exceptions import (
    ChatUnavailableError,
    DocumentError,
    ErrorKind,
    ExtractionError,
    LensOCRError,
    RunCancelled,
    RunInProgressError,
)
from .models import ChatMessage, PageImage, PageResult, RunState, RunStatus

__version__ = "1.0.0"

__all__ = [
    "CancellationToken",
    "ChatMessage",
    "ChatUnavailableError",
    "DocumentError",
    "ErrorKind",
    "ExtractionConfig",
    "ExtractionError",
    "LensOCRError",
    "PageImage",
    "PageResult",
    "RunCancelled",
    "RunController",
    "RunInProgressError",
    "RunState",
    "RunStatus",
]
