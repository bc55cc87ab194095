# lensocr/exceptions.py
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories reported by the extraction collaborators."""
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    NETWORK_UNAVAILABLE = "network_unavailable"
    SERVICE_ERROR = "service_error"
    USER_CANCELLED = "user_cancelled"


class LensOCRError(Exception):
    """Base exception for the lensocr library."""
    pass


class ExtractionError(LensOCRError):
    """Raised when the remote extraction or conversation call fails."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class DocumentError(LensOCRError):
    """Raised when a document cannot be decoded or a page cannot be rendered."""
    pass


class RunInProgressError(LensOCRError):
    """Raised when a run is started while another one is still processing."""
    pass


class ChatUnavailableError(LensOCRError):
    """Raised when a conversation is requested before extraction completed."""
    pass


class RunCancelled(LensOCRError):
    """Cooperative cancellation signal. Never surfaced as an error message."""
    kind = ErrorKind.USER_CANCELLED
