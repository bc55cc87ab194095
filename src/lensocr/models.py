# lensocr/models.py
import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class PageImage:
    """An encoded raster of one page, produced once by the page source."""
    data: bytes
    width: int
    height: int
    mime_type: str = "image/jpeg"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


@dataclass(frozen=True)
class PageResult:
    """Extraction output for a single page. Created exactly once per successful page."""
    page_number: int
    text: str
    duration_ms: int
    preview: PageImage

    def __post_init__(self):
        if self.page_number < 1:
            raise ValueError(f"page_number must be >= 1, got {self.page_number}")
        if self.duration_ms < 0:
            raise ValueError(f"duration_ms must be >= 0, got {self.duration_ms}")


class RunStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class RunState:
    """Read-only snapshot of a run, as exposed to observers."""
    status: RunStatus = RunStatus.IDLE
    file_name: str = ""
    pages: Tuple[PageResult, ...] = field(default_factory=tuple)
    full_text: str = ""
    progress: int = 0
    total_pages: int = 0
    total_duration_ms: Optional[int] = None
    elapsed_seconds: float = 0.0
    error_message: Optional[str] = None
    notice: Optional[str] = None


@dataclass(frozen=True)
class ChatMessage:
    """One turn of the conversation about a completed document."""
    id: str
    role: str  # "user" or "assistant"
    content: str
    timestamp: int
