# lensocr/config.py
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Dict, Any, Optional
import os


def get_default_api_key() -> str:
    # GEMINI_API_KEY wins, API_KEY is kept for older deployments
    return os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or ""


@dataclass
class ExtractionConfig:
    """Configuration for a lensocr extraction run."""
    output_dir: Path = Path(".")
    error_log_path: Optional[Path] = None

    concurrency_limit: int = 12
    render_scale: float = 1.0
    jpeg_quality: int = 75
    timer_interval: float = 0.1
    page_separator: str = "\n\n---\n\n"

    api_key: str = field(default_factory=get_default_api_key)
    model: str = "gemini-3-flash-preview"
    temperature: float = 0.0

    pdf_engine: str = "pymupdf"
    extraction_backend: str = "lensocr.backends.gemini_backend.GeminiExtractionClient"
    conversation_backend: str = "lensocr.backends.gemini_backend.GeminiConversationClient"
    backend_kwargs: Dict[str, Any] = field(default_factory=dict)

    export_formats: List[str] = field(default_factory=lambda: ["txt"])
    log_performance: bool = False
    performance_log_path: Optional[Path] = None

    def __post_init__(self):
        if self.concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be at least 1, got {self.concurrency_limit}")
        if not 0 < self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be in 1..100, got {self.jpeg_quality}")
        if self.render_scale <= 0:
            raise ValueError(f"render_scale must be positive, got {self.render_scale}")

    def build_backend_kwargs(self, **defaults: Any) -> Dict[str, Any]:
        """Backend constructor kwargs, explicit backend_kwargs win over the config fields and defaults."""
        kw = dict(self.backend_kwargs or {})
        kw.setdefault("api_key", self.api_key)
        kw.setdefault("model", self.model)
        for key, value in defaults.items():
            kw.setdefault(key, value)
        return kw

    def to_dict(self):
        """Converts config to a plain dictionary (paths become strings)."""
        d = asdict(self)
        for key, value in d.items():
            if isinstance(value, Path):
                d[key] = str(value)
        return d

    @classmethod
    def from_dict(cls, config_dict: dict):
        d = dict(config_dict)

        # normalize path-like fields
        for key in ["output_dir", "error_log_path", "performance_log_path"]:
            if key in d and isinstance(d[key], str):
                d[key] = Path(d[key])

        # allow explicit None to mean use default
        for key in ["concurrency_limit", "render_scale", "jpeg_quality", "model", "api_key", "timer_interval"]:
            if d.get(key) is None:
                d.pop(key, None)

        cfg = cls(**d)

        # if logging is on but no path was provided, pick one next to the exports
        if cfg.log_performance and not cfg.performance_log_path:
            cfg.performance_log_path = Path(cfg.output_dir) / "lensocr_performance_log.jsonl"

        return cfg
