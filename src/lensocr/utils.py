# src/lensocr/utils.py
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Union

from slugify import slugify

logger = logging.getLogger("lensocr")


def percent(done: int, total: int) -> int:
    """
    Integer percentage rounded half up, so 1 of 8 pages reads as 13.
    An empty document counts as fully done. 100 is reserved for done == total.
    """
    if total <= 0 or done >= total:
        return 100
    return min(99, (200 * done + total) // (2 * total))


def safe_fname(name: str, fallback: str = "file") -> str:
    """
    Create a filesystem safe name, preserve extension when present.
    """
    name = (name or "").strip() or fallback
    if "." in name:
        base, ext = name.rsplit(".", 1)
        return f"{slugify(base)[:100] or fallback}.{ext}"
    return slugify(name)[:100] or fallback


def append_jsonl(path: Union[str, Path], record: Dict[str, Any]) -> None:
    """Append one timestamped record to a JSONL log file."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    entry = {"timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"), **record}
    with open(p, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")


def now_ms() -> int:
    return int(time.time() * 1000)
