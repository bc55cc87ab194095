# src/lensocr/aggregator.py
from __future__ import annotations

import bisect
import logging
from typing import List, Tuple

from .models import PageResult
from .utils import percent

logger = logging.getLogger("lensocr")


class ResultAggregator:
    """
    Collects page results of one run in page order.

    Pages complete out of order inside a chunk, so every insert keeps the
    sequence sorted. Once closed, the aggregator silently drops late results.
    """

    def __init__(self, total_pages: int, separator: str = "\n\n---\n\n"):
        self.total_pages = total_pages
        self.separator = separator
        self._pages: List[PageResult] = []
        self._numbers: List[int] = []
        self._closed = False

    def add(self, result: PageResult) -> bool:
        """Insert a result. Returns False when it was dropped because the aggregator is closed."""
        if self._closed:
            logger.debug("Dropping late result for page %d", result.page_number)
            return False
        if not 1 <= result.page_number <= self.total_pages:
            raise ValueError(f"Page {result.page_number} is outside 1..{self.total_pages}")

        idx = bisect.bisect_left(self._numbers, result.page_number)
        if idx < len(self._numbers) and self._numbers[idx] == result.page_number:
            raise ValueError(f"Duplicate result for page {result.page_number}")
        self._numbers.insert(idx, result.page_number)
        self._pages.insert(idx, result)
        return True

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pages(self) -> Tuple[PageResult, ...]:
        return tuple(self._pages)

    @property
    def progress(self) -> int:
        return percent(len(self._pages), self.total_pages)

    @property
    def is_complete(self) -> bool:
        return len(self._pages) == self.total_pages

    def full_text(self) -> str:
        return self.separator.join(p.text for p in self._pages)
