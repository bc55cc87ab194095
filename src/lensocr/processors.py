# src/lensocr/processors.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .backends.base import BaseExtractionClient
from .cancellation import CancellationToken
from .exceptions import RunCancelled
from .models import PageResult
from .pdf_processor import RasterizedDocument

logger = logging.getLogger("lensocr")


class PageTask:
    """
    Per-page unit of work: render, extract, hand the result over.

    run() returns the PageResult on success, None when the run was cancelled
    at any checkpoint, and lets extraction failures propagate unretried.
    """

    def __init__(
        self,
        document: RasterizedDocument,
        client: BaseExtractionClient,
        token: CancellationToken,
        on_result: Optional[Callable[[PageResult], None]] = None,
    ):
        self.document = document
        self.client = client
        self.token = token
        self.on_result = on_result

    async def run(self, page_number: int) -> Optional[PageResult]:
        try:
            return await self._process(page_number)
        except RunCancelled:
            logger.debug("Page %d skipped, run was cancelled", page_number)
            return None

    async def _process(self, page_number: int) -> PageResult:
        # 1. cancelled before anything happened
        self.token.raise_if_signaled()

        # 2. render, excluded from the reported duration
        image = await self.document.render(page_number)

        # 3. cancelled while rendering
        self.token.raise_if_signaled()

        # 4-5. extraction, failures propagate
        start = time.perf_counter()
        try:
            text = await self.client.extract(image)
        except Exception as e:
            logger.error("Error on page %d, %s", page_number, e)
            raise
        duration_ms = int(round((time.perf_counter() - start) * 1000))

        # 6. cancelled while the call was in flight, the text never surfaces
        self.token.raise_if_signaled()

        # 7. success, published before returning
        result = PageResult(page_number=page_number, text=text, duration_ms=duration_ms, preview=image)
        if self.on_result is not None:
            self.on_result(result)
        return result

    __call__ = run
