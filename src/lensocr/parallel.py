# lensocr/parallel.py
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from .cancellation import CancellationToken
from .models import PageResult

logger = logging.getLogger("lensocr")

PageRunner = Callable[[int], Awaitable[Optional[PageResult]]]


def chunk_pages(total_pages: int, size: int) -> List[List[int]]:
    """Split page numbers 1..total_pages into consecutive chunks of at most size pages."""
    if size < 1:
        raise ValueError(f"Chunk size must be at least 1, got {size}")
    pages = list(range(1, total_pages + 1))
    return [pages[i:i + size] for i in range(0, len(pages), size)]


def _discard_outcome(task: asyncio.Task) -> None:
    # Sibling of a failed task, its outcome is no longer wanted
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Discarding failure of an abandoned page task, %s", exc)


class RunTimer:
    """Monotonic wall clock for one run."""

    def __init__(self):
        self._start = time.perf_counter()
        self._stopped_at: Optional[float] = None

    def elapsed(self) -> float:
        end = self._stopped_at if self._stopped_at is not None else time.perf_counter()
        return end - self._start

    def elapsed_ms(self) -> int:
        return int(round(self.elapsed() * 1000))

    def sample(self) -> float:
        """Elapsed seconds truncated to one decimal, as displayed while processing."""
        return int(self.elapsed() * 10) / 10

    def stop(self) -> float:
        if self._stopped_at is None:
            self._stopped_at = time.perf_counter()
        return self.elapsed()

    @property
    def running(self) -> bool:
        return self._stopped_at is None


class PerformanceTracker:
    def __init__(self):
        self.page_times: Dict[int, float] = {}

    def add_page(self, result: PageResult):
        self.page_times[result.page_number] = result.duration_ms / 1000.0

    def get_final_metrics(self, total_pages: int, timer: RunTimer) -> Dict:
        extract_total = sum(self.page_times.values())
        done = len(self.page_times)
        return {
            "pages": total_pages,
            "wall_clock_total_seconds": round(timer.elapsed(), 4),
            "extract_total_seconds": round(extract_total, 4),
            "extract_avg_sec_per_page": round(extract_total / done, 4) if done > 0 else 0,
        }


class BatchScheduler:
    """
    Runs page tasks chunk by chunk with at most concurrency_limit outstanding.

    A chunk is a barrier: chunk c+1 is dispatched only after every task of
    chunk c has settled. The cancellation token is checked before each chunk.
    The first failure in a chunk is raised as soon as it is seen.
    """

    def __init__(self, concurrency_limit: int = 12):
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be at least 1, got {concurrency_limit}")
        self.concurrency_limit = concurrency_limit

    async def run(self, total_pages: int, run_page: PageRunner, token: CancellationToken) -> List[PageResult]:
        chunks = chunk_pages(total_pages, self.concurrency_limit)
        results: List[PageResult] = []

        for idx, chunk in enumerate(chunks, start=1):
            if token.is_signaled():
                logger.info("Cancellation requested, skipping %d remaining chunks", len(chunks) - idx + 1)
                break

            logger.debug("Dispatching chunk %d/%d, pages %d-%d", idx, len(chunks), chunk[0], chunk[-1])
            logger.progress(
                "chunk dispatched",
                extra={"phase": "extract", "current": idx, "total": len(chunks)},
            )
            outcomes = await self._run_chunk(chunk, run_page)
            results.extend(r for r in outcomes if r is not None)

        return results

    async def _run_chunk(self, chunk: List[int], run_page: PageRunner) -> List[Optional[PageResult]]:
        tasks = [asyncio.ensure_future(run_page(page_number)) for page_number in chunk]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for t in tasks:
                t.cancel()
            raise

        # Report the failure of the lowest page number among those that finished
        for t in tasks:
            if t.done() and not t.cancelled() and t.exception() is not None:
                for sibling in tasks:
                    if sibling is t:
                        continue
                    if sibling.done():
                        _discard_outcome(sibling)
                    else:
                        sibling.add_done_callback(_discard_outcome)
                raise t.exception()

        return [None if t.cancelled() else t.result() for t in tasks]
