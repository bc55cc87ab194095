# src/lensocr/controller.py
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Callable, List, Optional

from .aggregator import ResultAggregator
from .backends.base import BaseExtractionClient
from .cancellation import CancellationToken
from .config import ExtractionConfig
from .exceptions import RunInProgressError
from .models import PageResult, RunState, RunStatus
from .parallel import BatchScheduler, PerformanceTracker, RunTimer
from .pdf_processor import BasePageSource
from .processors import PageTask
from .utils import append_jsonl

logger = logging.getLogger("lensocr")

CANCELLED_NOTICE = "Processing terminated by user."
GENERIC_ERROR = "A critical error occurred during processing."

Observer = Callable[[RunState], None]


class _Run:
    """Everything that belongs to one run. Abandoned runs keep their own context."""

    def __init__(self, file_name: str):
        self.file_name = file_name
        self.token = CancellationToken()
        self.timer = RunTimer()
        self.perf = PerformanceTracker()
        self.aggregator: Optional[ResultAggregator] = None
        self.finished = False


class RunController:
    """
    Owns the run state machine and the only writable RunState.

    idle -> processing -> completed | error, and processing -> idle on cancel.
    All transitions happen on the event loop; observers only ever receive
    immutable snapshots.
    """

    def __init__(
        self,
        page_source: BasePageSource,
        client: BaseExtractionClient,
        config: Optional[ExtractionConfig] = None,
    ):
        self.page_source = page_source
        self.client = client
        self.config = config or ExtractionConfig()
        self.scheduler = BatchScheduler(self.config.concurrency_limit)
        self._state = RunState()
        self._run: Optional[_Run] = None
        self._observers: List[Observer] = []
        self._ticker: Optional[asyncio.Task] = None

    # -----------------------------
    # Observation
    # -----------------------------
    @property
    def state(self) -> RunState:
        return self._state

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self, **changes) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        for observer in list(self._observers):
            try:
                observer(self._state)
            except Exception:
                logger.exception("State observer failed")

    def _is_current(self, run: _Run) -> bool:
        return run is self._run and not run.finished

    # -----------------------------
    # Control surface
    # -----------------------------
    def start(self, document: bytes, file_name: str = "") -> "asyncio.Task[RunState]":
        """
        Enter processing immediately and schedule the run on the running loop.
        Returns the task driving the run, its result is the final snapshot.
        """
        run = self._begin(file_name)
        return asyncio.ensure_future(self._drive(run, document))

    async def run(self, document: bytes, file_name: str = "") -> RunState:
        """Drive a complete run and return the final snapshot."""
        return await self.start(document, file_name)

    def cancel(self) -> bool:
        """Stop the current run. Returns False when nothing was processing."""
        run = self._run
        if run is None or not self._is_current(run) or self._state.status != RunStatus.PROCESSING:
            logger.debug("Cancel requested while not processing, ignored")
            return False

        run.token.signal()
        run.finished = True
        if run.aggregator is not None:
            run.aggregator.close()
        run.timer.stop()
        self._stop_ticker()
        logger.warning("Processing of %s terminated by user", run.file_name or "document")
        self._publish(
            status=RunStatus.IDLE,
            pages=(),
            full_text="",
            progress=0,
            total_duration_ms=None,
            error_message=None,
            notice=CANCELLED_NOTICE,
        )
        return True

    # -----------------------------
    # Run internals
    # -----------------------------
    def _begin(self, file_name: str) -> _Run:
        if self._state.status == RunStatus.PROCESSING:
            raise RunInProgressError("A document is already being processed")
        run = _Run(file_name)
        self._run = run
        self._publish(
            status=RunStatus.PROCESSING,
            file_name=file_name,
            pages=(),
            full_text="",
            progress=0,
            total_pages=0,
            total_duration_ms=None,
            elapsed_seconds=0.0,
            error_message=None,
            notice=None,
        )
        self._start_ticker(run)
        logger.info("Run started for %s", file_name or "document")
        return run

    async def _drive(self, run: _Run, document: bytes) -> RunState:
        try:
            await self._extract(run, document)
        except asyncio.CancelledError:
            if self._is_current(run):
                self.cancel()
            raise
        except Exception as e:
            if self._is_current(run):
                self._fail(run, e)
            else:
                logger.debug("Ignoring failure of an abandoned run, %s", e)
            return self._state

        if self._is_current(run):
            self._complete(run)
        else:
            logger.debug("Run for %s finished after it was abandoned, results dropped", run.file_name)
        return self._state

    async def _extract(self, run: _Run, document: bytes) -> List[PageResult]:
        doc = self.page_source.open(document)
        try:
            total = doc.page_count
            run.aggregator = ResultAggregator(total, self.config.page_separator)
            if self._is_current(run):
                self._publish(total_pages=total)
            logger.info("Document has %d pages, concurrency limit %d", total, self.scheduler.concurrency_limit)

            task = PageTask(doc, self.client, run.token, on_result=lambda r: self._on_page(run, r))
            return await self.scheduler.run(total, task.run, run.token)
        finally:
            # a sibling page may still be rendering in a worker thread and hold the document lock
            await asyncio.to_thread(doc.close)

    def _on_page(self, run: _Run, result: PageResult) -> None:
        if not self._is_current(run) or not run.aggregator.add(result):
            return
        run.perf.add_page(result)
        agg = run.aggregator
        logger.progress(
            "page extracted",
            extra={"phase": "extract", "pct": agg.progress, "current": len(agg.pages), "total": agg.total_pages},
        )
        self._publish(pages=agg.pages, progress=agg.progress)

    def _complete(self, run: _Run) -> None:
        agg = run.aggregator
        run.finished = True
        agg.close()
        run.timer.stop()
        self._stop_ticker()

        if not agg.is_complete:
            # A page task returned None without the token being signaled
            self._fail(run, RuntimeError(f"Only {len(agg.pages)} of {agg.total_pages} pages were extracted"))
            return

        total_ms = run.timer.elapsed_ms()
        logger.info("Run completed, %d pages in %.1fs", agg.total_pages, total_ms / 1000)
        logger.progress("done", extra={"phase": "done", "pct": 100})
        self._publish(
            status=RunStatus.COMPLETED,
            pages=agg.pages,
            full_text=agg.full_text(),
            progress=100,
            total_duration_ms=total_ms,
            elapsed_seconds=run.timer.sample(),
        )
        self._log_performance(run)

    def _fail(self, run: _Run, error: BaseException) -> None:
        run.finished = True
        run.token.signal()
        if run.aggregator is not None:
            run.aggregator.close()
        run.timer.stop()
        self._stop_ticker()

        message = str(error) or GENERIC_ERROR
        logger.error("Critical failure, %s", message)
        self._log_error(run, message)
        self._publish(
            status=RunStatus.ERROR,
            pages=(),
            full_text="",
            progress=0,
            total_duration_ms=None,
            error_message=message,
        )

    # -----------------------------
    # Telemetry
    # -----------------------------
    def _start_ticker(self, run: _Run) -> None:
        self._stop_ticker()
        self._ticker = asyncio.ensure_future(self._tick(run))

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def _tick(self, run: _Run) -> None:
        while self._is_current(run):
            await asyncio.sleep(self.config.timer_interval)
            if not self._is_current(run):
                break
            self._publish(elapsed_seconds=run.timer.sample())

    def _log_error(self, run: _Run, reason: str) -> None:
        if not self.config.error_log_path:
            return
        try:
            append_jsonl(self.config.error_log_path, {"source": run.file_name, "error_reason": reason})
        except OSError:
            logger.exception("Failed to write error log")

    def _log_performance(self, run: _Run) -> None:
        if not self.config.log_performance or not self.config.performance_log_path:
            return
        metrics = run.perf.get_final_metrics(run.aggregator.total_pages, run.timer)
        try:
            append_jsonl(
                self.config.performance_log_path,
                {"metric_type": "file_processed", "source": run.file_name, **metrics},
            )
        except OSError:
            logger.exception("Failed to write performance log")
