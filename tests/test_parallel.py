import asyncio

import pytest

from lensocr.cancellation import CancellationToken
from lensocr.exceptions import ErrorKind, ExtractionError
from lensocr.parallel import BatchScheduler, PerformanceTracker, RunTimer, chunk_pages

from conftest import make_result, wait_until


def test_chunk_pages_shape():
    chunks = chunk_pages(25, 12)
    assert [len(c) for c in chunks] == [12, 12, 1]
    assert chunks[0][0] == 1 and chunks[-1] == [25]
    assert chunk_pages(0, 12) == []
    with pytest.raises(ValueError):
        chunk_pages(5, 0)


class Recorder:
    def __init__(self):
        self.in_flight = set()
        self.done = set()
        self.max_in_flight = 0
        self.seen_done_at_start = {}

    async def run_page(self, page_number):
        self.seen_done_at_start[page_number] = frozenset(self.done)
        self.in_flight.add(page_number)
        self.max_in_flight = max(self.max_in_flight, len(self.in_flight))
        # finish in reverse order inside a chunk
        await asyncio.sleep(0.001 * (30 - page_number))
        self.in_flight.discard(page_number)
        self.done.add(page_number)
        return make_result(page_number)


@pytest.mark.asyncio
async def test_chunks_are_barriers_and_bounded():
    rec = Recorder()
    results = await BatchScheduler(12).run(25, rec.run_page, CancellationToken())

    assert sorted(r.page_number for r in results) == list(range(1, 26))
    assert rec.max_in_flight == 12
    first_chunk = set(range(1, 13))
    for p in range(13, 25):
        assert first_chunk <= rec.seen_done_at_start[p]
    assert set(range(1, 25)) <= rec.seen_done_at_start[25]


@pytest.mark.asyncio
async def test_signaled_token_stops_further_chunks():
    token = CancellationToken()
    started = []

    async def run_page(page_number):
        started.append(page_number)
        if page_number == 2:
            token.signal()
        await asyncio.sleep(0)
        return None if token.is_signaled() else make_result(page_number)

    results = await BatchScheduler(3).run(9, run_page, token)
    assert started == [1, 2, 3]
    assert results == []


@pytest.mark.asyncio
async def test_failure_propagates_without_waiting_for_siblings():
    slow_gate = asyncio.Event()
    slow_finished = []

    async def run_page(page_number):
        if page_number == 2:
            raise ExtractionError(ErrorKind.RATE_LIMITED, "Rate limit exceeded. Please wait a moment.")
        if page_number == 1:
            await slow_gate.wait()
            slow_finished.append(page_number)
        return make_result(page_number)

    with pytest.raises(ExtractionError) as exc_info:
        await BatchScheduler(3).run(6, run_page, CancellationToken())
    assert exc_info.value.kind == ErrorKind.RATE_LIMITED
    assert slow_finished == []

    # the abandoned sibling is still allowed to finish
    slow_gate.set()
    await wait_until(lambda: slow_finished == [1])


@pytest.mark.asyncio
async def test_failure_stops_later_chunks():
    started = []

    async def run_page(page_number):
        started.append(page_number)
        await asyncio.sleep(0)
        if page_number == 3:
            raise ExtractionError(ErrorKind.SERVICE_ERROR, "OCR Processing Failed: boom")
        return make_result(page_number)

    with pytest.raises(ExtractionError):
        await BatchScheduler(2).run(6, run_page, CancellationToken())
    assert max(started) <= 4


def test_scheduler_rejects_bad_limit():
    with pytest.raises(ValueError):
        BatchScheduler(0)


def test_run_timer_stop_freezes_elapsed():
    timer = RunTimer()
    assert timer.running
    frozen = timer.stop()
    assert not timer.running
    assert timer.elapsed() == frozen
    assert timer.elapsed_ms() >= 0
    assert timer.sample() <= frozen


def test_performance_tracker_metrics():
    tracker = PerformanceTracker()
    tracker.add_page(make_result(1, duration_ms=1000))
    tracker.add_page(make_result(2, duration_ms=3000))
    timer = RunTimer()
    timer.stop()
    metrics = tracker.get_final_metrics(2, timer)
    assert metrics["pages"] == 2
    assert metrics["extract_total_seconds"] == 4.0
    assert metrics["extract_avg_sec_per_page"] == 2.0
