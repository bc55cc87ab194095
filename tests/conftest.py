from __future__ import annotations

import asyncio
import threading
from typing import Dict, List, Optional

import pytest

from lensocr.backends.base import BaseExtractionClient
from lensocr.config import ExtractionConfig
from lensocr.controller import RunController
from lensocr.models import PageImage, PageResult
from lensocr.pdf_processor import BasePageSource, RasterizedDocument


def page_image(page_number: int) -> PageImage:
    return PageImage(data=f"page-{page_number}".encode(), width=10, height=14)


def make_result(page_number: int, text: Optional[str] = None, duration_ms: int = 5) -> PageResult:
    return PageResult(
        page_number=page_number,
        text=text if text is not None else f"text {page_number}",
        duration_ms=duration_ms,
        preview=page_image(page_number),
    )


async def wait_until(predicate, attempts: int = 1000) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition was not reached")


class FakeDocument(RasterizedDocument):
    def __init__(self, total: int):
        self.total = total
        self.rendered: List[int] = []
        self.closed = False
        self.closed_in_thread: Optional[int] = None

    @property
    def page_count(self) -> int:
        return self.total

    def render_sync(self, page_number: int) -> PageImage:
        self.rendered.append(page_number)
        return page_image(page_number)

    async def render(self, page_number: int) -> PageImage:
        await asyncio.sleep(0)
        return self.render_sync(page_number)

    def close(self) -> None:
        self.closed = True
        self.closed_in_thread = threading.get_ident()


class FakePageSource(BasePageSource):
    def __init__(self, total: int):
        self.total = total
        self.documents: List[FakeDocument] = []

    def open(self, document: bytes) -> FakeDocument:
        doc = FakeDocument(self.total)
        self.documents.append(doc)
        return doc


class ScriptedClient(BaseExtractionClient):
    """
    Extraction client whose pages can be held open with gates and made to fail.
    """

    def __init__(
        self,
        texts: Optional[Dict[int, str]] = None,
        failures: Optional[Dict[int, Exception]] = None,
        gated: bool = False,
    ):
        self.texts = texts or {}
        self.failures = failures or {}
        self.gated = gated
        self.gates: Dict[int, asyncio.Event] = {}
        self.started: List[int] = []
        self.finished: List[int] = []
        self.outstanding = 0
        self.max_outstanding = 0

    def gate(self, page_number: int) -> asyncio.Event:
        return self.gates.setdefault(page_number, asyncio.Event())

    def release(self, *page_numbers: int) -> None:
        for p in page_numbers:
            self.gate(p).set()

    def release_all(self) -> None:
        for p in self.started:
            self.gate(p).set()

    async def extract(self, image: PageImage) -> str:
        page = int(image.data.decode().split("-")[1])
        self.started.append(page)
        self.outstanding += 1
        self.max_outstanding = max(self.max_outstanding, self.outstanding)
        try:
            if self.gated:
                await self.gate(page).wait()
            else:
                await asyncio.sleep(0)
            if page in self.failures:
                raise self.failures[page]
            return self.texts.get(page, f"text {page}")
        finally:
            self.outstanding -= 1
            self.finished.append(page)


@pytest.fixture
def make_controller():
    def _make(total: int, client: BaseExtractionClient, **config_kwargs) -> RunController:
        config_kwargs.setdefault("timer_interval", 0.01)
        config_kwargs.setdefault("api_key", "test-key")
        return RunController(FakePageSource(total), client, ExtractionConfig(**config_kwargs))

    return _make
