# src/lensocr/pdf_processor.py
from __future__ import annotations

import asyncio
import io
import logging
import threading
from abc import ABC, abstractmethod
from typing import List

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from .exceptions import DocumentError
from .models import PageImage

logger = logging.getLogger("lensocr")

PDF_HEADER_WINDOW = 1024


def encode_jpeg(image: Image.Image, quality: int) -> PageImage:
    """Encode a Pillow image as the run-wide JPEG preview."""
    rgb = image.convert("RGB")
    buf = io.BytesIO()
    rgb.save(buf, format="JPEG", quality=quality)
    return PageImage(data=buf.getvalue(), width=rgb.width, height=rgb.height, mime_type="image/jpeg")


# --- Step 1, interface ---
class RasterizedDocument(ABC):
    """
    A decoded document whose pages can be rendered one at a time.
    Page count and order are deterministic for a given input.
    """

    @property
    @abstractmethod
    def page_count(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def render_sync(self, page_number: int) -> PageImage:
        """Render one page, 1-based. Blocking."""
        raise NotImplementedError

    async def render(self, page_number: int) -> PageImage:
        return await asyncio.to_thread(self.render_sync, page_number)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class BasePageSource(ABC):
    """
    Interface for any document decoding engine.
    """

    @abstractmethod
    def open(self, document: bytes) -> RasterizedDocument:
        """Decode the document bytes, raises DocumentError when they cannot be read."""
        raise NotImplementedError

    def rasterize(self, document: bytes) -> List[PageImage]:
        """Render every page of the document, in order."""
        with self.open(document) as doc:
            return [doc.render_sync(i) for i in range(1, doc.page_count + 1)]


# --- Step 2, concrete implementation with PyMuPDF ---
class PyMuPDFDocument(RasterizedDocument):
    """PDF document opened with PyMuPDF. Rendering is serialised, a fitz.Document is not thread safe."""

    def __init__(self, doc: "fitz.Document", render_scale: float, jpeg_quality: int):
        self._doc = doc
        self._matrix = fitz.Matrix(render_scale, render_scale)
        self._quality = jpeg_quality
        self._lock = threading.Lock()

    @property
    def page_count(self) -> int:
        return len(self._doc)

    def render_sync(self, page_number: int) -> PageImage:
        if not 1 <= page_number <= self.page_count:
            raise DocumentError(f"Page {page_number} is out of range, document has {self.page_count} pages")
        try:
            with self._lock:
                page = self._doc.load_page(page_number - 1)
                pix = page.get_pixmap(matrix=self._matrix, alpha=False)
                image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
            return encode_jpeg(image, self._quality)
        except Exception as e:
            raise DocumentError(f"Failed to render page {page_number}, {e}") from e

    def close(self) -> None:
        with self._lock:
            self._doc.close()


class SingleImageDocument(RasterizedDocument):
    """A plain image upload, treated as a one page document."""

    def __init__(self, image: Image.Image, jpeg_quality: int):
        self._image = image
        self._quality = jpeg_quality

    @property
    def page_count(self) -> int:
        return 1

    def render_sync(self, page_number: int) -> PageImage:
        if page_number != 1:
            raise DocumentError(f"Page {page_number} is out of range, document has 1 page")
        return encode_jpeg(self._image, self._quality)

    def close(self) -> None:
        self._image.close()


class PyMuPDFPageSource(BasePageSource):
    """Page source that uses PyMuPDF for PDFs and Pillow for single images."""

    def __init__(self, render_scale: float = 1.0, jpeg_quality: int = 75):
        self.render_scale = render_scale
        self.jpeg_quality = jpeg_quality

    def open(self, document: bytes) -> RasterizedDocument:
        if not document:
            raise DocumentError("Document is empty")

        # readers accept a header preceded by junk within the first kilobyte
        if b"%PDF-" in document[:PDF_HEADER_WINDOW]:
            try:
                doc = fitz.open(stream=document, filetype="pdf")
            except Exception as e:
                raise DocumentError(f"Failed to open PDF, {e}") from e
            if doc.needs_pass:
                doc.close()
                raise DocumentError("PDF is password protected")
            logger.debug("Opened PDF with %d pages", len(doc))
            return PyMuPDFDocument(doc, self.render_scale, self.jpeg_quality)

        # Not a PDF, try an image
        try:
            image = Image.open(io.BytesIO(document))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise DocumentError(f"Unsupported document format, {e}") from e
        logger.debug("Opened single image document %sx%s", image.width, image.height)
        return SingleImageDocument(image, self.jpeg_quality)


# --- Step 3, factory ---
def get_page_source(engine_name: str = "pymupdf", **kwargs) -> BasePageSource:
    """
    Create a page source by name.
    """
    name = (engine_name or "").lower()
    if name == "pymupdf":
        return PyMuPDFPageSource(**kwargs)
    raise ValueError(f"Unknown PDF engine, '{engine_name}'. Supported engines, ['pymupdf']")
