# src/lensocr/exporters.py
from __future__ import annotations

import html
import io
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

import fitz  # PyMuPDF

from .models import PageResult, RunState, RunStatus
from .utils import safe_fname

logger = logging.getLogger("lensocr")

_MARGIN = (36, 36, -36, -36)

_HTML_CSS = """
body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif; padding: 40px; color: #334155; max-width: 900px; margin: 0 auto; line-height: 1.6; background: #f8fafc; }
.page { background: white; padding: 30px; border-radius: 12px; margin-bottom: 40px; border: 1px solid #e2e8f0; }
.image-container { text-align: center; margin-bottom: 25px; border-bottom: 1px solid #f1f5f9; padding-bottom: 25px; }
.image-container img { max-width: 100%; height: auto; border-radius: 4px; }
h3 { color: #4f46e5; margin-top: 0; font-size: 14px; text-transform: uppercase; letter-spacing: 0.1em; }
.markdown-body { font-family: "SFMono-Regular", Consolas, "Liberation Mono", Menlo, monospace; font-size: 13px; color: #475569; word-break: break-all; }
hr { border: 0; height: 1px; background: #e2e8f0; margin: 40px 0; }
@media print {
  body { background: white; padding: 0; }
  .page { border: none; margin: 0; page-break-after: always; }
}
"""

_PDF_CSS = """
* { font-family: sans-serif; }
h1 { font-size: 18px; }
h3 { font-size: 11px; color: #4f46e5; }
.markdown-body { font-family: monospace; font-size: 9px; }
"""


def output_filename(file_name: str, extension: str) -> str:
    """Annual Report.pdf -> annual-report_OCR.html"""
    stem = Path(file_name or "document").stem.replace(".", "-")
    return f"{safe_fname(stem, fallback='document')}_OCR.{extension}"


def _text_html(text: str) -> str:
    return html.escape(text).replace("\n", "<br/>")


def export_text(full_text: str) -> bytes:
    return full_text.encode("utf-8")


def render_html(file_name: str, pages: Sequence[PageResult]) -> str:
    """Self-contained HTML report, previews are embedded as data URLs."""
    title = html.escape(file_name or "document")
    page_html = "<hr/>".join(
        f"""
    <div class="page">
      <div class="image-container">
        <img src="{p.preview.data_url}" alt="Page {p.page_number}" />
      </div>
      <div class="text-content">
        <h3>Page {p.page_number}</h3>
        <div class="markdown-body">{_text_html(p.text)}</div>
      </div>
    </div>"""
        for p in pages
    )
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>{title} - LensOCR Export</title>
  <style>{_HTML_CSS}</style>
</head>
<body>
  <h1 style="color: #1e293b; margin-bottom: 8px;">{title}</h1>
  <p style="color: #64748b; margin-bottom: 40px; font-size: 14px;">Extracted by LensOCR</p>
  {page_html}
</body>
</html>
"""


def export_html(file_name: str, pages: Sequence[PageResult]) -> bytes:
    return render_html(file_name, pages).encode("utf-8")


def export_word(file_name: str, pages: Sequence[PageResult]) -> bytes:
    # Word opens HTML served as application/msword
    return render_html(file_name, pages).encode("utf-8")


def _flow_html(body: str) -> bytes:
    """Lay out an HTML fragment over as many A4 pages as it needs."""
    buf = io.BytesIO()
    writer = fitz.DocumentWriter(buf)
    story = fitz.Story(html=body, user_css=_PDF_CSS)
    mediabox = fitz.paper_rect("a4")
    where = mediabox + _MARGIN
    more = True
    while more:
        device = writer.begin_page(mediabox)
        more, _ = story.place(where)
        story.draw(device)
        writer.end_page()
    writer.close()
    return buf.getvalue()


def export_pdf(file_name: str, pages: Sequence[PageResult]) -> bytes:
    """A title page, then for every page its preview followed by the extracted text."""
    title = html.escape(file_name or "document")
    a4 = fitz.paper_rect("a4")
    out = fitz.open()
    try:
        with fitz.open(stream=_flow_html(f"<h1>{title}</h1><p>Extracted by LensOCR</p>"), filetype="pdf") as head:
            out.insert_pdf(head)
        for p in pages:
            img_page = out.new_page(width=a4.width, height=a4.height)
            img_page.insert_image(a4 + _MARGIN, stream=p.preview.data, keep_proportion=True)
            body = f'<h3>Page {p.page_number}</h3><div class="markdown-body">{_text_html(p.text)}</div>'
            with fitz.open(stream=_flow_html(body), filetype="pdf") as text_doc:
                out.insert_pdf(text_doc)
        return out.tobytes()
    finally:
        out.close()


EXPORTERS: Dict[str, Tuple[str, Callable[[RunState], bytes]]] = {
    "txt": ("text/plain", lambda s: export_text(s.full_text)),
    "html": ("text/html", lambda s: export_html(s.file_name, s.pages)),
    "doc": ("application/msword", lambda s: export_word(s.file_name, s.pages)),
    "pdf": ("application/pdf", lambda s: export_pdf(s.file_name, s.pages)),
}


def export_state(state: RunState, fmt: str) -> Tuple[str, bytes]:
    """Render a completed run in one of the EXPORTERS formats. Returns (filename, content)."""
    if state.status != RunStatus.COMPLETED:
        raise ValueError(f"Only completed documents can be exported, status is {state.status.value}")
    key = fmt.lower().lstrip(".")
    if key not in EXPORTERS:
        raise ValueError(f"Unknown export format, '{fmt}'. Supported formats, {sorted(EXPORTERS)}")
    _, render = EXPORTERS[key]
    return output_filename(state.file_name, key), render(state)


def write_exports(state: RunState, output_dir: Path, formats: Iterable[str]) -> List[Path]:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for fmt in formats:
        name, content = export_state(state, fmt)
        path = output_dir / name
        path.write_bytes(content)
        logger.info("Wrote %s export to %s", fmt, path)
        written.append(path)
    return written
