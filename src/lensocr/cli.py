# src/lensocr/cli.py
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from queue import Queue
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from .backends import load_backend
from .chat import ChatSession
from .config import ExtractionConfig
from .controller import RunController
from .exceptions import LensOCRError
from .exporters import EXPORTERS, write_exports
from .logger import configure_logging, setup_logging
from .models import RunState, RunStatus
from .pdf_processor import get_page_source

__all__ = ["build_controller", "extract_document", "main"]

logger = logging.getLogger("lensocr")

EXIT_ERROR = 1
EXIT_CANCELLED = 130


def build_controller(config: ExtractionConfig) -> RunController:
    page_source = get_page_source(
        config.pdf_engine, render_scale=config.render_scale, jpeg_quality=config.jpeg_quality
    )
    client = load_backend(
        config.extraction_backend, **config.build_backend_kwargs(temperature=config.temperature)
    )
    return RunController(page_source, client, config)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, controller: RunController) -> Dict[int, Any]:
    """
    First SIGINT/SIGTERM cancels the run cooperatively, a second one forces an exit.
    Returns the handlers that were replaced.
    """
    requested = {"count": 0}

    def _handler(signum, frame):
        requested["count"] += 1
        if requested["count"] == 1:
            logger.warning("Shutdown signal received! Stopping after the current pages.")
            loop.call_soon_threadsafe(controller.cancel)
        else:
            logger.error("Second shutdown signal received! Forcing an immediate exit.")
            sys.exit(EXIT_CANCELLED)

    return {signum: signal.signal(signum, _handler) for signum in (signal.SIGINT, signal.SIGTERM)}


def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


async def extract_document(controller: RunController, path: Path, show_progress: bool = True) -> RunState:
    """Run the pipeline on one file with a progress bar."""
    data = path.read_bytes()
    pbar = tqdm(total=0, desc="Extracting pages", unit="page", disable=not show_progress)

    def _on_state(state: RunState):
        if state.total_pages and pbar.total != state.total_pages:
            pbar.total = state.total_pages
        pbar.n = len(state.pages)
        pbar.set_postfix_str(f"{state.elapsed_seconds:.1f}s", refresh=False)
        pbar.refresh()

    unsubscribe = controller.subscribe(_on_state)
    previous = _install_signal_handlers(asyncio.get_running_loop(), controller)
    try:
        return await controller.start(data, path.name)
    finally:
        _restore_signal_handlers(previous)
        unsubscribe()
        pbar.close()


def _report(state: RunState) -> int:
    if state.status == RunStatus.COMPLETED:
        print(f"Extracted {len(state.pages)} pages in {state.total_duration_ms / 1000:.1f}s")
        return 0
    if state.status == RunStatus.ERROR:
        print(f"Process failure: {state.error_message}", file=sys.stderr)
        return EXIT_ERROR
    print(state.notice or "Processing stopped.", file=sys.stderr)
    return EXIT_CANCELLED


async def _run_command(args: argparse.Namespace, config: ExtractionConfig) -> int:
    controller = build_controller(config)
    state = await extract_document(controller, args.file, show_progress=not args.quiet)
    code = _report(state)
    if code == 0:
        for path in write_exports(state, config.output_dir, config.export_formats):
            print(f"Saved {path}")
    return code


async def _chat_command(args: argparse.Namespace, config: ExtractionConfig) -> int:
    controller = build_controller(config)
    state = await extract_document(controller, args.file, show_progress=not args.quiet)
    code = _report(state)
    if code != 0:
        return code

    session = ChatSession(load_backend(config.conversation_backend, **config.build_backend_kwargs()), state)
    print("Ask questions about the document. Type 'exit' or press Ctrl-D to quit.")
    while True:
        try:
            question = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        if question.strip().lower() in {"exit", "quit"}:
            break
        if not question.strip():
            continue
        try:
            answer = await session.send(question)
        except LensOCRError as e:
            print(f"Chat error: {e}", file=sys.stderr)
            continue
        print(answer.content)
    return 0


# -------------------------------
# CLI parsing
# -------------------------------

def _add_common_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("file", type=Path, help="PDF or image file to extract")

    p.add_argument("-c", "--concurrency", type=int, help="Maximum number of pages extracted at once")
    p.add_argument("--scale", type=float, help="Render scale for PDF pages (1.0 = 72 dpi)")
    p.add_argument("--quality", type=int, help="JPEG quality of the page images sent for extraction")
    p.add_argument("--model", type=str, help="Gemini model name")
    p.add_argument(
        "--pdf-engine",
        type=str,
        default="pymupdf",
        choices=["pymupdf"],
        help="Underlying engine for document rendering",
    )
    p.add_argument("--error-log-path", type=Path, help="Append run failures to this JSONL file")
    p.add_argument("-q", "--quiet", action="store_true", help="Hide the progress bar")

    log_group = p.add_argument_group("Logging")
    log_group.add_argument("--log-file", type=Path, help="Write a rotating log file here")
    log_group.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")

    perf_group = p.add_argument_group("Performance logging")
    perf_group.add_argument("--log-performance", action="store_true", help="Enable performance logging to a file")
    perf_group.add_argument("--performance-log-path", type=Path, help="Path for the performance log JSONL file")


def _build_run_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    p = subparsers.add_parser("run", help="Extract a document and export the result")
    _add_common_arguments(p)
    p.add_argument("-o", "--output-dir", type=Path, default=Path("."), help="Directory for the exported files")
    p.add_argument(
        "-f", "--format",
        dest="formats",
        nargs="+",
        choices=sorted(EXPORTERS),
        default=["txt"],
        help="Export formats",
    )
    return p


def _build_chat_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    p = subparsers.add_parser("chat", help="Extract a document, then ask questions about it")
    _add_common_arguments(p)
    return p


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="lensocr, parallel AI extraction for multi-page documents")
    subparsers = parser.add_subparsers(dest="command")
    _build_run_parser(subparsers)
    _build_chat_parser(subparsers)
    return parser.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> ExtractionConfig:
    cfg_dict = {
        "output_dir": getattr(args, "output_dir", None),
        "export_formats": getattr(args, "formats", None),
        "error_log_path": args.error_log_path,
        "concurrency_limit": args.concurrency,
        "render_scale": args.scale,
        "jpeg_quality": args.quality,
        "model": args.model,
        "pdf_engine": args.pdf_engine,
        "log_performance": args.log_performance,
        "performance_log_path": args.performance_log_path,
    }
    cfg_dict = {k: v for k, v in cfg_dict.items() if v is not None}
    try:
        return ExtractionConfig.from_dict(cfg_dict)
    except ValueError as e:
        raise SystemExit(f"Invalid configuration: {e}")


# -------------------------------
# Entry points
# -------------------------------

def main(argv: Optional[List[str]] = None):
    args = _parse_args(argv)
    if args.command not in {"run", "chat"}:
        print("Usage:\n  lensocr run <file> [-o <dir>] [-f txt html doc pdf]\n  lensocr chat <file>")
        sys.exit(2)

    if not args.file.is_file():
        raise SystemExit(f"File not found: {args.file}")

    config = _config_from_args(args)

    log_queue: Queue = Queue(-1)
    configure_logging(log_queue)
    listener = setup_logging(
        log_queue,
        level=logging.DEBUG if args.verbose else logging.WARNING,
        file_path=args.log_file,
        file_level=logging.DEBUG if args.verbose else logging.INFO,
        console=True,
    )
    listener.start()

    try:
        command = _run_command if args.command == "run" else _chat_command
        code = asyncio.run(command(args, config))
    except LensOCRError as e:
        raise SystemExit(f"lensocr failed: {e}")
    finally:
        listener.stop()

    sys.exit(code)


if __name__ == "__main__":
    main()
