import signal
from pathlib import Path

import pytest

from lensocr import cli
from lensocr.backends.gemini_backend import GeminiExtractionClient
from lensocr.controller import RunController
from lensocr.models import RunStatus

from conftest import ScriptedClient


@pytest.fixture
def no_signal_handlers(monkeypatch):
    installed = {}

    def fake_signal(signum, handler):
        previous = installed.get(signum)
        installed[signum] = handler
        return previous

    monkeypatch.setattr(signal, "signal", fake_signal)
    return installed


def test_parse_run_arguments():
    args = cli._parse_args(["run", "doc.pdf", "-c", "4", "--scale", "2", "-o", "out", "-f", "txt", "pdf"])
    assert args.command == "run"
    assert args.file == Path("doc.pdf")
    assert args.concurrency == 4
    assert args.formats == ["txt", "pdf"]

    cfg = cli._config_from_args(args)
    assert cfg.concurrency_limit == 4
    assert cfg.render_scale == 2.0
    assert cfg.output_dir == Path("out")
    assert cfg.export_formats == ["txt", "pdf"]
    assert cfg.jpeg_quality == 75


def test_invalid_option_values_exit():
    args = cli._parse_args(["run", "doc.pdf", "-c", "0"])
    with pytest.raises(SystemExit):
        cli._config_from_args(args)


def test_unknown_format_is_rejected_by_the_parser():
    with pytest.raises(SystemExit):
        cli._parse_args(["run", "doc.pdf", "-f", "odt"])


def test_missing_file_exits(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["run", str(tmp_path / "missing.pdf")])
    assert "File not found" in str(exc_info.value.code)


def test_no_command_prints_usage(capsys):
    with pytest.raises(SystemExit) as exc_info:
        cli.main([])
    assert exc_info.value.code == 2
    assert "lensocr run" in capsys.readouterr().out


def test_build_controller_uses_configured_backend(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "k")
    cfg = cli._config_from_args(cli._parse_args(["run", "doc.pdf", "--model", "m"]))
    controller = cli.build_controller(cfg)
    assert isinstance(controller, RunController)
    assert isinstance(controller.client, GeminiExtractionClient)
    assert controller.client.model == "m"
    assert controller.client.api_key == "k"


@pytest.mark.asyncio
async def test_extract_document_runs_the_pipeline(make_controller, no_signal_handlers, tmp_path):
    path = tmp_path / "scan.pdf"
    path.write_bytes(b"%PDF-1.7")
    controller = make_controller(3, ScriptedClient())
    before = {signum: no_signal_handlers.get(signum, signal.SIG_DFL) for signum in (signal.SIGINT, signal.SIGTERM)}
    during = []
    controller.subscribe(lambda state: during.append(no_signal_handlers.get(signal.SIGINT)))

    state = await cli.extract_document(controller, path, show_progress=False)

    assert state.status == RunStatus.COMPLETED
    assert state.file_name == "scan.pdf"
    assert during and during[0] is not before[signal.SIGINT]
    # the run handlers are gone once the pipeline returns, so a later chat loop sees the previous ones
    assert {signum: no_signal_handlers[signum] for signum in before} == before


@pytest.mark.asyncio
async def test_first_signal_cancels_the_run(make_controller, no_signal_handlers, tmp_path):
    path = tmp_path / "scan.pdf"
    path.write_bytes(b"%PDF-1.7")
    client = ScriptedClient(gated=True)
    controller = make_controller(2, client)

    interrupted = []

    def interrupt_once_started(state):
        # the ticker publishes after both pages are in flight
        if state.status == RunStatus.PROCESSING and len(client.started) == 2 and not interrupted:
            interrupted.append(state)
            no_signal_handlers[signal.SIGINT](signal.SIGINT, None)
        elif state.status == RunStatus.IDLE and interrupted:
            client.release_all()

    controller.subscribe(interrupt_once_started)
    state = await cli.extract_document(controller, path, show_progress=False)

    assert state.status == RunStatus.IDLE
    assert state.pages == ()
    assert cli._report(state) == cli.EXIT_CANCELLED


def test_build_controller_accepts_temperature_in_backend_kwargs():
    cfg = cli._config_from_args(cli._parse_args(["run", "doc.pdf"]))
    cfg.api_key = "k"
    cfg.backend_kwargs = {"temperature": 0.7}
    controller = cli.build_controller(cfg)
    assert controller.client.temperature == 0.7
