"""Tests for the stdin/stdout worker loop."""

import io
import threading

import orjson

from Creationport.events import decode_event
from Creationport.orchestrator import ListSink
from Creationport.worker import StreamSink, Worker, serve


class BlockingOrchestrator:
    """Stands in for the orchestrator; holds a scan open until released."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = []

    def scan(self, product_key, platform_data_root):
        self.calls.append(("scan", product_key, platform_data_root))
        self.started.set()
        self.release.wait(timeout=5)

    def import_creations(self, *args, **kwargs):
        self.calls.append(("import", args, kwargs))


def test_unknown_command_is_fatal():
    sink = ListSink()
    worker = Worker(sink, orchestrator=BlockingOrchestrator())

    worker.dispatch(b'{"type":"explode"}')

    (fatal,) = sink.events
    assert fatal.type == "fatal"
    assert fatal.error == "Unknown message event: explode"


def test_malformed_line_is_fatal():
    sink = ListSink()
    worker = Worker(sink, orchestrator=BlockingOrchestrator())

    worker.dispatch(b"{{{")

    assert [e.type for e in sink.events] == ["fatal"]


def test_busy_worker_rejects_second_command():
    sink = ListSink()
    orchestrator = BlockingOrchestrator()
    worker = Worker(sink, orchestrator=orchestrator)
    scan = b'{"type":"scan","productKey":"skyrimse","platformDataRoot":"/x"}'

    worker.dispatch(scan)
    assert orchestrator.started.wait(timeout=5)
    worker.dispatch(scan)
    orchestrator.release.set()
    worker.join(timeout=5)

    (warning,) = sink.events
    assert warning.type == "message"
    assert warning.level == "warn"
    assert len(orchestrator.calls) == 1
    assert not worker.running


def test_cancel_sets_token_and_next_run_resets_it():
    sink = ListSink()
    orchestrator = BlockingOrchestrator()
    worker = Worker(sink, orchestrator=orchestrator)

    worker.dispatch(b'{"type":"cancel"}')
    assert worker.token.cancelled

    worker.dispatch(
        orjson.dumps(
            {
                "type": "import",
                "ids": ["1"],
                "sourceDataRoot": "/d",
                "productKey": "starfield",
                "platformDataRoot": "/p",
                "stagingRoot": "/s",
                "downloadsRoot": "/dl",
                "transferMode": "copy",
            }
        )
    )
    worker.join(timeout=5)

    (call,) = orchestrator.calls
    assert call[0] == "import"
    assert call[1][0] == ["1"]
    assert call[2]["transfer_mode"] == "copy"
    assert call[2]["token"] is worker.token
    assert not worker.token.cancelled


def test_stream_sink_writes_lines():
    out = io.BytesIO()
    sink = StreamSink(out)
    worker = Worker(sink, orchestrator=BlockingOrchestrator())

    worker.dispatch(b'{"type":"nope"}')
    worker.dispatch(b'{"type":"nope2"}')

    lines = out.getvalue().splitlines()
    assert [decode_event(line).type for line in lines] == ["fatal", "fatal"]


def test_serve_runs_scan_until_eof(workspace, settings):
    workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"])})
    command = orjson.dumps(
        {"type": "scan", "productKey": "skyrimse", "platformDataRoot": str(workspace.platform_root)}
    )
    stdin = io.BytesIO(b"\n" + command + b"\n")
    stdout = io.BytesIO()

    assert serve(stdin, stdout, settings) == 0

    events = [decode_event(line) for line in stdout.getvalue().splitlines()]
    assert [e.type for e in events][-2:] == ["scanparsed", "scancomplete"]
    assert events[-1].total == 1


def test_import_without_transfer_mode_uses_worker_settings(workspace, monkeypatch):
    from Creationport import orchestrator as orchestrator_module
    from Creationport.config import Settings

    workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"])})
    workspace.add_source("alpha.esm")
    seen_modes = []
    real_stage = orchestrator_module.stage_creation

    def _spy(*args, **kwargs):
        seen_modes.append(kwargs["mode"])
        return real_stage(*args, **kwargs)

    monkeypatch.setattr(orchestrator_module, "stage_creation", _spy)
    command = orjson.dumps(
        {
            "type": "import",
            "ids": ["1001"],
            "sourceDataRoot": str(workspace.source_root),
            "productKey": "skyrimse",
            "platformDataRoot": str(workspace.platform_root),
            "stagingRoot": str(workspace.staging_root),
            "downloadsRoot": str(workspace.downloads_root),
            "createArchives": False,
        }
    )
    stdout = io.BytesIO()

    assert serve(io.BytesIO(command + b"\n"), stdout, Settings(transfer_mode="copy", create_archives=False)) == 0

    assert seen_modes == ["copy"]
    events = [decode_event(line) for line in stdout.getvalue().splitlines()]
    assert events[-1].type == "importcomplete"
    assert events[-1].succeeded == 1
