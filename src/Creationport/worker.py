"""Import worker: reads commands on stdin, writes events on stdout.

Run as ``python -m Creationport.worker``. The main thread only decodes and
dispatches command lines so ``cancel`` is seen while an import runs on the
background thread. Logs go to stderr; stdout carries nothing but events.
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Iterable
from typing import Any, BinaryIO

import structlog

from Creationport.config import Settings, load_settings
from Creationport.errors import OrchestratorBusy, ProtocolError
from Creationport.events.envelope import decode_command, encode_line
from Creationport.events.schemas import (
    CancelCommand,
    FatalEvent,
    ImportCommand,
    MessageEvent,
    PipelineEvent,
    ScanCommand,
    UnknownCommand,
)
from Creationport.logging import setup_logging
from Creationport.orchestrator import CancellationToken, EventSink, PipelineOrchestrator

log = structlog.get_logger()


class StreamSink:
    """Writes one framed event per line; safe to call from any thread."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._lock = threading.Lock()

    def send(self, event: PipelineEvent) -> None:
        data = encode_line(event)
        with self._lock:
            self._stream.write(data)
            self._stream.flush()


class Worker:
    def __init__(
        self,
        sink: EventSink,
        *,
        settings: Settings | None = None,
        orchestrator: PipelineOrchestrator | None = None,
    ):
        self.sink = sink
        self.orchestrator = orchestrator or PipelineOrchestrator(sink, settings=settings)
        self.token = CancellationToken()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def dispatch(self, line: bytes | str) -> None:
        try:
            command = decode_command(line)
        except ProtocolError as exc:
            log.warning("worker.bad_command", error=str(exc))
            self.sink.send(FatalEvent(error=str(exc)))
            return

        if isinstance(command, CancelCommand):
            log.info("worker.cancel_requested", running=self.running)
            self.token.cancel()
        elif isinstance(command, UnknownCommand):
            self.sink.send(FatalEvent(error=f"Unknown message event: {command.type}"))
        elif isinstance(command, ScanCommand):
            self._start(command.type, self.orchestrator.scan, command.product_key, command.platform_data_root)
        elif isinstance(command, ImportCommand):
            self._start(
                command.type,
                self.orchestrator.import_creations,
                command.ids,
                command.source_data_root,
                command.product_key,
                command.platform_data_root,
                command.staging_root,
                command.downloads_root,
                command.create_archives,
                token=self.token,
                transfer_mode=command.transfer_mode,
            )

    def _start(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        if self.running:
            self._reject(name)
            return
        self.token.reset()
        self._thread = threading.Thread(
            target=self._run, args=(name, fn, args, kwargs), name=f"creationport-{name}", daemon=True
        )
        self._thread.start()

    def _reject(self, name: str) -> None:
        log.warning("worker.busy", command=name)
        self.sink.send(
            MessageEvent(level="warn", message=f"Ignoring '{name}': an operation is already running")
        )

    def _run(self, name: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        try:
            fn(*args, **kwargs)
        except OrchestratorBusy:
            self._reject(name)
        except Exception:
            # The sink itself may be broken here, so only log
            log.exception("worker.operation_crashed", command=name)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


def serve(stdin: Iterable[bytes], stdout: BinaryIO, settings: Settings | None = None) -> int:
    """Process command lines until EOF, then wait for the running operation."""
    worker = Worker(StreamSink(stdout), settings=settings)
    log.info("worker.started")
    for raw in stdin:
        line = raw.strip()
        if not line:
            continue
        worker.dispatch(line)
    log.info("worker.stdin_closed", running=worker.running)
    worker.join()
    return 0


def main() -> int:
    settings = load_settings()
    setup_logging(settings)
    return serve(sys.stdin.buffer, sys.stdout.buffer, settings)


if __name__ == "__main__":
    sys.exit(main())
