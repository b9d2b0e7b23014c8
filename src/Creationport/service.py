"""Caller side of the worker protocol.

``ImportService`` owns one worker subprocess, writes commands to its stdin
and turns its stdout back into typed events. Worker stderr (the JSON log
stream) is relayed as ``message`` events at ``debug`` level, and process exit
is reported as a final ``exit`` event.
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from pathlib import Path

import structlog

from Creationport.config import TransferMode
from Creationport.errors import CreationportError, ProtocolError
from Creationport.events.envelope import decode_event, encode_line
from Creationport.events.schemas import (
    CancelCommand,
    ExitEvent,
    ImportCommand,
    MessageEvent,
    PipelineCommand,
    PipelineEvent,
    ScanCommand,
    is_terminal,
)

log = structlog.get_logger()

WORKER_MODULE = "Creationport.worker"
# scanparsed lines carry full descriptions; the asyncio default of 64 KiB is too small
_LINE_LIMIT = 4 * 1024 * 1024


class ServiceNotStarted(CreationportError):
    pass


class ImportService:
    def __init__(
        self,
        *,
        python: str = sys.executable,
        env: Mapping[str, str] | None = None,
        cwd: Path | str | None = None,
    ):
        self._python = python
        self._env = dict(env or {})
        self._cwd = cwd
        self._proc: asyncio.subprocess.Process | None = None
        self._queue: asyncio.Queue[PipelineEvent | None] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        if self._proc is not None:
            return
        env = {**os.environ, **self._env}
        self._proc = await asyncio.create_subprocess_exec(
            self._python,
            "-m",
            WORKER_MODULE,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=str(self._cwd) if self._cwd is not None else None,
            limit=_LINE_LIMIT,
        )
        log.info("service.worker_started", pid=self._proc.pid)
        readers = [
            asyncio.create_task(self._read_stdout()),
            asyncio.create_task(self._read_stderr()),
        ]
        self._tasks = [*readers, asyncio.create_task(self._wait_exit(readers))]

    async def send(self, command: PipelineCommand) -> None:
        if self._proc is None or self._proc.stdin is None:
            raise ServiceNotStarted("Worker process is not running")
        self._proc.stdin.write(encode_line(command))
        await self._proc.stdin.drain()

    async def scan(self, product_key: str, platform_data_root: Path | str) -> None:
        await self.send(ScanCommand(product_key=product_key, platform_data_root=str(platform_data_root)))

    async def import_creations(
        self,
        ids: Iterable[str],
        source_data_root: Path | str,
        product_key: str,
        platform_data_root: Path | str,
        staging_root: Path | str,
        downloads_root: Path | str,
        create_archives: bool = True,
        transfer_mode: TransferMode | None = None,
    ) -> None:
        await self.send(
            ImportCommand(
                ids=list(ids),
                source_data_root=str(source_data_root),
                product_key=product_key,
                platform_data_root=str(platform_data_root),
                staging_root=str(staging_root),
                downloads_root=str(downloads_root),
                create_archives=create_archives,
                transfer_mode=transfer_mode,
            )
        )

    async def cancel(self) -> None:
        await self.send(CancelCommand())

    async def _read_stdout(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        async for raw in self._proc.stdout:
            line = raw.strip()
            if not line:
                continue
            try:
                event = decode_event(line)
            except ProtocolError as exc:
                log.warning("service.bad_event", error=str(exc))
                event = MessageEvent(level="warn", message=f"Unreadable worker output: {exc}")
            await self._queue.put(event)

    async def _read_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        async for raw in self._proc.stderr:
            text = raw.decode("utf-8", errors="replace").rstrip()
            if text:
                await self._queue.put(MessageEvent(level="debug", message=text))

    async def _wait_exit(self, readers: list[asyncio.Task]) -> None:
        assert self._proc is not None
        await asyncio.gather(*readers, return_exceptions=True)
        code = await self._proc.wait()
        log.info("service.worker_exited", code=code)
        await self._queue.put(ExitEvent(code=code))
        await self._queue.put(None)

    async def events(self) -> AsyncIterator[PipelineEvent]:
        """Yield events until the worker has exited."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def run_until_terminal(
        self, on_event: Callable[[PipelineEvent], None] | None = None
    ) -> list[PipelineEvent]:
        """Collect events up to and including the first terminal one."""
        collected: list[PipelineEvent] = []
        while True:
            event = await self._queue.get()
            if event is None:
                # Exit was already delivered; keep the sentinel for events()
                await self._queue.put(None)
                return collected
            collected.append(event)
            if on_event is not None:
                on_event(event)
            if is_terminal(event):
                return collected

    async def close(self, timeout: float = 10.0) -> int | None:
        """Close stdin so the worker finishes its current run and exits."""
        if self._proc is None:
            return None
        if self._proc.stdin is not None and not self._proc.stdin.is_closing():
            self._proc.stdin.close()
            try:
                await self._proc.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass
        try:
            await asyncio.wait_for(self._proc.wait(), timeout)
        except asyncio.TimeoutError:
            log.warning("service.worker_kill", pid=self._proc.pid)
            self._proc.kill()
            await self._proc.wait()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        return self._proc.returncode

    async def __aenter__(self) -> ImportService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
