#!/usr/bin/env python3
"""
Operator CLI that drives the import worker the same way the host does.

Examples:
  PYTHONPATH=./src python scripts/cli.py scan --product skyrimse --data-root "$LOCALAPPDATA"
  PYTHONPATH=./src python scripts/cli.py import --product starfield --data-root "$LOCALAPPDATA" \
      --source ~/Games/Starfield/Data --staging ~/mods/starfield --downloads ~/downloads/starfield 1001 1002

Events are printed one JSON object per line. ``--json`` prints them raw; the
default prints a short human-readable line for each.
"""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import click
import orjson

# Ensure src is on the import path (also for the spawned worker)
SRC_DIR = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(SRC_DIR))

from Creationport.config import load_settings  # noqa: E402
from Creationport.events.envelope import to_wire  # noqa: E402
from Creationport.events.schemas import (  # noqa: E402
    FatalEvent,
    ImportCompleteEvent,
    ImportProgressEvent,
    MessageEvent,
    PipelineEvent,
    ScanCompleteEvent,
    ScanParsedEvent,
)
from Creationport.logging import setup_logging  # noqa: E402
from Creationport.service import ImportService  # noqa: E402


def _worker_env() -> dict[str, str]:
    existing = os.environ.get("PYTHONPATH")
    path = str(SRC_DIR) if not existing else os.pathsep.join([str(SRC_DIR), existing])
    return {"PYTHONPATH": path}


def _printer(raw: bool, verbose: bool):
    def _print(event: PipelineEvent) -> None:
        if isinstance(event, MessageEvent) and event.level == "debug" and not verbose:
            return
        if raw:
            click.echo(orjson.dumps(to_wire(event)).decode())
            return
        if isinstance(event, ScanParsedEvent):
            click.echo(f"  {event.data.id:<12} {event.data.title} (v{event.data.version or '?'})")
        elif isinstance(event, ImportProgressEvent):
            suffix = f" [{event.detail}]" if event.detail else ""
            click.echo(f"[{event.done + 1}/{event.total}] {event.message}{suffix}")
        elif isinstance(event, ScanCompleteEvent):
            click.echo(f"Found {event.total} creation(s)")
        elif isinstance(event, ImportCompleteEvent):
            state = " (cancelled)" if event.cancelled else ""
            click.echo(f"Imported {event.succeeded}/{event.total}{state}")
            for err in event.errors:
                click.echo(click.style(err, fg="red"), err=True)
        elif isinstance(event, FatalEvent):
            click.echo(click.style(f"FATAL: {event.error}", fg="red", bold=True), err=True)
        elif isinstance(event, MessageEvent):
            click.echo(f"{event.level}: {event.message}", err=event.level != "info")

    return _print


async def _drive(start, raw: bool, verbose: bool) -> int:
    printer = _printer(raw, verbose)
    async with ImportService(env=_worker_env()) as service:
        await start(service)
        events = await service.run_until_terminal(printer)
    last = events[-1] if events else None
    if isinstance(last, FatalEvent) or last is None:
        return 1
    if isinstance(last, ImportCompleteEvent) and last.errors:
        return 3
    return 0


@click.group()
@click.option("--json", "raw", is_flag=True, help="Print events as raw JSON lines")
@click.option("--verbose", "-v", is_flag=True, help="Also print worker log lines")
@click.pass_context
def app(ctx: click.Context, raw: bool, verbose: bool) -> None:
    settings = load_settings()
    setup_logging(settings)
    ctx.obj = {"raw": raw, "verbose": verbose, "settings": settings}


@app.command()
@click.option("--product", "product_key", required=True, help="Product key, e.g. skyrimse or starfield")
@click.option("--data-root", "platform_data_root", type=click.Path(path_type=Path), required=True)
@click.pass_obj
def scan(obj: dict, product_key: str, platform_data_root: Path) -> None:
    """List the creations found in the content catalog."""

    async def _start(service: ImportService) -> None:
        await service.scan(product_key, platform_data_root)

    sys.exit(asyncio.run(_drive(_start, obj["raw"], obj["verbose"])))


@app.command(name="import")
@click.option("--product", "product_key", required=True)
@click.option("--data-root", "platform_data_root", type=click.Path(path_type=Path), required=True)
@click.option(
    "--source",
    "source_data_root",
    type=click.Path(path_type=Path),
    required=True,
    help="Game Data folder holding the creation files",
)
@click.option("--staging", "staging_root", type=click.Path(path_type=Path), required=True)
@click.option("--downloads", "downloads_root", type=click.Path(path_type=Path), required=True)
@click.option("--archives/--no-archives", default=None, help="Create backup archives")
@click.option("--mode", "transfer_mode", type=click.Choice(["move", "copy"]), default=None)
@click.argument("ids", nargs=-1, required=True)
@click.pass_obj
def import_(
    obj: dict,
    product_key: str,
    platform_data_root: Path,
    source_data_root: Path,
    staging_root: Path,
    downloads_root: Path,
    archives: bool | None,
    transfer_mode: str | None,
    ids: tuple[str, ...],
) -> None:
    """Import creations by id."""
    settings = obj["settings"]
    create_archives = settings.create_archives if archives is None else archives
    mode = transfer_mode or settings.transfer_mode

    async def _start(service: ImportService) -> None:
        await service.import_creations(
            ids,
            source_data_root,
            product_key,
            platform_data_root,
            staging_root,
            downloads_root,
            create_archives=create_archives,
            transfer_mode=mode,
        )

    sys.exit(asyncio.run(_drive(_start, obj["raw"], obj["verbose"])))


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
