"""End-to-end tests that spawn a real worker process."""

import os
from pathlib import Path

import pytest

from Creationport.events.schemas import ExitEvent, MessageEvent, UnknownCommand
from Creationport.service import ImportService, ServiceNotStarted

SRC_DIR = Path(__file__).resolve().parents[1] / "src"


def _service(cwd: Path) -> ImportService:
    existing = os.environ.get("PYTHONPATH")
    path = str(SRC_DIR) if not existing else os.pathsep.join([str(SRC_DIR), existing])
    return ImportService(env={"PYTHONPATH": path}, cwd=cwd)


@pytest.mark.asyncio
async def test_scan_over_subprocess(workspace):
    workspace.write_catalog(
        {
            "TM_1001": workspace.row("Alpha", ["alpha.esm"]),
            "TM_1002": workspace.row("Beta", ["beta.esm"]),
        }
    )

    async with _service(workspace.root) as service:
        await service.scan("skyrimse", workspace.platform_root)
        events = await service.run_until_terminal()

    assert events[-1].type == "scancomplete"
    assert events[-1].total == 2
    assert [e.id for e in events if e.type == "scanparsed"] == ["1001", "1002"]

    rest = [e async for e in service.events()]
    assert rest[-1] == ExitEvent(code=0)
    relayed = [e for e in events + rest if isinstance(e, MessageEvent) and e.level == "debug"]
    assert any("worker.started" in e.message for e in relayed)


@pytest.mark.asyncio
async def test_import_over_subprocess(workspace):
    workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"])})
    workspace.add_source("alpha.esm")

    async with _service(workspace.root) as service:
        await service.import_creations(
            ["1001"],
            workspace.source_root,
            "skyrimse",
            workspace.platform_root,
            workspace.staging_root,
            workspace.downloads_root,
            create_archives=True,
        )
        events = await service.run_until_terminal()

    types = [e.type for e in events]
    assert "register-archive" in types
    assert "importedmod" in types
    complete = events[-1]
    assert complete.type == "importcomplete"
    assert (complete.total, complete.succeeded, complete.errors) == (1, 1, [])
    assert (workspace.staging_root / "bethesdanet-1001-1.0" / "alpha.esm").exists()


@pytest.mark.asyncio
async def test_unknown_command_over_subprocess(workspace):
    async with _service(workspace.root) as service:
        await service.send(UnknownCommand(type="explode"))
        events = await service.run_until_terminal()

    assert events[-1].type == "fatal"
    assert events[-1].error == "Unknown message event: explode"


@pytest.mark.asyncio
async def test_send_before_start(tmp_path):
    service = _service(tmp_path)
    with pytest.raises(ServiceNotStarted):
        await service.cancel()
