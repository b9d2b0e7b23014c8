# tests/conftest.py

import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from Creationport.catalog import CATALOG_HEADER_KEY, CatalogStore
from Creationport.config import Settings
from Creationport.metrics import reset_counters
from Creationport.schemas import CreationEntry

PRODUCT_KEY = "skyrimse"
PRODUCT_DIR = "Skyrim Special Edition"

HEADER_ROW = {"Description": "This file holds the content catalog", "Version": "1.1"}


@pytest.fixture(autouse=True)
def _fresh_metrics():
    reset_counters()
    yield
    reset_counters()


@dataclass
class Workspace:
    """A fake game install: platform data root, Data folder, staging and downloads."""

    root: Path

    @property
    def platform_root(self) -> Path:
        return self.root / "appdata"

    @property
    def source_root(self) -> Path:
        return self.root / "Data"

    @property
    def staging_root(self) -> Path:
        return self.root / "staging"

    @property
    def downloads_root(self) -> Path:
        return self.root / "downloads"

    @property
    def catalog_path(self) -> Path:
        return self.platform_root / PRODUCT_DIR / "ContentCatalog.txt"

    def write_catalog(self, rows: dict[str, Any], *, header: bool = True) -> Path:
        payload: dict[str, Any] = {CATALOG_HEADER_KEY: HEADER_ROW} if header else {}
        payload.update(rows)
        self.catalog_path.parent.mkdir(parents=True, exist_ok=True)
        self.catalog_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return self.catalog_path

    def read_catalog(self) -> dict[str, Any]:
        return json.loads(self.catalog_path.read_text(encoding="utf-8"))

    def add_source(self, rel_path: str, content: bytes | None = None) -> Path:
        path = self.source_root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content if content is not None else f"data:{rel_path}".encode())
        return path

    @staticmethod
    def row(title: str, files: list[str], version: str = "1.0", **extra: Any) -> dict[str, Any]:
        row: dict[str, Any] = {"Title": title, "Version": version, "Files": files, "FilesSize": 1024}
        row.update(extra)
        return row

    def backups(self) -> list[Path]:
        return sorted(self.catalog_path.parent.glob("ContentCatalog.txt.*.bak"))


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    ws = Workspace(tmp_path)
    ws.source_root.mkdir(parents=True)
    ws.staging_root.mkdir(parents=True)
    ws.downloads_root.mkdir(parents=True)
    return ws


@pytest.fixture
def settings() -> Settings:
    return Settings(transfer_mode="move", create_archives=False, staging_id_prefix="bethesdanet")


@pytest.fixture
def store() -> CatalogStore:
    return CatalogStore()


@pytest.fixture
def make_creation() -> Callable[..., CreationEntry]:
    def _make(
        creation_id: str = "1001",
        *,
        files: list[str] | None = None,
        title: str = "Alpha",
        version: str = "1.0",
        prefix: str = "TM",
        achievement_safe: bool = False,
    ) -> CreationEntry:
        return CreationEntry(
            id=creation_id,
            manifest_key=f"{prefix}_{creation_id}",
            title=title,
            version=version,
            files=files if files is not None else ["alpha.esm"],
            achievement_safe=achievement_safe,
        )

    return _make
