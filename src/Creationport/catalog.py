"""Read, parse and safely rewrite the vendor content catalog.

The catalog is a JSON object keyed by manifest key, plus one header
pseudo-entry (``ContentCatalog``) carrying the file's own description and
version. :class:`CatalogStore` is the only component that writes it, and it
always leaves a timestamped backup beside the file before doing so.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from Creationport.errors import CatalogIOError, CatalogNotFound, CorruptCatalog, UnsupportedProduct
from Creationport.schemas import CatalogSnapshot

log = structlog.get_logger()

CATALOG_FILE_NAME = "ContentCatalog.txt"
CATALOG_HEADER_KEY = "ContentCatalog"

# Product key -> folder name under the platform's local app data
PRODUCT_DATA_DIRS: dict[str, str] = {
    "skyrimse": "Skyrim Special Edition",
    "skyrimspecialedition": "Skyrim Special Edition",
    "starfield": "Starfield",
    "fallout4": "Fallout4",
}


@dataclass
class RemovalReport:
    removed: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    backup_path: Path | None = None
    written: bool = False


def _backup_name(catalog_path: Path, now: datetime) -> Path:
    stamp = now.strftime("%Y%m%dT%H%M%S%f")
    return catalog_path.with_name(f"{catalog_path.name}.{stamp}.bak")


def _write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=str(path.parent), prefix=f".{path.name}.", delete=False
    ) as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)
        handle.flush()
        try:
            os.fsync(handle.fileno())
        except OSError:
            pass
        temp_name = handle.name
    try:
        os.replace(temp_name, path)
    except OSError:
        Path(temp_name).unlink(missing_ok=True)
        raise


class CatalogStore:
    def __init__(
        self,
        *,
        catalog_file_name: str = CATALOG_FILE_NAME,
        product_dirs: Mapping[str, str] | None = None,
    ):
        self.catalog_file_name = catalog_file_name
        self.product_dirs = {**PRODUCT_DATA_DIRS, **dict(product_dirs or {})}

    def catalog_path(self, product_key: str, platform_data_root: Path | str) -> Path:
        folder = self.product_dirs.get(product_key)
        if not folder:
            raise UnsupportedProduct(product_key)
        if not platform_data_root:
            raise CatalogIOError(f"No platform data folder given for '{product_key}'")
        return Path(platform_data_root) / folder / self.catalog_file_name

    def _read_raw(self, path: Path) -> dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8-sig")
        except FileNotFoundError as exc:
            raise CatalogNotFound(str(path)) from exc
        except OSError as exc:
            raise CatalogIOError(f"Failed to read catalog {path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CorruptCatalog(f"Catalog {path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise CorruptCatalog(f"Catalog {path} must contain a JSON object")
        return data

    def load(self, product_key: str, platform_data_root: Path | str) -> CatalogSnapshot:
        """Return the catalog rows keyed by manifest key.

        A missing catalog file yields an empty snapshot.
        """
        path = self.catalog_path(product_key, platform_data_root)
        try:
            raw = self._read_raw(path)
        except CatalogNotFound:
            log.debug("catalog.not_found", path=str(path), product_key=product_key)
            return {}

        snapshot: CatalogSnapshot = {}
        for key, row in raw.items():
            if key == CATALOG_HEADER_KEY:
                continue
            if not isinstance(row, dict):
                log.warning("catalog.row_skipped", key=key, reason="not an object")
                continue
            snapshot[key] = row
        log.info("catalog.loaded", path=str(path), entries=len(snapshot))
        return snapshot

    def remove_entries(
        self,
        product_key: str,
        platform_data_root: Path | str,
        keys: Iterable[str],
        *,
        now: datetime | None = None,
    ) -> RemovalReport:
        """Delete ``keys`` from the catalog, backing the file up first.

        Nothing is written when no key was present, so calling this twice
        with the same keys leaves the catalog and its backups untouched the
        second time.
        """
        path = self.catalog_path(product_key, platform_data_root)
        report = RemovalReport()
        try:
            original = self._read_raw(path)
        except CatalogNotFound as exc:
            raise CatalogIOError(f"Catalog {path} disappeared before it could be updated") from exc

        updated = dict(original)
        for key in keys:
            if key == CATALOG_HEADER_KEY:
                log.warning("catalog.entry_protected", key=key, path=str(path))
                continue
            if key in updated:
                del updated[key]
                report.removed.append(key)
                log.debug("catalog.entry_removed", key=key, path=str(path))
            else:
                report.missing.append(key)
                log.debug("catalog.entry_not_found", key=key, path=str(path))

        if len(updated) == len(original):
            log.info("catalog.update_skipped", path=str(path), reason="no entries removed")
            return report

        backup = _backup_name(path, now or datetime.now(timezone.utc))
        try:
            shutil.copy2(path, backup)
            report.backup_path = backup
            log.info("catalog.backup_written", path=str(path), backup=str(backup))
            _write_json_atomic(path, updated)
        except OSError as exc:
            raise CatalogIOError(f"Failed to rewrite catalog {path}: {exc}") from exc

        report.written = True
        log.info(
            "catalog.updated",
            path=str(path),
            removed=len(report.removed),
            remaining=len(updated),
        )
        return report
