"""Tests for reading and rewriting the content catalog."""

import json
from datetime import datetime, timezone

import pytest

from Creationport.catalog import CATALOG_HEADER_KEY, CatalogStore
from Creationport.errors import CatalogIOError, CorruptCatalog, UnsupportedProduct

NOW = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)


class TestCatalogLoad:
    def test_load_strips_header(self, workspace, store):
        workspace.write_catalog(
            {
                "TM_1001": workspace.row("Alpha", ["alpha.esm"]),
                "TM_1002": workspace.row("Beta", ["beta.esm"]),
            }
        )

        snapshot = store.load("skyrimse", workspace.platform_root)

        assert list(snapshot) == ["TM_1001", "TM_1002"]
        assert CATALOG_HEADER_KEY not in snapshot
        assert snapshot["TM_1001"]["Title"] == "Alpha"

    def test_missing_catalog_is_empty(self, workspace, store):
        assert store.load("skyrimse", workspace.platform_root) == {}

    def test_product_alias_shares_folder(self, workspace, store):
        workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"])})
        assert list(store.load("skyrimspecialedition", workspace.platform_root)) == ["TM_1001"]

    def test_unsupported_product(self, workspace, store):
        with pytest.raises(UnsupportedProduct) as excinfo:
            store.load("morrowind", workspace.platform_root)
        assert excinfo.value.product_key == "morrowind"

    def test_extra_product_dirs(self, workspace):
        store = CatalogStore(product_dirs={"fallout76": "Fallout76"})
        path = store.catalog_path("fallout76", workspace.platform_root)
        assert path == workspace.platform_root / "Fallout76" / "ContentCatalog.txt"

    def test_empty_platform_root_rejected(self, store):
        with pytest.raises(CatalogIOError):
            store.catalog_path("starfield", "")

    def test_corrupt_json(self, workspace, store):
        workspace.catalog_path.parent.mkdir(parents=True)
        workspace.catalog_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(CorruptCatalog):
            store.load("skyrimse", workspace.platform_root)

    def test_top_level_array_is_corrupt(self, workspace, store):
        workspace.catalog_path.parent.mkdir(parents=True)
        workspace.catalog_path.write_text("[1, 2, 3]", encoding="utf-8")
        with pytest.raises(CorruptCatalog):
            store.load("skyrimse", workspace.platform_root)

    def test_byte_order_mark_accepted(self, workspace, store):
        workspace.catalog_path.parent.mkdir(parents=True)
        payload = json.dumps({"TM_1001": workspace.row("Alpha", ["alpha.esm"])})
        workspace.catalog_path.write_bytes(b"\xef\xbb\xbf" + payload.encode())
        assert list(store.load("skyrimse", workspace.platform_root)) == ["TM_1001"]

    def test_non_object_rows_skipped(self, workspace, store):
        workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"]), "TM_bad": "nope"})
        assert list(store.load("skyrimse", workspace.platform_root)) == ["TM_1001"]


class TestRemoveEntries:
    def test_removes_keys_and_writes_backup(self, workspace, store):
        workspace.write_catalog(
            {
                "TM_1001": workspace.row("Alpha", ["alpha.esm"]),
                "TM_1002": workspace.row("Beta", ["beta.esm"]),
            }
        )
        before = workspace.catalog_path.read_bytes()

        report = store.remove_entries("skyrimse", workspace.platform_root, ["TM_1001"], now=NOW)

        assert report.removed == ["TM_1001"]
        assert report.missing == []
        assert report.written is True
        assert report.backup_path is not None
        assert report.backup_path.name == "ContentCatalog.txt.20240501T123000000000.bak"
        assert report.backup_path.read_bytes() == before

        data = workspace.read_catalog()
        assert set(data) == {CATALOG_HEADER_KEY, "TM_1002"}

    def test_header_is_preserved_and_protected(self, workspace, store):
        workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"])})

        report = store.remove_entries(
            "skyrimse", workspace.platform_root, [CATALOG_HEADER_KEY, "TM_1001"], now=NOW
        )

        assert report.removed == ["TM_1001"]
        data = workspace.read_catalog()
        assert data == {CATALOG_HEADER_KEY: {"Description": "This file holds the content catalog", "Version": "1.1"}}

    def test_second_removal_is_a_no_op(self, workspace, store):
        workspace.write_catalog(
            {
                "TM_1001": workspace.row("Alpha", ["alpha.esm"]),
                "TM_1002": workspace.row("Beta", ["beta.esm"]),
            }
        )
        store.remove_entries("skyrimse", workspace.platform_root, ["TM_1001"], now=NOW)
        after_first = workspace.catalog_path.read_bytes()

        report = store.remove_entries("skyrimse", workspace.platform_root, ["TM_1001"])

        assert report.written is False
        assert report.removed == []
        assert report.missing == ["TM_1001"]
        assert workspace.catalog_path.read_bytes() == after_first
        assert len(workspace.backups()) == 1

    def test_unknown_keys_leave_file_untouched(self, workspace, store):
        workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"])})
        before = workspace.catalog_path.read_bytes()

        report = store.remove_entries("skyrimse", workspace.platform_root, ["TM_9999"])

        assert report.written is False
        assert workspace.catalog_path.read_bytes() == before
        assert workspace.backups() == []

    def test_other_rows_survive_unchanged(self, workspace, store):
        beta = workspace.row("Beta", ["beta.esm"], AchievementSafe=True, Timestamp=1700000000)
        workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"]), "TM_1002": beta})

        store.remove_entries("skyrimse", workspace.platform_root, ["TM_1001"], now=NOW)

        assert workspace.read_catalog()["TM_1002"] == beta

    def test_missing_catalog_cannot_be_updated(self, workspace, store):
        with pytest.raises(CatalogIOError):
            store.remove_entries("skyrimse", workspace.platform_root, ["TM_1001"])

    def test_write_failure_wrapped(self, workspace, store, monkeypatch):
        workspace.write_catalog({"TM_1001": workspace.row("Alpha", ["alpha.esm"])})
        before = workspace.catalog_path.read_bytes()

        def _boom(path, payload):
            raise OSError("disk full")

        monkeypatch.setattr("Creationport.catalog._write_json_atomic", _boom)
        with pytest.raises(CatalogIOError, match="disk full"):
            store.remove_entries("skyrimse", workspace.platform_root, ["TM_1001"], now=NOW)
        assert workspace.catalog_path.read_bytes() == before
