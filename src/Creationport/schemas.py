# schemas.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

# Manifest key -> raw catalog row, header entry removed.
CatalogSnapshot = dict[str, dict[str, Any]]

SOURCE_NAME = "Bethesda.net"
STORE_SEARCH_URL = "https://creations.bethesda.net/en/{product}/all?text={query}"

WIRE_MODEL_CONFIG = dict(alias_generator=to_camel, populate_by_name=True)


class CreationEntry(BaseModel):
    """One creation listed in the vendor catalog.

    Re-derived from the catalog on every scan and never mutated.
    """

    id: str
    manifest_key: str
    title: str
    version: str = ""
    files: list[str] = Field(default_factory=list)
    file_size_bytes: int = Field(default=0, ge=0)
    timestamp: datetime | None = None
    achievement_safe: bool = False
    description: str = ""
    author: str = SOURCE_NAME
    picture_url: str = ""

    model_config = dict(WIRE_MODEL_CONFIG, frozen=True)


class ArchiveReference(BaseModel):
    archive_id: str
    file_name: str
    content_hash: str
    size_bytes: int = Field(ge=0)

    model_config = dict(WIRE_MODEL_CONFIG, frozen=True)


class ImportResult(BaseModel):
    """A successfully imported creation, ready for the host's mod registry."""

    id: str
    creation_id: str
    name: str
    logical_file_name: str
    author: str
    version: str
    description: str = ""
    picture_url: str = ""
    short_description: str = f"Imported from {SOURCE_NAME}"
    notes: str = ""
    install_time: datetime
    installation_path: str
    source: str = "website"
    url: str = ""
    archive: ArchiveReference | None = None

    model_config = dict(WIRE_MODEL_CONFIG, frozen=True)

    @classmethod
    def from_creation(
        cls,
        creation: CreationEntry,
        *,
        staged_id: str,
        product_key: str,
        archive: ArchiveReference | None = None,
        now: datetime | None = None,
    ) -> ImportResult:
        now = now or datetime.now(timezone.utc)
        safe = "YES" if creation.achievement_safe else "NO"
        return cls(
            id=staged_id,
            creation_id=creation.id,
            name=creation.title,
            logical_file_name=creation.title,
            author=creation.author,
            version=creation.version,
            description=creation.description,
            picture_url=creation.picture_url,
            notes=f"Imported from {SOURCE_NAME} {now.date().isoformat()}\nAchievement Safe: {safe}",
            install_time=now,
            installation_path=staged_id,
            url=STORE_SEARCH_URL.format(product=product_key, query=quote(creation.title)),
            archive=archive,
        )


@dataclass
class StagedCreation:
    """Working-copy state of one creation during import.

    ``staging_path`` is owned exclusively by this creation for the run. The
    archive fields stay ``None`` unless archiving succeeds.
    """

    creation: CreationEntry
    staging_id: str
    staging_path: Path
    transferred: list[str] = field(default_factory=list)
    archive_id: str | None = None
    content_hash: str | None = None
    artifact_size_bytes: int | None = None

    def archive_reference(self, file_name: str) -> ArchiveReference | None:
        if self.archive_id is None or self.content_hash is None:
            return None
        return ArchiveReference(
            archive_id=self.archive_id,
            file_name=file_name,
            content_hash=self.content_hash,
            size_bytes=self.artifact_size_bytes or 0,
        )


@dataclass(frozen=True)
class ArtifactInfo:
    archive_id: str
    file_name: str
    temp_path: Path
    destination: Path
    content_hash: str
    size_bytes: int
