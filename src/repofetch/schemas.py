from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from repofetch.errors import InvalidRepositoryIdError

_ID_PART_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class DTOBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RepositoryId(DTOBase):
    namespace: str
    name: str

    @field_validator("namespace", "name")
    @classmethod
    def validate_part(cls, value: str) -> str:
        normalized = value.strip()
        if not _ID_PART_PATTERN.match(normalized) or ".." in normalized:
            raise ValueError(f"invalid repository id component: {value!r}")
        return normalized

    @classmethod
    def parse(cls, raw: str) -> RepositoryId:
        parts = (raw or "").strip().split("/")
        if len(parts) != 2:
            raise InvalidRepositoryIdError(
                f"repository id must be namespace/name, got {raw!r}"
            )
        try:
            return cls(namespace=parts[0], name=parts[1])
        except ValidationError as exc:
            raise InvalidRepositoryIdError(
                f"repository id must be namespace/name, got {raw!r}"
            ) from exc

    @property
    def repo_id(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def folder_name(self) -> str:
        return f"models--{self.namespace}--{self.name}"

    def __str__(self) -> str:
        return self.repo_id


class FileEntry(DTOBase):
    relative_path: str
    expected_size: int = Field(default=0, ge=0)
    content_hash: str | None = None

    @field_validator("relative_path")
    @classmethod
    def validate_relative_path(cls, value: str) -> str:
        normalized = value.strip().lstrip("/")
        parts = PurePosixPath(normalized).parts
        if not parts or any(part in {"..", "."} for part in parts):
            raise ValueError(f"invalid relative path: {value!r}")
        return "/".join(parts)

    @field_validator("content_hash")
    @classmethod
    def validate_content_hash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = normalize_hash(value)
        return normalized or None


class FileMetadata(DTOBase):
    resolved_location: str
    content_hash: str
    size: int = Field(ge=0)
    revision_id: str | None = None

    @property
    def is_sha256(self) -> bool:
        return bool(_SHA256_PATTERN.match(self.content_hash))


class DownloadOutcome(StrEnum):
    ALREADY_PUBLISHED = "already_published"
    LINKED_EXISTING_BLOB = "linked_existing_blob"
    TRANSFERRED = "transferred"


@dataclass(slots=True, frozen=True)
class DownloadResult:
    pointer_path: Path
    snapshot_dir: Path
    outcome: DownloadOutcome
    metadata: FileMetadata | None = None
    blob_path: Path | None = None
    transferred_bytes: int = 0


@dataclass(slots=True, frozen=True)
class DownloadProgress:
    path: str
    downloaded: int
    total: int

    @property
    def percentage(self) -> float | None:
        if self.total <= 0:
            return None
        return min(100.0, self.downloaded / self.total * 100.0)


@dataclass(slots=True, frozen=True)
class RepositoryProgress:
    completed_files: int
    total_files: int
    downloaded_bytes: int
    total_bytes: int


def normalize_hash(value: str) -> str:
    """Strip whitespace and surrounding quote characters from a hash value."""
    normalized = value.strip()
    while len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in "\"'":
        normalized = normalized[1:-1].strip()
    return normalized
