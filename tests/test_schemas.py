from __future__ import annotations

import pytest
from pydantic import ValidationError

from repofetch.errors import InvalidRepositoryIdError, TerminalError
from repofetch.schemas import (
    DownloadProgress,
    FileEntry,
    FileMetadata,
    RepositoryId,
    normalize_hash,
)


def test_repository_id_parse_and_folder_name() -> None:
    repo = RepositoryId.parse(" acme/model ")

    assert repo.namespace == "acme"
    assert repo.name == "model"
    assert repo.repo_id == "acme/model"
    assert repo.folder_name == "models--acme--model"
    assert str(repo) == "acme/model"


@pytest.mark.parametrize(
    "raw",
    ["", "acme", "acme/model/extra", "acme/", "/model", "../model", "acme/..", "acme/mo del"],
)
def test_repository_id_rejects_malformed_ids(raw: str) -> None:
    with pytest.raises(InvalidRepositoryIdError) as exc_info:
        RepositoryId.parse(raw)

    assert isinstance(exc_info.value, TerminalError)
    assert isinstance(exc_info.value, ValueError)


def test_file_entry_normalizes_path_and_hash() -> None:
    entry = FileEntry(relative_path="/sub//dir/file.bin", content_hash=' "abc" ')

    assert entry.relative_path == "sub/dir/file.bin"
    assert entry.content_hash == "abc"
    assert entry.expected_size == 0


@pytest.mark.parametrize("path", ["", "../escape.bin", "sub/../../x", "./"])
def test_file_entry_rejects_escaping_paths(path: str) -> None:
    with pytest.raises(ValidationError):
        FileEntry(relative_path=path)


def test_file_entry_forbids_extra_fields_and_negative_size() -> None:
    with pytest.raises(ValidationError):
        FileEntry(relative_path="a.bin", unknown="x")  # type: ignore[call-arg]
    with pytest.raises(ValidationError):
        FileEntry(relative_path="a.bin", expected_size=-1)


def test_file_metadata_detects_sha256_hashes() -> None:
    sha = "a" * 64
    assert FileMetadata(resolved_location="u", content_hash=sha, size=1).is_sha256
    assert not FileMetadata(resolved_location="u", content_hash="abc123", size=1).is_sha256


def test_normalize_hash_strips_nested_quotes() -> None:
    assert normalize_hash(" '\"deadbeef\"' ") == "deadbeef"
    assert normalize_hash('"') == '"'


def test_download_progress_percentage() -> None:
    assert DownloadProgress("a.bin", 5, 10).percentage == 50.0
    assert DownloadProgress("a.bin", 12, 10).percentage == 100.0
    assert DownloadProgress("a.bin", 5, 0).percentage is None
