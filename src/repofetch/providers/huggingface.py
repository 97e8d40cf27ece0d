from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from repofetch.errors import InvalidResponseError
from repofetch.schemas import FileEntry, RepositoryId

from .base import HttpProviderAdapter, MetadataHeaderNames, ProviderKind

logger = logging.getLogger(__name__)

HUGGINGFACE_HEADER_X_REPO_COMMIT = "x-repo-commit"
HUGGINGFACE_HEADER_X_LINKED_ETAG = "x-linked-etag"
HUGGINGFACE_HEADER_X_LINKED_SIZE = "x-linked-size"

_MAX_LISTING_PAGES = 1_000


class HuggingFaceAdapter(HttpProviderAdapter):
    """Hash-addressed hub that redirects large files to a CDN."""

    kind = ProviderKind.HUGGINGFACE
    name = "HuggingFace"
    default_host = "huggingface.co"

    def build_file_url(self, repo: RepositoryId, revision: str, relative_path: str) -> str:
        return (
            f"{self.base_url}/{repo.repo_id}/resolve/"
            f"{quote(revision, safe='')}/{quote(relative_path, safe='/')}"
        )

    def metadata_header_names(self) -> MetadataHeaderNames:
        return MetadataHeaderNames(
            hash_header=HUGGINGFACE_HEADER_X_LINKED_ETAG,
            size_header=HUGGINGFACE_HEADER_X_LINKED_SIZE,
            revision_header=HUGGINGFACE_HEADER_X_REPO_COMMIT,
            trust_generic_headers=True,
        )

    def list_files(self, repo: RepositoryId, revision: str) -> list[FileEntry]:
        url: str | None = (
            f"{self.base_url}/api/models/{repo.repo_id}/tree/{quote(revision, safe='')}"
        )
        params: dict[str, str] | None = {"recursive": "true"}
        entries: list[FileEntry] = []

        for _ in range(_MAX_LISTING_PAGES):
            if url is None:
                break
            payload, response = self._get_json(url, params=params)
            if not isinstance(payload, list):
                raise InvalidResponseError("HuggingFace tree listing must be a JSON array")
            entries.extend(self._parse_tree_items(payload))

            next_link = response.links.get("next") or {}
            url = next_link.get("url")
            params = None

        logger.info(
            "hf listing repo=%s revision=%s files=%d", repo, revision, len(entries)
        )
        return entries

    @staticmethod
    def _parse_tree_items(items: list[Any]) -> list[FileEntry]:
        entries: list[FileEntry] = []
        for item in items:
            if not isinstance(item, dict) or item.get("type") != "file":
                continue
            path = item.get("path")
            if not isinstance(path, str) or not path:
                continue

            lfs = item.get("lfs")
            if isinstance(lfs, dict) and lfs.get("oid"):
                content_hash = str(lfs["oid"])
                size = lfs.get("size", item.get("size", 0))
            else:
                content_hash = str(item["oid"]) if item.get("oid") else None
                size = item.get("size", 0)

            entries.append(
                FileEntry(
                    relative_path=path,
                    expected_size=int(size or 0),
                    content_hash=content_hash,
                )
            )
        return entries
