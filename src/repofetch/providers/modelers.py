from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from repofetch.errors import InvalidResponseError
from repofetch.schemas import FileEntry, RepositoryId

from .base import HttpProviderAdapter, MetadataHeaderNames, ProviderKind

logger = logging.getLogger(__name__)

_MAX_TREE_DEPTH = 32


class ModelersAdapter(HttpProviderAdapter):
    kind = ProviderKind.MODELERS
    name = "Modelers"
    default_host = "modelers.cn"

    def build_file_url(self, repo: RepositoryId, revision: str, relative_path: str) -> str:
        return (
            f"{self.base_url}/coderepo/web/v1/file/{repo.repo_id}/"
            f"{quote(revision, safe='')}/media/{quote(relative_path, safe='/')}"
        )

    def metadata_header_names(self) -> MetadataHeaderNames:
        return MetadataHeaderNames(trust_generic_headers=False)

    def list_files(self, repo: RepositoryId, revision: str) -> list[FileEntry]:
        entries: list[FileEntry] = []
        pending: list[tuple[str, int]] = [("", 0)]

        while pending:
            directory, depth = pending.pop(0)
            if depth > _MAX_TREE_DEPTH:
                raise InvalidResponseError(
                    f"Modelers tree deeper than {_MAX_TREE_DEPTH} levels repo={repo}"
                )
            for item in self._list_directory(repo, revision, directory):
                path = item.get("path")
                if not isinstance(path, str) or not path:
                    continue
                if item.get("type") == "dir":
                    pending.append((path, depth + 1))
                    continue
                entries.append(
                    FileEntry(
                        relative_path=path,
                        expected_size=int(item.get("size") or 0),
                        content_hash=item.get("sha256") or item.get("etag") or None,
                    )
                )

        logger.info(
            "modelers listing repo=%s revision=%s files=%d", repo, revision, len(entries)
        )
        return entries

    def _list_directory(
        self, repo: RepositoryId, revision: str, directory: str
    ) -> list[dict[str, Any]]:
        payload, _ = self._get_json(
            f"{self.base_url}/api/v1/file/{repo.repo_id}",
            params={"ref": revision, "path": directory},
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        tree = data.get("tree") if isinstance(data, dict) else None
        if not isinstance(tree, list):
            raise InvalidResponseError("Modelers listing has no data.tree array")
        return [item for item in tree if isinstance(item, dict)]
