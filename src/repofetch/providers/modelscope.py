from __future__ import annotations

import logging
from urllib.parse import quote, urlencode

from repofetch.errors import InvalidResponseError, NotFoundError
from repofetch.schemas import FileEntry, RepositoryId

from .base import HttpProviderAdapter, MetadataHeaderNames, ProviderKind

logger = logging.getLogger(__name__)


class ModelScopeAdapter(HttpProviderAdapter):
    """API-listing hub whose file listing carries the sha256 of every file."""

    kind = ProviderKind.MODELSCOPE
    name = "ModelScope"
    default_host = "modelscope.cn"

    def build_file_url(self, repo: RepositoryId, revision: str, relative_path: str) -> str:
        query = urlencode({"Revision": revision, "FilePath": relative_path}, quote_via=quote)
        return f"{self.base_url}/api/v1/models/{repo.repo_id}/repo?{query}"

    def metadata_header_names(self) -> MetadataHeaderNames:
        # The download endpoint redirects to object storage whose ETag is not
        # the listed sha256, so only the listing is trusted for hash and size.
        return MetadataHeaderNames(trust_generic_headers=False)

    def list_files(self, repo: RepositoryId, revision: str) -> list[FileEntry]:
        payload, _ = self._get_json(
            f"{self.base_url}/api/v1/models/{repo.repo_id}/repo/files",
            params={"Revision": revision, "Recursive": "true"},
        )
        if not isinstance(payload, dict):
            raise InvalidResponseError("ModelScope listing must be a JSON object")
        if payload.get("Success") is False:
            raise NotFoundError(
                f"ModelScope listing failed repo={repo} message={payload.get('Message', '')}",
                status_code=payload.get("Code") if isinstance(payload.get("Code"), int) else None,
            )

        data = payload.get("Data")
        files = data.get("Files") if isinstance(data, dict) else None
        if not isinstance(files, list):
            raise InvalidResponseError("ModelScope listing has no Data.Files array")

        entries: list[FileEntry] = []
        for item in files:
            if not isinstance(item, dict):
                continue
            if str(item.get("Type", "blob")).lower() == "tree":
                continue
            path = item.get("Path")
            if not isinstance(path, str) or not path:
                continue
            entries.append(
                FileEntry(
                    relative_path=path,
                    expected_size=int(item.get("Size") or 0),
                    content_hash=item.get("Sha256") or None,
                )
            )

        logger.info(
            "ms listing repo=%s revision=%s files=%d", repo, revision, len(entries)
        )
        return entries
