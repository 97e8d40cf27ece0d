from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from urllib.parse import urlsplit

import requests
from requests.structures import CaseInsensitiveDict

from repofetch.errors import InvalidResponseError, NotFoundError, UnreachableError
from repofetch.providers import MetadataHeaderNames
from repofetch.schemas import FileEntry, FileMetadata, normalize_hash

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})

_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_SAFE_HASH_PATTERN = re.compile(r"^[A-Za-z0-9._+=-]+$")
_HEADER_ETAG = "ETag"
_HEADER_CONTENT_LENGTH = "Content-Length"
_HEADER_LOCATION = "Location"


def resolve_redirect_location(original_url: str, location: str) -> str:
    """Turn a Location header into an absolute URL relative to original_url."""
    candidate = (location or "").strip()
    if not candidate:
        return original_url
    if _SCHEME_PATTERN.match(candidate):
        return candidate

    parsed = urlsplit(original_url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    if candidate.startswith("//"):
        return f"{parsed.scheme}:{candidate}"
    if candidate.startswith("/"):
        return f"{origin}{candidate}"

    directory = parsed.path.rsplit("/", 1)[0] if "/" in parsed.path else ""
    return f"{origin}{directory}/{candidate}"


class MetadataResolver:
    """Probe a remote file with HEAD for hash, size, location and revision."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    def resolve(
        self,
        url: str,
        *,
        header_names: MetadataHeaderNames,
        headers: Mapping[str, str] | None = None,
        entry: FileEntry | None = None,
    ) -> FileMetadata:
        request_headers = {"Accept-Encoding": "identity", **(headers or {})}
        try:
            response = self.session.head(
                url,
                headers=request_headers,
                allow_redirects=False,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise UnreachableError(f"metadata probe failed url={url}: {exc}") from exc

        status = response.status_code
        response_headers = CaseInsensitiveDict(response.headers)
        location = url
        if status in REDIRECT_STATUS_CODES:
            location = resolve_redirect_location(
                url, response_headers.get(_HEADER_LOCATION, "")
            )
        elif 400 <= status < 500:
            raise NotFoundError(
                f"metadata probe returned status {status} url={url}",
                status_code=status,
            )
        elif not 200 <= status < 300:
            raise UnreachableError(f"metadata probe returned status {status} url={url}")

        content_hash = self._extract_hash(response_headers, header_names, entry)
        size = self._extract_size(response_headers, header_names, entry)
        if not content_hash or size is None:
            raise InvalidResponseError(
                f"metadata is missing hash or size url={url} hash={content_hash!r} size={size!r}"
            )
        if not _SAFE_HASH_PATTERN.match(content_hash):
            raise InvalidResponseError(f"unusable content hash {content_hash!r} url={url}")

        revision_id = None
        if header_names.revision_header:
            revision_id = response_headers.get(header_names.revision_header) or None

        metadata = FileMetadata(
            resolved_location=location,
            content_hash=content_hash,
            size=size,
            revision_id=revision_id,
        )
        logger.debug(
            "metadata resolved url=%s location=%s hash=%s size=%d revision=%s",
            url,
            metadata.resolved_location,
            metadata.content_hash,
            metadata.size,
            metadata.revision_id,
        )
        return metadata

    @staticmethod
    def _extract_hash(
        headers: Mapping[str, str],
        header_names: MetadataHeaderNames,
        entry: FileEntry | None,
    ) -> str | None:
        candidates: list[str | None] = []
        if header_names.hash_header:
            candidates.append(headers.get(header_names.hash_header))
        if header_names.trust_generic_headers:
            candidates.append(headers.get(_HEADER_ETAG))
        if entry is not None:
            candidates.append(entry.content_hash)

        for raw in candidates:
            if not raw:
                continue
            value = raw.strip()
            if value.startswith("W/"):
                value = value[2:]
            normalized = normalize_hash(value)
            if normalized:
                return normalized
        return None

    @staticmethod
    def _extract_size(
        headers: Mapping[str, str],
        header_names: MetadataHeaderNames,
        entry: FileEntry | None,
    ) -> int | None:
        candidates: list[str | None] = []
        if header_names.size_header:
            candidates.append(headers.get(header_names.size_header))
        if header_names.trust_generic_headers:
            candidates.append(headers.get(_HEADER_CONTENT_LENGTH))

        for raw in candidates:
            if raw is None or not raw.strip():
                continue
            try:
                size = int(raw.strip())
            except ValueError as exc:
                raise InvalidResponseError(f"invalid size header value {raw!r}") from exc
            if size < 0:
                raise InvalidResponseError(f"negative size header value {raw!r}")
            return size

        if entry is not None and (entry.expected_size > 0 or entry.content_hash):
            return entry.expected_size
        return None
