from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any, Protocol

import requests

from repofetch.errors import InvalidResponseError, NotFoundError, TransportError
from repofetch.schemas import DTOBase, FileEntry, RepositoryId

logger = logging.getLogger(__name__)

_PROVIDER_ALIASES = {
    "huggingface": "huggingface",
    "hf": "huggingface",
    "modelscope": "modelscope",
    "ms": "modelscope",
    "modelers": "modelers",
}


class ProviderKind(StrEnum):
    HUGGINGFACE = "huggingface"
    MODELSCOPE = "modelscope"
    MODELERS = "modelers"


def parse_provider(value: str | ProviderKind) -> ProviderKind:
    normalized = str(value or "").strip().lower()
    canonical = _PROVIDER_ALIASES.get(normalized)
    if canonical is None:
        raise ValueError(f"Unknown provider: {value}")
    return ProviderKind(canonical)


class MetadataHeaderNames(DTOBase):
    hash_header: str | None = None
    size_header: str | None = None
    revision_header: str | None = None
    trust_generic_headers: bool = True


class ProviderAdapter(Protocol):
    name: str
    host: str

    def build_file_url(self, repo: RepositoryId, revision: str, relative_path: str) -> str:
        """Return the fetchable URL of one repository file."""

    def list_files(self, repo: RepositoryId, revision: str) -> list[FileEntry]:
        """Return every file of the repository at the given revision."""

    def metadata_header_names(self) -> MetadataHeaderNames:
        """Provider-specific header names preferred over generic HTTP headers."""

    def auth_headers(self, url: str) -> dict[str, str]:
        """Headers authorizing a request to url, empty for foreign hosts."""


class HttpProviderAdapter:
    """Shared session handling and JSON listing requests for hub adapters."""

    name = "provider"
    default_host = ""

    def __init__(
        self,
        *,
        endpoint: str | None = None,
        token: str | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        self.host = (endpoint or self.default_host).strip().rstrip("/")
        if not self.host:
            raise ValueError(f"{self.name} host is empty")
        self.token = (token or "").strip() or None
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    @property
    def base_url(self) -> str:
        return f"https://{self.host}"

    def auth_headers(self, url: str) -> dict[str, str]:
        if self.token is None:
            return {}
        if not url.startswith(f"{self.base_url}/"):
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _get_json(
        self,
        url: str,
        *,
        params: dict[str, str] | None = None,
    ) -> tuple[Any, requests.Response]:
        try:
            response = self.session.get(
                url,
                params=params,
                headers=self.auth_headers(url),
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{self.name} listing request failed: {exc}") from exc

        status = response.status_code
        if 400 <= status < 500:
            raise NotFoundError(
                f"{self.name} listing returned status {status} url={url}",
                status_code=status,
            )
        if not 200 <= status < 300:
            raise TransportError(
                f"{self.name} listing returned status {status} url={url}",
                status_code=status,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponseError(f"{self.name} listing is not valid JSON") from exc
        return payload, response

    def __repr__(self) -> str:
        return f"{type(self).__name__}(host={self.host!r})"
