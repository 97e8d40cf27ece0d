"""In-memory stand-ins for a provider host reached through requests."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

import requests
from requests.structures import CaseInsensitiveDict


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class FakeResponse:
    def __init__(
        self,
        *,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
        payload: Any = None,
        links: dict[str, dict[str, str]] | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self._body = body
        self._payload = payload
        self.links = links or {}
        self._fail_after = fail_after
        self.closed = False

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self._body.decode("utf-8"))
        return self._payload

    def iter_content(self, chunk_size: int = 1) -> Any:
        sent = 0
        for start in range(0, len(self._body), chunk_size):
            if self._fail_after is not None and sent >= self._fail_after:
                raise requests.ConnectionError("connection reset by peer")
            chunk = self._body[start : start + chunk_size]
            sent += len(chunk)
            yield chunk

    def close(self) -> None:
        self.closed = True


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] | None = None


@dataclass
class HostedFile:
    content: bytes
    commit: str | None = "c0ffee"
    etag: str | None = None
    # Respond to HEAD with a redirect to this location instead of 200.
    redirect_to: str | None = None
    # Bytes served before the connection drops, per GET, consumed in order.
    drops: list[int] = field(default_factory=list)
    ignore_range: bool = False


class FakeHub:
    """Serve files and JSON listings keyed by URL, recording every request.

    HEAD answers with HuggingFace-style metadata headers; GET honors
    ``Range: bytes=N-`` with 206, or 416 when N is past the end.
    """

    def __init__(self) -> None:
        self.files: dict[str, HostedFile] = {}
        self.json_routes: dict[str, list[FakeResponse]] = {}
        self.requests: list[RecordedRequest] = []
        self.head_failures: dict[str, list[Exception | int]] = {}

    def add_file(self, url: str, content: bytes, **kwargs: Any) -> HostedFile:
        hosted = HostedFile(content=content, **kwargs)
        self.files[url] = hosted
        return hosted

    def add_json(self, url: str, *responses: FakeResponse) -> None:
        self.json_routes.setdefault(url, []).extend(responses)

    def fail_head(self, url: str, *failures: Exception | int) -> None:
        self.head_failures.setdefault(url, []).extend(failures)

    def count(self, method: str | None = None) -> int:
        if method is None:
            return len(self.requests)
        return sum(1 for request in self.requests if request.method == method)

    def head(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        allow_redirects: bool = True,
        timeout: float | None = None,
    ) -> FakeResponse:
        _ = allow_redirects, timeout
        self.requests.append(RecordedRequest("HEAD", url, dict(headers or {})))
        failures = self.head_failures.get(url)
        if failures:
            failure = failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return FakeResponse(status_code=failure)

        hosted = self.files.get(url)
        if hosted is None:
            return FakeResponse(status_code=404)

        etag = hosted.etag or sha256_hex(hosted.content)
        response_headers = {
            "x-linked-etag": f'"{etag}"',
            "x-linked-size": str(len(hosted.content)),
        }
        if hosted.commit:
            response_headers["x-repo-commit"] = hosted.commit
        if hosted.redirect_to:
            response_headers["Location"] = hosted.redirect_to
            return FakeResponse(status_code=302, headers=response_headers)
        response_headers["Content-Length"] = str(len(hosted.content))
        return FakeResponse(status_code=200, headers=response_headers)

    def get(
        self,
        url: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        stream: bool = False,
        timeout: float | None = None,
    ) -> FakeResponse:
        _ = stream, timeout
        self.requests.append(RecordedRequest("GET", url, dict(headers or {}), params))

        routes = self.json_routes.get(url)
        if routes:
            return routes.pop(0) if len(routes) > 1 else routes[0]

        hosted = self._file_for_download(url)
        if hosted is None:
            return FakeResponse(status_code=404)

        fail_after = hosted.drops.pop(0) if hosted.drops else None
        range_header = (headers or {}).get("Range")
        if range_header and not hosted.ignore_range:
            offset = int(range_header.removeprefix("bytes=").rstrip("-"))
            if offset >= len(hosted.content):
                return FakeResponse(status_code=416)
            return FakeResponse(
                status_code=206,
                body=hosted.content[offset:],
                fail_after=fail_after,
            )
        return FakeResponse(status_code=200, body=hosted.content, fail_after=fail_after)

    def _file_for_download(self, url: str) -> HostedFile | None:
        hosted = self.files.get(url)
        if hosted is not None:
            return hosted
        for candidate in self.files.values():
            if candidate.redirect_to == url:
                return candidate
        return None
