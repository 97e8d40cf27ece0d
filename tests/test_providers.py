from __future__ import annotations

import pytest
import requests

from fakes import FakeHub, FakeResponse
from repofetch.errors import InvalidResponseError, NotFoundError, TransportError
from repofetch.providers import (
    HuggingFaceAdapter,
    ModelersAdapter,
    ModelScopeAdapter,
    ProviderKind,
    create_adapter,
    parse_provider,
)
from repofetch.schemas import RepositoryId

REPO = RepositoryId.parse("acme/model")


def test_parse_provider_aliases() -> None:
    assert parse_provider("HF") is ProviderKind.HUGGINGFACE
    assert parse_provider(" ModelScope ") is ProviderKind.MODELSCOPE
    assert parse_provider(ProviderKind.MODELERS) is ProviderKind.MODELERS
    with pytest.raises(ValueError, match="Unknown provider"):
        parse_provider("gitlab")


def test_create_adapter_picks_variant_and_endpoint() -> None:
    adapter = create_adapter("ms", endpoint="mirror.example.com")

    assert isinstance(adapter, ModelScopeAdapter)
    assert adapter.host == "mirror.example.com"
    assert isinstance(create_adapter("huggingface"), HuggingFaceAdapter)
    assert isinstance(create_adapter("modelers"), ModelersAdapter)


def test_huggingface_file_url_quotes_revision_and_path() -> None:
    adapter = HuggingFaceAdapter()

    url = adapter.build_file_url(REPO, "refs/pr/1", "sub dir/weights.bin")

    assert url == (
        "https://huggingface.co/acme/model/resolve/refs%2Fpr%2F1/sub%20dir/weights.bin"
    )


def test_modelscope_and_modelers_file_urls() -> None:
    assert ModelScopeAdapter().build_file_url(REPO, "master", "a/b.bin") == (
        "https://modelscope.cn/api/v1/models/acme/model/repo?Revision=master&FilePath=a%2Fb.bin"
    )
    assert ModelersAdapter().build_file_url(REPO, "main", "a/b.bin") == (
        "https://modelers.cn/coderepo/web/v1/file/acme/model/main/media/a/b.bin"
    )


def test_metadata_header_names_per_provider() -> None:
    hf = HuggingFaceAdapter().metadata_header_names()
    assert hf.hash_header == "x-linked-etag"
    assert hf.size_header == "x-linked-size"
    assert hf.revision_header == "x-repo-commit"
    assert hf.trust_generic_headers is True

    assert ModelScopeAdapter().metadata_header_names().trust_generic_headers is False
    assert ModelersAdapter().metadata_header_names().hash_header is None


def test_auth_headers_only_for_provider_host() -> None:
    adapter = HuggingFaceAdapter(token=" hf_secret ")

    assert adapter.auth_headers("https://huggingface.co/acme/model/resolve/main/a") == {
        "Authorization": "Bearer hf_secret"
    }
    assert adapter.auth_headers("https://cdn-lfs.example.com/blob") == {}
    assert HuggingFaceAdapter().auth_headers("https://huggingface.co/x") == {}


def test_huggingface_listing_follows_pagination_and_prefers_lfs() -> None:
    hub = FakeHub()
    first_url = "https://huggingface.co/api/models/acme/model/tree/main"
    next_url = "https://huggingface.co/api/models/acme/model/tree/main?cursor=2"
    hub.add_json(
        first_url,
        FakeResponse(
            payload=[
                {"type": "directory", "path": "sub"},
                {"type": "file", "path": "config.json", "oid": "gitoid", "size": 12},
                {
                    "type": "file",
                    "path": "sub/model.bin",
                    "oid": "pointeroid",
                    "size": 130,
                    "lfs": {"oid": "f" * 64, "size": 4096},
                },
            ],
            links={"next": {"url": next_url}},
        ),
    )
    hub.add_json(next_url, FakeResponse(payload=[{"type": "file", "path": "README.md"}]))
    adapter = HuggingFaceAdapter(session=hub)  # type: ignore[arg-type]

    entries = adapter.list_files(REPO, "main")

    assert [entry.relative_path for entry in entries] == [
        "config.json",
        "sub/model.bin",
        "README.md",
    ]
    assert entries[0].content_hash == "gitoid"
    assert entries[1].content_hash == "f" * 64
    assert entries[1].expected_size == 4096
    assert entries[2].content_hash is None
    assert hub.requests[0].params == {"recursive": "true"}
    assert hub.requests[1].params is None


def test_listing_status_errors_are_typed() -> None:
    hub = FakeHub()
    url = "https://huggingface.co/api/models/acme/model/tree/main"
    hub.add_json(url, FakeResponse(status_code=404), FakeResponse(status_code=503))
    adapter = HuggingFaceAdapter(session=hub)  # type: ignore[arg-type]

    with pytest.raises(NotFoundError) as exc_info:
        adapter.list_files(REPO, "main")
    assert exc_info.value.status_code == 404

    with pytest.raises(TransportError):
        adapter.list_files(REPO, "main")


def test_listing_connection_failure_is_transport_error() -> None:
    class _BrokenSession:
        def get(self, url: str, **kwargs: object) -> FakeResponse:
            _ = url, kwargs
            raise requests.ConnectionError("refused")

    adapter = HuggingFaceAdapter(session=_BrokenSession())  # type: ignore[arg-type]

    with pytest.raises(TransportError, match="refused"):
        adapter.list_files(REPO, "main")


def test_huggingface_listing_rejects_non_array_payload() -> None:
    hub = FakeHub()
    hub.add_json(
        "https://huggingface.co/api/models/acme/model/tree/main",
        FakeResponse(payload={"error": "nope"}),
    )
    adapter = HuggingFaceAdapter(session=hub)  # type: ignore[arg-type]

    with pytest.raises(InvalidResponseError):
        adapter.list_files(REPO, "main")


def test_modelscope_listing_skips_directories() -> None:
    hub = FakeHub()
    hub.add_json(
        "https://modelscope.cn/api/v1/models/acme/model/repo/files",
        FakeResponse(
            payload={
                "Code": 200,
                "Success": True,
                "Data": {
                    "Files": [
                        {"Path": "sub", "Type": "tree"},
                        {"Path": "sub/a.bin", "Type": "blob", "Size": 10, "Sha256": "a" * 64},
                    ]
                },
            }
        ),
    )
    adapter = ModelScopeAdapter(session=hub)  # type: ignore[arg-type]

    entries = adapter.list_files(REPO, "master")

    assert len(entries) == 1
    assert entries[0].relative_path == "sub/a.bin"
    assert entries[0].expected_size == 10
    assert entries[0].content_hash == "a" * 64
    assert hub.requests[0].params == {"Revision": "master", "Recursive": "true"}


def test_modelscope_listing_failure_payload_is_not_found() -> None:
    hub = FakeHub()
    hub.add_json(
        "https://modelscope.cn/api/v1/models/acme/model/repo/files",
        FakeResponse(payload={"Code": 10010205001, "Success": False, "Message": "missing"}),
    )
    adapter = ModelScopeAdapter(session=hub)  # type: ignore[arg-type]

    with pytest.raises(NotFoundError, match="missing"):
        adapter.list_files(REPO, "master")


def test_modelers_listing_walks_directories() -> None:
    class _TreeSession(FakeHub):
        def get(self, url: str, **kwargs: object) -> FakeResponse:  # type: ignore[override]
            params = kwargs.get("params") or {}
            directory = params.get("path", "")  # type: ignore[union-attr]
            trees = {
                "": [
                    {"path": "weights", "type": "dir"},
                    {"path": "config.json", "type": "file", "size": 3, "etag": "e1"},
                ],
                "weights": [
                    {"path": "weights/a.bin", "type": "file", "size": 7, "sha256": "b" * 64},
                ],
            }
            _ = url
            return FakeResponse(payload={"data": {"tree": trees[directory]}})

    adapter = ModelersAdapter(session=_TreeSession())  # type: ignore[arg-type]

    entries = adapter.list_files(REPO, "main")

    assert [(entry.relative_path, entry.content_hash) for entry in entries] == [
        ("config.json", "e1"),
        ("weights/a.bin", "b" * 64),
    ]
