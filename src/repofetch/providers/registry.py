from __future__ import annotations

import requests

from .base import HttpProviderAdapter, ProviderKind, parse_provider
from .huggingface import HuggingFaceAdapter
from .modelers import ModelersAdapter
from .modelscope import ModelScopeAdapter

_ADAPTERS: dict[ProviderKind, type[HttpProviderAdapter]] = {
    ProviderKind.HUGGINGFACE: HuggingFaceAdapter,
    ProviderKind.MODELSCOPE: ModelScopeAdapter,
    ProviderKind.MODELERS: ModelersAdapter,
}


def create_adapter(
    kind: str | ProviderKind,
    *,
    endpoint: str | None = None,
    token: str | None = None,
    session: requests.Session | None = None,
    timeout_seconds: float = 30.0,
) -> HttpProviderAdapter:
    adapter_cls = _ADAPTERS[parse_provider(kind)]
    return adapter_cls(
        endpoint=endpoint,
        token=token,
        session=session,
        timeout_seconds=timeout_seconds,
    )
