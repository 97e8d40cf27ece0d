"""Remote hub adapters: URL construction, listings and metadata header names."""

from .base import (
    HttpProviderAdapter,
    MetadataHeaderNames,
    ProviderAdapter,
    ProviderKind,
    parse_provider,
)
from .huggingface import HuggingFaceAdapter
from .modelers import ModelersAdapter
from .modelscope import ModelScopeAdapter
from .registry import create_adapter

__all__ = [
    "HttpProviderAdapter",
    "HuggingFaceAdapter",
    "MetadataHeaderNames",
    "ModelScopeAdapter",
    "ModelersAdapter",
    "ProviderAdapter",
    "ProviderKind",
    "create_adapter",
    "parse_provider",
]
