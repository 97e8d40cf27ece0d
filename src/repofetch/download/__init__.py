"""Download pipeline: metadata probe, resumable transfer, retries and repo runs."""

from .coordinator import (
    RepositoryDownloadCoordinator,
    RepositoryDownloadResult,
    count_outcomes,
)
from .metadata import MetadataResolver, resolve_redirect_location
from .retry import RetryController
from .transfer import FileDownloadOrchestrator

__all__ = [
    "FileDownloadOrchestrator",
    "MetadataResolver",
    "RepositoryDownloadCoordinator",
    "RepositoryDownloadResult",
    "RetryController",
    "count_outcomes",
    "resolve_redirect_location",
]
