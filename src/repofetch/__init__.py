"""repofetch: cached, resumable downloads of model repositories."""

from .config import AppConfig, load_config
from .schemas import FileEntry, FileMetadata, RepositoryId

__all__ = [
    "AppConfig",
    "FileEntry",
    "FileMetadata",
    "RepositoryId",
    "load_config",
]
