"""Cache storage: repository layout and staging locks."""

from .layout import STAGING_SUFFIX, RepositoryLayout
from .locks import staging_lock

__all__ = ["STAGING_SUFFIX", "RepositoryLayout", "staging_lock"]
