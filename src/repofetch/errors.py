"""repofetch exception hierarchy."""

from __future__ import annotations


class RepoFetchError(Exception):
    """Base exception for all repofetch errors."""


class MetadataError(RepoFetchError):
    """Metadata probe for a remote file failed."""


class UnreachableError(MetadataError):
    """No response from the remote host."""


class InvalidResponseError(MetadataError):
    """Response is malformed or lacks required metadata."""


class NotFoundError(MetadataError):
    """Repository, revision or file does not exist (4xx)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransportError(RepoFetchError):
    """Non-success HTTP status or connection failure during a transfer."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ChecksumMismatchError(RepoFetchError):
    """Staged content does not hash to the advertised value."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"checksum mismatch: expected {expected}, got {actual}")


class FilesystemError(RepoFetchError):
    """Directory creation, rename or symlink failure under the cache root."""


class ListingError(RepoFetchError):
    """Repository file listing failed."""

    def __init__(self, repo: str, revision: str, cause: BaseException) -> None:
        self.repo = repo
        self.revision = revision
        self.cause = cause
        super().__init__(f"failed to list {repo}@{revision}: {cause}")


class PartialFailureError(RepoFetchError):
    """One file of a repository download failed after exhausting retries."""

    def __init__(
        self,
        path: str,
        cause: BaseException,
        *,
        completed: list[str] | None = None,
    ) -> None:
        self.path = path
        self.cause = cause
        self.completed = list(completed or [])
        super().__init__(f"download failed at {path}: {cause}")


class TerminalError(RepoFetchError):
    """Failure that must not be retried."""


class InvalidRepositoryIdError(TerminalError, ValueError):
    """Repository identifier is not of the form namespace/name."""


class InvalidRevisionError(TerminalError, ValueError):
    """Revision cannot be used as a snapshot directory name."""


class DownloadPausedError(TerminalError):
    """Transfer stopped because its repository is paused."""

    def __init__(self, repo: str, path: str | None = None) -> None:
        self.repo = repo
        self.path = path
        target = f"{repo}/{path}" if path else repo
        super().__init__(f"download paused: {target}")


class RetriesExhaustedError(RepoFetchError):
    """Every attempt failed with a retryable error."""

    def __init__(self, provider: str, attempts: int, last_error: BaseException) -> None:
        self.provider = provider
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{provider}: failed after {attempts} attempt(s): {last_error}"
        )
