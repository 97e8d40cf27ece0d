from __future__ import annotations

import hashlib
import logging
import shutil
from collections.abc import Callable
from pathlib import Path

import requests

from repofetch.errors import (
    ChecksumMismatchError,
    DownloadPausedError,
    FilesystemError,
    TransportError,
)
from repofetch.providers import ProviderAdapter
from repofetch.schemas import (
    DownloadOutcome,
    DownloadProgress,
    DownloadResult,
    FileEntry,
    FileMetadata,
    RepositoryId,
)
from repofetch.storage import RepositoryLayout, staging_lock

from .metadata import MetadataResolver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadProgress], None]

_RANGE_NOT_SATISFIABLE = 416
_PARTIAL_CONTENT = 206
_HASH_READ_SIZE = 1024 * 1024


class FileDownloadOrchestrator:
    """Resumable streamed download of one repository file into the cache."""

    def __init__(
        self,
        *,
        adapter: ProviderAdapter,
        layout: RepositoryLayout,
        resolver: MetadataResolver | None = None,
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
        chunk_size: int = 1024 * 1024,
        verify_checksums: bool = True,
        check_disk_space: bool = True,
        is_paused: Callable[[RepositoryId], bool] | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")

        self.adapter = adapter
        self.layout = layout
        self.session = session or requests.Session()
        self.resolver = resolver or MetadataResolver(
            session=self.session,
            timeout_seconds=timeout_seconds,
        )
        self.timeout_seconds = timeout_seconds
        self.chunk_size = chunk_size
        self.verify_checksums = verify_checksums
        self.check_disk_space = check_disk_space
        self._is_paused = is_paused or (lambda _repo: False)

    def find_cached(
        self, repo: RepositoryId, revision: str, relative_path: str
    ) -> Path | None:
        """Return the published pointer for a file without touching the network."""
        for snapshot_revision in (self.layout.read_ref(repo, revision), revision):
            if not snapshot_revision:
                continue
            pointer = self.layout.pointer_path(repo, snapshot_revision, relative_path)
            if self.layout.is_published(pointer):
                return pointer
        return None

    def download_file(
        self,
        repo: RepositoryId,
        revision: str,
        entry: FileEntry,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> DownloadResult:
        cached = self.find_cached(repo, revision, entry.relative_path)
        if cached is not None:
            logger.info("file already cached repo=%s path=%s", repo, entry.relative_path)
            return DownloadResult(
                pointer_path=cached,
                snapshot_dir=self._snapshot_root(repo, revision, cached),
                outcome=DownloadOutcome.ALREADY_PUBLISHED,
            )

        url = self.adapter.build_file_url(repo, revision, entry.relative_path)
        logger.info(
            "download start provider=%s repo=%s path=%s url=%s",
            self.adapter.name,
            repo,
            entry.relative_path,
            url,
        )
        metadata = self.resolver.resolve(
            url,
            header_names=self.adapter.metadata_header_names(),
            headers=self.adapter.auth_headers(url),
            entry=entry,
        )

        snapshot_revision = metadata.revision_id or revision
        snapshot_dir = self.layout.snapshot_dir(repo, snapshot_revision)
        pointer = self.layout.pointer_path(repo, snapshot_revision, entry.relative_path)
        if self.layout.is_published(pointer):
            self._record_ref(repo, revision, metadata)
            return DownloadResult(
                pointer_path=pointer,
                snapshot_dir=snapshot_dir,
                outcome=DownloadOutcome.ALREADY_PUBLISHED,
                metadata=metadata,
            )

        existing = self.layout.find_blob(repo, metadata.content_hash)
        if existing is not None:
            self._publish_pointer(repo, revision, metadata, existing, pointer)
            logger.info(
                "file deduplicated repo=%s path=%s blob=%s",
                repo,
                entry.relative_path,
                existing,
            )
            return DownloadResult(
                pointer_path=pointer,
                snapshot_dir=snapshot_dir,
                outcome=DownloadOutcome.LINKED_EXISTING_BLOB,
                metadata=metadata,
                blob_path=existing,
            )

        if self._is_paused(repo):
            raise DownloadPausedError(repo.repo_id, entry.relative_path)

        self.layout.ensure_blob_dir(repo)
        blob = self.layout.blob_path(repo, metadata.content_hash)
        staging = self.layout.staging_path(repo, metadata.content_hash)
        transferred = 0
        outcome = DownloadOutcome.TRANSFERRED

        with staging_lock(self.layout.lock_path(metadata.content_hash)):
            committed = self.layout.find_blob(repo, metadata.content_hash)
            if committed is None:
                transferred = self._transfer(
                    repo=repo,
                    entry=entry,
                    metadata=metadata,
                    staging=staging,
                    progress_callback=progress_callback,
                )
                self._verify(metadata, staging)
                self.layout.promote_staging_to_blob(staging, blob)
                committed = blob
            else:
                outcome = DownloadOutcome.LINKED_EXISTING_BLOB
            self._publish_pointer(repo, revision, metadata, committed, pointer)

        logger.info(
            "download done repo=%s path=%s bytes=%d outcome=%s",
            repo,
            entry.relative_path,
            transferred,
            outcome,
        )
        return DownloadResult(
            pointer_path=pointer,
            snapshot_dir=snapshot_dir,
            outcome=outcome,
            metadata=metadata,
            blob_path=committed,
            transferred_bytes=transferred,
        )

    def _transfer(
        self,
        *,
        repo: RepositoryId,
        entry: FileEntry,
        metadata: FileMetadata,
        staging: Path,
        progress_callback: ProgressCallback | None,
    ) -> int:
        resume_offset = self.layout.staging_size(staging)
        if resume_offset > metadata.size:
            logger.warning(
                "staging larger than file, restarting path=%s staged=%d size=%d",
                staging,
                resume_offset,
                metadata.size,
            )
            self.layout.discard_staging(staging)
            resume_offset = 0

        self._ensure_disk_space(staging.parent, metadata.size - resume_offset)

        location = metadata.resolved_location
        headers = {"Accept-Encoding": "identity", **self.adapter.auth_headers(location)}
        if resume_offset > 0:
            headers["Range"] = f"bytes={resume_offset}-"
            logger.info(
                "resuming download path=%s offset=%d size=%d",
                entry.relative_path,
                resume_offset,
                metadata.size,
            )

        try:
            response = self.session.get(
                location,
                headers=headers,
                stream=True,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise TransportError(f"connection error url={location}: {exc}") from exc

        transferred = 0
        try:
            status = response.status_code
            if status == _RANGE_NOT_SATISFIABLE:
                self._check_range_not_satisfiable(staging, metadata)
                return 0
            if not 200 <= status < 300:
                raise TransportError(f"HTTP error: {status}", status_code=status)

            append = True
            if resume_offset > 0 and status != _PARTIAL_CONTENT:
                logger.warning(
                    "server ignored range request, restarting path=%s status=%d",
                    entry.relative_path,
                    status,
                )
                append = False
                resume_offset = 0

            downloaded = resume_offset
            if progress_callback is not None:
                progress_callback(
                    DownloadProgress(entry.relative_path, downloaded, metadata.size)
                )
            with self.layout.open_staging(staging, append=append) as output:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if not chunk:
                        continue
                    output.write(chunk)
                    downloaded += len(chunk)
                    transferred += len(chunk)
                    if progress_callback is not None:
                        progress_callback(
                            DownloadProgress(entry.relative_path, downloaded, metadata.size)
                        )
                    if self._is_paused(repo):
                        raise DownloadPausedError(repo.repo_id, entry.relative_path)
        except requests.RequestException as exc:
            raise TransportError(
                f"connection error url={location} after {transferred} bytes: {exc}"
            ) from exc
        except OSError as exc:
            raise FilesystemError(f"failed to write {staging}: {exc}") from exc
        finally:
            response.close()

        staged = self.layout.staging_size(staging)
        if staged < metadata.size:
            raise TransportError(
                f"incomplete transfer path={entry.relative_path} "
                f"staged={staged} size={metadata.size}"
            )
        if staged > metadata.size:
            self.layout.discard_staging(staging)
            raise TransportError(
                f"oversized transfer path={entry.relative_path} "
                f"staged={staged} size={metadata.size}"
            )
        return transferred

    def _check_range_not_satisfiable(self, staging: Path, metadata: FileMetadata) -> None:
        staged = self.layout.staging_size(staging)
        if staged == metadata.size:
            logger.info("range not satisfiable, staging already complete path=%s", staging)
            return
        self.layout.discard_staging(staging)
        raise TransportError(
            f"HTTP error: {_RANGE_NOT_SATISFIABLE} staged={staged} size={metadata.size}",
            status_code=_RANGE_NOT_SATISFIABLE,
        )

    def _ensure_disk_space(self, directory: Path, required: int) -> None:
        if not self.check_disk_space or required <= 0:
            return
        try:
            free = shutil.disk_usage(directory).free
        except OSError as exc:
            raise FilesystemError(f"failed to read disk usage of {directory}: {exc}") from exc
        if free < required:
            raise FilesystemError(
                f"not enough disk space in {directory}: need {required} bytes, have {free}"
            )

    def _verify(self, metadata: FileMetadata, staging: Path) -> None:
        if not self.verify_checksums or not metadata.is_sha256:
            return
        digest = hashlib.sha256()
        with staging.open("rb") as handle:
            for block in iter(lambda: handle.read(_HASH_READ_SIZE), b""):
                digest.update(block)
        actual = digest.hexdigest()
        if actual != metadata.content_hash:
            self.layout.discard_staging(staging)
            raise ChecksumMismatchError(metadata.content_hash, actual)

    def _publish_pointer(
        self,
        repo: RepositoryId,
        revision: str,
        metadata: FileMetadata,
        blob: Path,
        pointer: Path,
    ) -> None:
        self.layout.publish(blob, pointer)
        self._record_ref(repo, revision, metadata)

    def _record_ref(self, repo: RepositoryId, revision: str, metadata: FileMetadata) -> None:
        if metadata.revision_id and metadata.revision_id != revision:
            self.layout.write_ref(repo, revision, metadata.revision_id)

    def _snapshot_root(self, repo: RepositoryId, revision: str, pointer: Path) -> Path:
        for snapshot_revision in (self.layout.read_ref(repo, revision), revision):
            if not snapshot_revision:
                continue
            snapshot_dir = self.layout.snapshot_dir(repo, snapshot_revision)
            if pointer.is_relative_to(snapshot_dir):
                return snapshot_dir
        return self.layout.snapshot_dir(repo, revision)
