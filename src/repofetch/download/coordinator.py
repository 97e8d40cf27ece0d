from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path

import requests

from repofetch.config import AppConfig
from repofetch.errors import (
    DownloadPausedError,
    ListingError,
    NotFoundError,
    PartialFailureError,
    RepoFetchError,
)
from repofetch.providers import HttpProviderAdapter, ProviderAdapter, create_adapter
from repofetch.schemas import (
    DownloadOutcome,
    DownloadProgress,
    DownloadResult,
    FileEntry,
    RepositoryId,
    RepositoryProgress,
)
from repofetch.storage import RepositoryLayout

from .retry import RetryController
from .transfer import FileDownloadOrchestrator

logger = logging.getLogger(__name__)

RepositoryProgressCallback = Callable[[RepositoryProgress], None]


@dataclass(slots=True, frozen=True)
class RepositoryDownloadResult:
    repo: RepositoryId
    revision: str
    link_path: Path
    files: list[DownloadResult]
    total_bytes: int
    transferred_bytes: int
    already_cached: bool = False


class _ProgressTracker:
    def __init__(
        self,
        *,
        total_files: int,
        total_bytes: int,
        callback: RepositoryProgressCallback | None,
    ) -> None:
        self.total_files = total_files
        self.total_bytes = total_bytes
        self._callback = callback
        self._lock = threading.Lock()
        self._in_flight: dict[str, int] = {}
        self._completed_files = 0
        self._completed_bytes = 0

    def on_file_progress(self, progress: DownloadProgress) -> None:
        with self._lock:
            self._in_flight[progress.path] = progress.downloaded
            snapshot = self._snapshot()
        self._emit(snapshot)

    def on_file_done(self, entry: FileEntry, result: DownloadResult) -> None:
        size = result.metadata.size if result.metadata is not None else entry.expected_size
        with self._lock:
            self._in_flight.pop(entry.relative_path, None)
            self._completed_files += 1
            self._completed_bytes += size
            snapshot = self._snapshot()
        self._emit(snapshot)

    def _snapshot(self) -> RepositoryProgress:
        return RepositoryProgress(
            completed_files=self._completed_files,
            total_files=self.total_files,
            downloaded_bytes=self._completed_bytes + sum(self._in_flight.values()),
            total_bytes=self.total_bytes,
        )

    def _emit(self, progress: RepositoryProgress) -> None:
        if self._callback is not None:
            self._callback(progress)


class RepositoryDownloadCoordinator:
    """Download every file of a repository revision and publish its link."""

    def __init__(
        self,
        *,
        adapter: ProviderAdapter,
        layout: RepositoryLayout,
        orchestrator: FileDownloadOrchestrator | None = None,
        retry: RetryController | None = None,
        max_workers: int = 1,
        paused_repositories: Iterable[str] = (),
        session: requests.Session | None = None,
        timeout_seconds: float = 30.0,
        chunk_size: int = 1024 * 1024,
        verify_checksums: bool = True,
        check_disk_space: bool = True,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        self.adapter = adapter
        self.layout = layout
        self.max_workers = max_workers
        self._paused_lock = threading.Lock()
        self._paused = {RepositoryId.parse(raw).repo_id for raw in paused_repositories}
        self.orchestrator = orchestrator or FileDownloadOrchestrator(
            adapter=adapter,
            layout=layout,
            session=session,
            timeout_seconds=timeout_seconds,
            chunk_size=chunk_size,
            verify_checksums=verify_checksums,
            check_disk_space=check_disk_space,
            is_paused=self.is_paused,
        )
        self.retry = retry or RetryController(provider_name=adapter.name)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        session: requests.Session | None = None,
    ) -> RepositoryDownloadCoordinator:
        http = session or requests.Session()
        download = config.download
        adapter: HttpProviderAdapter = create_adapter(
            config.provider.name,
            endpoint=config.provider.endpoint,
            token=config.provider.resolve_token(),
            session=http,
            timeout_seconds=download.timeout_seconds,
        )
        return cls(
            adapter=adapter,
            layout=RepositoryLayout(download.cache_path),
            retry=RetryController(
                max_attempts=config.retry.max_attempts,
                delay_seconds=config.retry.delay_seconds,
                provider_name=adapter.name,
            ),
            max_workers=download.max_workers,
            paused_repositories=download.paused_repositories,
            session=http,
            timeout_seconds=download.timeout_seconds,
            chunk_size=download.chunk_size,
            verify_checksums=download.verify_checksums,
            check_disk_space=download.check_disk_space,
        )

    def pause(self, repo: str | RepositoryId) -> None:
        repo_id = _coerce_repo(repo).repo_id
        with self._paused_lock:
            self._paused.add(repo_id)
        logger.info("repository paused repo=%s", repo_id)

    def resume(self, repo: str | RepositoryId) -> None:
        repo_id = _coerce_repo(repo).repo_id
        with self._paused_lock:
            self._paused.discard(repo_id)
        logger.info("repository resumed repo=%s", repo_id)

    def is_paused(self, repo: str | RepositoryId) -> bool:
        repo_id = _coerce_repo(repo).repo_id
        with self._paused_lock:
            return repo_id in self._paused

    def download_path(self, repo: str | RepositoryId) -> Path:
        return self.layout.repository_link(_coerce_repo(repo))

    def download_repository(
        self,
        repo: str | RepositoryId,
        revision: str = "main",
        *,
        progress_callback: RepositoryProgressCallback | None = None,
    ) -> RepositoryDownloadResult:
        repo_id = _coerce_repo(repo)
        link = self.layout.repository_link(repo_id)
        if self.layout.is_repository_published(repo_id):
            logger.info("repository already downloaded repo=%s link=%s", repo_id, link)
            return RepositoryDownloadResult(
                repo=repo_id,
                revision=revision,
                link_path=link,
                files=[],
                total_bytes=0,
                transferred_bytes=0,
                already_cached=True,
            )
        if self.is_paused(repo_id):
            raise DownloadPausedError(repo_id.repo_id)
        self.layout.check_repository_link(repo_id)

        try:
            entries = self.adapter.list_files(repo_id, revision)
        except RepoFetchError as exc:
            logger.error(
                "listing failed provider=%s repo=%s revision=%s error=%s",
                self.adapter.name,
                repo_id,
                revision,
                exc,
            )
            raise ListingError(repo_id.repo_id, revision, exc) from exc

        tracker = _ProgressTracker(
            total_files=len(entries),
            total_bytes=sum(entry.expected_size for entry in entries),
            callback=progress_callback,
        )
        logger.info(
            "repository download start provider=%s repo=%s revision=%s files=%d bytes=%d",
            self.adapter.name,
            repo_id,
            revision,
            tracker.total_files,
            tracker.total_bytes,
        )

        if self.max_workers > 1 and len(entries) > 1:
            results = self._download_parallel(repo_id, revision, entries, tracker)
        else:
            results = self._download_sequential(repo_id, revision, entries, tracker)

        snapshot_dir = self._snapshot_dir_for(repo_id, revision, results)
        self.layout.publish_repository_link(repo_id, snapshot_dir)

        transferred = sum(result.transferred_bytes for result in results)
        logger.info(
            "repository download done repo=%s revision=%s files=%d transferred=%d link=%s",
            repo_id,
            revision,
            len(results),
            transferred,
            link,
        )
        return RepositoryDownloadResult(
            repo=repo_id,
            revision=revision,
            link_path=link,
            files=results,
            total_bytes=tracker.total_bytes,
            transferred_bytes=transferred,
        )

    def download_file(
        self,
        repo: str | RepositoryId,
        relative_path: str | FileEntry,
        revision: str = "main",
        *,
        progress_callback: Callable[[DownloadProgress], None] | None = None,
    ) -> DownloadResult:
        repo_id = _coerce_repo(repo)
        entry = (
            relative_path
            if isinstance(relative_path, FileEntry)
            else FileEntry(relative_path=relative_path)
        )
        entry = self._resolve_listed_entry(repo_id, revision, entry)
        return self.retry.with_retries(
            lambda: self.orchestrator.download_file(
                repo_id, revision, entry, progress_callback=progress_callback
            ),
            label=f"{repo_id}/{entry.relative_path}",
        )

    def list_local_repositories(self) -> list[str]:
        return self.layout.list_repositories()

    def repository_size(self, repo: str | RepositoryId) -> int:
        return self.layout.repository_size(_coerce_repo(repo))

    def delete_repository(self, repo: str | RepositoryId) -> int:
        return self.layout.delete_repository(_coerce_repo(repo))

    def _resolve_listed_entry(
        self,
        repo: RepositoryId,
        revision: str,
        entry: FileEntry,
    ) -> FileEntry:
        """Fill hash and size from the listing when headers cannot supply them."""
        if entry.content_hash is not None:
            return entry
        if self.adapter.metadata_header_names().hash_header is not None:
            return entry
        if self.orchestrator.find_cached(repo, revision, entry.relative_path) is not None:
            return entry

        for listed in self.adapter.list_files(repo, revision):
            if listed.relative_path == entry.relative_path:
                logger.debug(
                    "file metadata taken from listing repo=%s path=%s hash=%s",
                    repo,
                    entry.relative_path,
                    listed.content_hash,
                )
                return listed
        raise NotFoundError(
            f"{self.adapter.name}: {entry.relative_path} not found in {repo}@{revision}"
        )

    def _download_one(
        self,
        repo: RepositoryId,
        revision: str,
        entry: FileEntry,
        tracker: _ProgressTracker,
    ) -> DownloadResult:
        if self.is_paused(repo):
            raise DownloadPausedError(repo.repo_id, entry.relative_path)
        return self.retry.with_retries(
            lambda: self.orchestrator.download_file(
                repo, revision, entry, progress_callback=tracker.on_file_progress
            ),
            label=f"{repo}/{entry.relative_path}",
        )

    def _download_sequential(
        self,
        repo: RepositoryId,
        revision: str,
        entries: list[FileEntry],
        tracker: _ProgressTracker,
    ) -> list[DownloadResult]:
        results: list[DownloadResult] = []
        for entry in entries:
            try:
                result = self._download_one(repo, revision, entry, tracker)
            except DownloadPausedError:
                raise
            except RepoFetchError as exc:
                raise self._partial_failure(repo, entry, exc, results) from exc
            results.append(result)
            tracker.on_file_done(entry, result)
        return results

    def _download_parallel(
        self,
        repo: RepositoryId,
        revision: str,
        entries: list[FileEntry],
        tracker: _ProgressTracker,
    ) -> list[DownloadResult]:
        completed: dict[str, DownloadResult] = {}
        with ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="repofetch",
        ) as executor:
            futures: dict[Future[DownloadResult], FileEntry] = {
                executor.submit(self._download_one, repo, revision, entry, tracker): entry
                for entry in entries
            }
            for future in as_completed(futures):
                entry = futures[future]
                try:
                    result = future.result()
                except RepoFetchError as exc:
                    for pending in futures:
                        pending.cancel()
                    if isinstance(exc, DownloadPausedError):
                        raise
                    raise self._partial_failure(
                        repo, entry, exc, list(completed.values())
                    ) from exc
                completed[entry.relative_path] = result
                tracker.on_file_done(entry, result)
        return [completed[entry.relative_path] for entry in entries]

    def _partial_failure(
        self,
        repo: RepositoryId,
        entry: FileEntry,
        exc: RepoFetchError,
        results: list[DownloadResult],
    ) -> PartialFailureError:
        logger.error(
            "repository download aborted provider=%s repo=%s path=%s error=%s",
            self.adapter.name,
            repo,
            entry.relative_path,
            exc,
        )
        return PartialFailureError(
            entry.relative_path,
            exc,
            completed=[str(result.pointer_path) for result in results],
        )

    def _snapshot_dir_for(
        self,
        repo: RepositoryId,
        revision: str,
        results: list[DownloadResult],
    ) -> Path:
        snapshot_dir = self.layout.snapshot_dir(
            repo, self.layout.read_ref(repo, revision) or revision
        )
        for result in results:
            if result.snapshot_dir != snapshot_dir:
                logger.warning(
                    "file published under another snapshot repo=%s path=%s snapshot=%s",
                    repo,
                    result.pointer_path,
                    result.snapshot_dir,
                )
        return snapshot_dir


def _coerce_repo(repo: str | RepositoryId) -> RepositoryId:
    if isinstance(repo, RepositoryId):
        return repo
    return RepositoryId.parse(repo)


def count_outcomes(results: Iterable[DownloadResult]) -> dict[DownloadOutcome, int]:
    counts = {outcome: 0 for outcome in DownloadOutcome}
    for result in results:
        counts[result.outcome] += 1
    return counts
