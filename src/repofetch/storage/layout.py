from __future__ import annotations

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import BinaryIO

from repofetch.errors import FilesystemError, InvalidRevisionError
from repofetch.schemas import RepositoryId

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".incomplete"
_BLOB_MODE = stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH
_FOLDER_PREFIX = "models--"


class RepositoryLayout:
    """On-disk cache shape: blobs, snapshot pointers, staging files and links.

    ``<cache-root>/<repo-folder>/blobs/<hash>`` holds committed content,
    ``<hash>.incomplete`` next to it is the staging file,
    ``<repo-folder>/snapshots/<revision>/<path>`` are symlinks to blobs, and
    ``<cache-root>/<name>`` links to the snapshot directory once the whole
    repository is present.
    """

    def __init__(self, cache_root: str | Path) -> None:
        self.cache_root = Path(cache_root).expanduser()
        self.cache_root.mkdir(parents=True, exist_ok=True)

    def storage_folder(self, repo: RepositoryId) -> Path:
        return self.cache_root / repo.folder_name

    def blob_path(self, repo: RepositoryId, content_hash: str) -> Path:
        return self.storage_folder(repo) / "blobs" / content_hash

    def staging_path(self, repo: RepositoryId, content_hash: str) -> Path:
        return self.storage_folder(repo) / "blobs" / f"{content_hash}{STAGING_SUFFIX}"

    def snapshot_dir(self, repo: RepositoryId, revision: str) -> Path:
        return self.storage_folder(repo) / "snapshots" / _safe_segment(revision)

    def pointer_path(self, repo: RepositoryId, revision: str, relative_path: str) -> Path:
        return self.snapshot_dir(repo, revision).joinpath(*relative_path.split("/"))

    def ref_path(self, repo: RepositoryId, revision: str) -> Path:
        return self.storage_folder(repo) / "refs" / _safe_segment(revision)

    def repository_link(self, repo: RepositoryId) -> Path:
        return self.cache_root / repo.name

    def lock_path(self, content_hash: str) -> Path:
        return self.cache_root / ".locks" / f"{content_hash}.lock"

    @staticmethod
    def is_published(pointer_path: Path) -> bool:
        return os.path.lexists(pointer_path)

    def is_repository_published(self, repo: RepositoryId) -> bool:
        link = self.repository_link(repo)
        return link.is_symlink() and _points_into(link, self.storage_folder(repo))

    def check_repository_link(self, repo: RepositoryId) -> None:
        """Raise if the link name is already taken by something else."""
        link = self.repository_link(repo)
        if not os.path.lexists(link):
            return
        if link.is_symlink() and _points_into(link, self.storage_folder(repo)):
            return
        raise FilesystemError(
            f"repository link {link} already belongs to another repository "
            f"(target={os.path.realpath(link)})"
        )

    def find_blob(self, repo: RepositoryId, content_hash: str) -> Path | None:
        """Return a committed blob for the hash, preferring the repo's own store."""
        own = self.blob_path(repo, content_hash)
        if own.is_file():
            return own

        for folder in sorted(self.cache_root.glob(f"{_FOLDER_PREFIX}*")):
            candidate = folder / "blobs" / content_hash
            if candidate != own and candidate.is_file():
                logger.info(
                    "blob found in other repository hash=%s folder=%s",
                    content_hash,
                    folder.name,
                )
                return candidate
        return None

    @staticmethod
    def staging_size(staging_path: Path) -> int:
        try:
            return staging_path.stat().st_size
        except FileNotFoundError:
            return 0

    def publish(self, target: Path, link_path: Path) -> None:
        """Create link_path as a relative symlink to target; no-op if present."""
        if self.is_published(link_path):
            return
        try:
            link_path.parent.mkdir(parents=True, exist_ok=True)
            relative_target = os.path.relpath(target, link_path.parent)
            os.symlink(
                relative_target,
                link_path,
                target_is_directory=target.is_dir(),
            )
        except FileExistsError:
            return
        except OSError as exc:
            raise FilesystemError(f"failed to link {link_path} -> {target}: {exc}") from exc
        logger.debug("published link=%s target=%s", link_path, target)

    def publish_repository_link(self, repo: RepositoryId, snapshot_dir: Path) -> Path:
        link = self.repository_link(repo)
        self.check_repository_link(repo)
        try:
            snapshot_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"failed to create {snapshot_dir}: {exc}") from exc
        self.publish(snapshot_dir, link)
        logger.info("repository published link=%s snapshot=%s", link, snapshot_dir)
        return link

    def open_staging(self, staging_path: Path, *, append: bool) -> BinaryIO:
        """Open a staging file for writing, resuming it when append is set."""
        try:
            staging_path.parent.mkdir(parents=True, exist_ok=True)
            return staging_path.open("ab" if append else "wb")
        except OSError as exc:
            raise FilesystemError(f"failed to open {staging_path}: {exc}") from exc

    def promote_staging_to_blob(self, staging_path: Path, blob_path: Path) -> None:
        try:
            blob_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(staging_path, blob_path)
            os.chmod(blob_path, _BLOB_MODE)
        except OSError as exc:
            raise FilesystemError(
                f"failed to promote {staging_path} -> {blob_path}: {exc}"
            ) from exc
        logger.info("blob committed path=%s", blob_path)

    def discard_staging(self, staging_path: Path) -> None:
        try:
            staging_path.unlink(missing_ok=True)
        except OSError as exc:
            raise FilesystemError(f"failed to remove {staging_path}: {exc}") from exc

    def ensure_blob_dir(self, repo: RepositoryId) -> Path:
        blob_dir = self.storage_folder(repo) / "blobs"
        try:
            blob_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"failed to create {blob_dir}: {exc}") from exc
        return blob_dir

    def write_ref(self, repo: RepositoryId, revision: str, revision_id: str) -> None:
        ref_path = self.ref_path(repo, revision)
        try:
            if ref_path.is_file() and ref_path.read_text(encoding="utf-8") == revision_id:
                return
            ref_path.parent.mkdir(parents=True, exist_ok=True)
            ref_path.write_text(revision_id, encoding="utf-8")
        except OSError as exc:
            raise FilesystemError(f"failed to write ref {ref_path}: {exc}") from exc

    def read_ref(self, repo: RepositoryId, revision: str) -> str | None:
        ref_path = self.ref_path(repo, revision)
        if not ref_path.is_file():
            return None
        return ref_path.read_text(encoding="utf-8").strip() or None

    def list_repositories(self) -> list[str]:
        """Names of published repository links under the cache root."""
        names: list[str] = []
        for entry in sorted(self.cache_root.iterdir()):
            if not entry.is_symlink():
                continue
            target = Path(os.path.realpath(entry))
            if any(part.startswith(_FOLDER_PREFIX) for part in target.parts):
                names.append(entry.name)
        return names

    def repository_size(self, repo: RepositoryId) -> int:
        """Bytes of every committed blob the repository owns or points at."""
        storage = self.storage_folder(repo)
        blobs: set[Path] = set()

        blob_dir = storage / "blobs"
        if blob_dir.is_dir():
            blobs.update(
                path.resolve()
                for path in blob_dir.iterdir()
                if path.is_file() and not path.name.endswith(STAGING_SUFFIX)
            )

        snapshots = storage / "snapshots"
        if snapshots.is_dir():
            blobs.update(
                path.resolve()
                for path in snapshots.rglob("*")
                if path.is_symlink() and path.resolve().is_file()
            )
        return sum(path.stat().st_size for path in blobs)

    def delete_repository(self, repo: RepositoryId) -> int:
        """Remove a repository; blobs still referenced elsewhere are kept.

        Returns the number of blob files removed.
        """
        storage = self.storage_folder(repo)
        link = self.repository_link(repo)
        removed = 0
        try:
            if link.is_symlink() and _points_into(link, storage):
                link.unlink()

            if not storage.is_dir():
                return 0

            shared = self._blobs_referenced_outside(storage)
            blob_dir = storage / "blobs"
            if blob_dir.is_dir():
                for blob in blob_dir.iterdir():
                    if blob.resolve() in shared:
                        continue
                    os.chmod(blob, stat.S_IWUSR | stat.S_IRUSR)
                    blob.unlink()
                    removed += 1

            for child in ("snapshots", "refs"):
                if (storage / child).exists():
                    shutil.rmtree(storage / child)

            if not blob_dir.is_dir() or not any(blob_dir.iterdir()):
                shutil.rmtree(storage)
        except OSError as exc:
            raise FilesystemError(f"failed to delete {storage}: {exc}") from exc

        logger.info(
            "repository deleted repo=%s blobs_removed=%d blobs_kept=%d",
            repo,
            removed,
            len(shared),
        )
        return removed

    def _blobs_referenced_outside(self, storage: Path) -> set[Path]:
        blob_dir = (storage / "blobs").resolve()
        referenced: set[Path] = set()
        for folder in self.cache_root.glob(f"{_FOLDER_PREFIX}*"):
            if folder == storage:
                continue
            snapshots = folder / "snapshots"
            if not snapshots.is_dir():
                continue
            for path in snapshots.rglob("*"):
                if not path.is_symlink():
                    continue
                target = path.resolve()
                if target.parent == blob_dir:
                    referenced.add(target)
        return referenced


def _safe_segment(value: str) -> str:
    normalized = value.strip().replace("/", "--")
    if normalized in {"", ".", ".."}:
        raise InvalidRevisionError(f"invalid revision: {value!r}")
    return normalized


def _points_into(link: Path, folder: Path) -> bool:
    return Path(os.path.realpath(link)).is_relative_to(folder.resolve())
