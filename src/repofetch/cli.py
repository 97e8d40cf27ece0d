from __future__ import annotations

import logging
from pathlib import Path

import typer

from repofetch.config import AppConfig, load_config
from repofetch.download import RepositoryDownloadCoordinator, count_outcomes
from repofetch.errors import (
    PartialFailureError,
    RepoFetchError,
    RetriesExhaustedError,
)
from repofetch.providers import parse_provider
from repofetch.schemas import DownloadOutcome, RepositoryProgress

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = typer.Typer(help="repofetch CLI: cached downloads of model repositories")


@app.command()
def download(
    repo: str = typer.Argument(..., help="Repository id, namespace/name."),
    revision: str = typer.Option("main", "--revision", "-r", help="Branch, tag or commit."),
    provider: str | None = typer.Option(
        None,
        "--provider",
        help="Provider: huggingface, modelscope or modelers.",
    ),
    cache_root: Path | None = typer.Option(
        None,
        "--cache-root",
        help="Cache root directory.",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="YAML or JSON config file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    workers: int | None = typer.Option(
        None,
        "--workers",
        min=1,
        help="Concurrent file downloads.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Download every file of a repository revision into the cache."""
    coordinator = _build_coordinator(
        config_path=config_path,
        provider=provider,
        cache_root=cache_root,
        workers=workers,
        verbose=verbose,
    )
    printer = _ProgressPrinter()
    try:
        result = coordinator.download_repository(
            repo,
            revision,
            progress_callback=printer,
        )
    except RepoFetchError as exc:
        typer.echo(_render_failure(exc), err=True)
        raise typer.Exit(code=1) from exc

    if result.already_cached:
        typer.echo(f"already downloaded: {result.link_path}")
        return

    counts = count_outcomes(result.files)
    typer.echo(
        f"downloaded {result.repo} to {result.link_path} "
        f"(files={len(result.files)}, "
        f"transferred={counts[DownloadOutcome.TRANSFERRED]}, "
        f"linked={counts[DownloadOutcome.LINKED_EXISTING_BLOB]}, "
        f"cached={counts[DownloadOutcome.ALREADY_PUBLISHED]}, "
        f"bytes={result.transferred_bytes})"
    )


@app.command("download-file")
def download_file(
    repo: str = typer.Argument(..., help="Repository id, namespace/name."),
    path: str = typer.Argument(..., help="File path inside the repository."),
    revision: str = typer.Option("main", "--revision", "-r", help="Branch, tag or commit."),
    provider: str | None = typer.Option(
        None,
        "--provider",
        help="Provider: huggingface, modelscope or modelers.",
    ),
    cache_root: Path | None = typer.Option(
        None,
        "--cache-root",
        help="Cache root directory.",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="YAML or JSON config file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Download a single file of a repository revision."""
    coordinator = _build_coordinator(
        config_path=config_path,
        provider=provider,
        cache_root=cache_root,
        workers=None,
        verbose=verbose,
    )
    try:
        result = coordinator.download_file(repo, path, revision)
    except RepoFetchError as exc:
        typer.echo(_render_failure(exc, path=path), err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"{result.outcome}: {result.pointer_path}")


@app.command("list")
def list_repositories(
    cache_root: Path | None = typer.Option(
        None,
        "--cache-root",
        help="Cache root directory.",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="YAML or JSON config file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
) -> None:
    """List repositories that are fully downloaded."""
    coordinator = _build_coordinator(config_path=config_path, cache_root=cache_root)
    names = coordinator.list_local_repositories()
    if not names:
        typer.echo("no repositories downloaded")
        return
    for name in names:
        typer.echo(name)


@app.command()
def size(
    repo: str = typer.Argument(..., help="Repository id, namespace/name."),
    cache_root: Path | None = typer.Option(
        None,
        "--cache-root",
        help="Cache root directory.",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="YAML or JSON config file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
) -> None:
    """Print the bytes a repository occupies in the cache."""
    coordinator = _build_coordinator(config_path=config_path, cache_root=cache_root)
    try:
        total = coordinator.repository_size(repo)
    except RepoFetchError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"{repo} {total}")


@app.command()
def delete(
    repo: str = typer.Argument(..., help="Repository id, namespace/name."),
    cache_root: Path | None = typer.Option(
        None,
        "--cache-root",
        help="Cache root directory.",
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="YAML or JSON config file.",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
) -> None:
    """Remove a repository from the cache, keeping blobs other repos share."""
    coordinator = _build_coordinator(config_path=config_path, cache_root=cache_root)
    try:
        removed = coordinator.delete_repository(repo)
    except RepoFetchError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"deleted {repo} (blobs_removed={removed})")


class _ProgressPrinter:
    def __init__(self) -> None:
        self._completed = -1

    def __call__(self, progress: RepositoryProgress) -> None:
        if progress.completed_files == self._completed:
            return
        self._completed = progress.completed_files
        typer.echo(
            f"[{progress.completed_files}/{progress.total_files}] "
            f"{progress.downloaded_bytes}/{progress.total_bytes} bytes"
        )


def _build_coordinator(
    *,
    config_path: Path | None,
    cache_root: Path | None,
    provider: str | None = None,
    workers: int | None = None,
    verbose: bool = False,
) -> RepositoryDownloadCoordinator:
    try:
        config = _load_app_config(
            config_path=config_path,
            provider=provider,
            cache_root=cache_root,
            workers=workers,
            verbose=verbose,
        )
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    if config.download.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    return RepositoryDownloadCoordinator.from_config(config)


def _load_app_config(
    *,
    config_path: Path | None,
    provider: str | None,
    cache_root: Path | None,
    workers: int | None,
    verbose: bool,
) -> AppConfig:
    config = load_config(config_path) if config_path is not None else AppConfig()

    download_updates: dict[str, object] = {}
    if cache_root is not None:
        download_updates["cache_root"] = str(cache_root)
    if workers is not None:
        download_updates["max_workers"] = workers
    if verbose:
        download_updates["verbose"] = True

    payload = config.model_dump()
    payload["download"].update(download_updates)
    if provider is not None:
        payload["provider"]["name"] = parse_provider(provider)
    return AppConfig.model_validate(payload)


def _render_failure(exc: RepoFetchError, *, path: str | None = None) -> str:
    failed_path = path
    cause: BaseException = exc
    if isinstance(exc, PartialFailureError):
        failed_path = exc.path
        cause = exc.cause

    if isinstance(cause, RetriesExhaustedError):
        attempts = cause.attempts
        detail = cause.last_error
    else:
        attempts = 1
        detail = cause

    if failed_path is None:
        return f"download failed: {detail}"
    return f"download failed: path={failed_path} attempts={attempts} cause={detail}"
