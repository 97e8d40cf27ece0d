from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from repofetch.providers import ProviderKind, parse_provider
from repofetch.schemas import RepositoryId


class ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: ProviderKind = ProviderKind.HUGGINGFACE
    endpoint: str | None = None
    token_env: str = "HF_TOKEN"

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, value: object) -> ProviderKind:
        return parse_provider(str(value))

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().rstrip("/")
        if "://" in normalized:
            normalized = normalized.split("://", 1)[1]
        if not normalized:
            raise ValueError("provider.endpoint must not be empty")
        return normalized

    @field_validator("token_env")
    @classmethod
    def validate_token_env(cls, value: str) -> str:
        return value.strip()

    def resolve_token(self) -> str | None:
        if not self.token_env:
            return None
        token = os.getenv(self.token_env, "").strip()
        return token or None


class RetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1)
    delay_seconds: float = Field(default=1.0, ge=0.0)


class DownloadConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cache_root: str = "~/.cache/repofetch"
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    chunk_size: int = Field(default=1024 * 1024, ge=1)
    max_workers: int = Field(default=1, ge=1)
    verify_checksums: bool = True
    check_disk_space: bool = True
    paused_repositories: list[str] = Field(default_factory=list)
    verbose: bool = False

    @field_validator("cache_root")
    @classmethod
    def validate_cache_root(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("download.cache_root must not be empty")
        return normalized

    @field_validator("paused_repositories")
    @classmethod
    def validate_paused_repositories(cls, value: list[str]) -> list[str]:
        return [RepositoryId.parse(raw).repo_id for raw in value]

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_root).expanduser()


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)


def load_config(path: str | Path) -> AppConfig:
    raw = Path(path).read_text(encoding="utf-8")
    payload = _parse_yaml_or_json(raw)
    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _parse_yaml_or_json(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = _parse_yaml(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed


def _parse_yaml(raw: str) -> dict[str, Any]:
    try:
        import yaml  # type: ignore[import-not-found]
    except ModuleNotFoundError as exc:
        raise ValueError(
            "YAML parsing requires PyYAML. Use JSON-compatible YAML or install pyyaml."
        ) from exc

    parsed = yaml.safe_load(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed
