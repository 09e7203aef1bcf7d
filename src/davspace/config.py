"""davspace configuration management.

Configuration sources (in priority order):
1. Explicit keyword arguments
2. Environment variables (DAVSPACE_ prefix, ``__`` for nesting)
3. Config file (YAML)
4. Defaults
"""

from __future__ import annotations

import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from davspace.utils.paths import clean, documents_directory

DEFAULT_REPOSITORY_NAME = "WebDAV Repository"


class TimeoutConfig(BaseModel):
    """Per-call timeouts in seconds."""

    metadata: float = 10.0  # list / stat / mkdir / delete
    read: float = 15.0
    write: float = 30.0
    connect: float = 30.0  # initial probe


class CacheConfig(BaseModel):
    """Disk-backed cache for open documents."""

    directory: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "davspace-cache")
    )


def _config_file_candidates() -> list[Path]:
    candidates: list[Path] = []
    env_path = os.environ.get("DAVSPACE_CONFIG_FILE")
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(Path("davspace.yaml"))
    candidates.append(Path.home() / ".config" / "davspace" / "config.yaml")
    return candidates


def _load_config_file() -> dict[str, Any]:
    """Load configuration from the first YAML file that exists.

    Looks for config file in order:
    1. DAVSPACE_CONFIG_FILE environment variable
    2. ./davspace.yaml
    3. ~/.config/davspace/config.yaml
    """
    for path in _config_file_candidates():
        if path.exists():
            with open(path, encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
    return {}


class _YamlFileSource(PydanticBaseSettingsSource):
    """Settings source backed by the YAML config file."""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return _load_config_file()


class Settings(BaseSettings):
    """davspace settings."""

    model_config = SettingsConfigDict(
        env_prefix="DAVSPACE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # Connection
    server_url: str = ""
    username: str = ""
    password: SecretStr = SecretStr("")
    base_path: str = "/"
    use_https: bool = True

    # Local mirror
    repository_name: str = DEFAULT_REPOSITORY_NAME
    local_sync_path: str = ""
    workspace_folder: str | None = None

    # Behaviour
    auto_sync: bool = True
    sync_on_save: bool = True
    clipboard_expiry_seconds: float = 600.0

    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, _YamlFileSource(settings_cls), file_secret_settings)

    @field_validator("server_url", "username", "repository_name", "local_sync_path", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("password", mode="before")
    @classmethod
    def _strip_password(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("base_path", mode="before")
    @classmethod
    def _clean_base_path(cls, value: Any) -> Any:
        if value is None:
            return "/"
        if isinstance(value, str):
            return clean(value.strip())
        return value

    @field_validator("repository_name")
    @classmethod
    def _default_repository_name(cls, value: str) -> str:
        return value or DEFAULT_REPOSITORY_NAME

    def effective_server_url(self) -> str:
        """Server URL with a scheme, chosen by ``use_https`` when missing."""
        url = self.server_url.rstrip("/")
        if not url or url.startswith(("http://", "https://")):
            return url
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{url}"

    def missing_fields(self) -> list[str]:
        """Names of required connection fields that are empty."""
        missing = []
        if not self.server_url:
            missing.append("server_url")
        if not self.username:
            missing.append("username")
        if not self.password.get_secret_value():
            missing.append("password")
        return missing

    def resolved_local_sync_path(self) -> Path:
        return resolve_local_path(
            self.local_sync_path,
            workspace_folder=self.workspace_folder,
            repository_name=self.repository_name,
        )


def default_local_sync_path(
    *,
    workspace_folder: str | Path | None = None,
    repository_name: str = DEFAULT_REPOSITORY_NAME,
    documents: Path | None = None,
) -> Path:
    if workspace_folder:
        return Path(workspace_folder) / "webdav-sync" / repository_name
    return (documents or documents_directory()) / "WebDAV-Sync" / repository_name


def resolve_local_path(
    template: str | None,
    *,
    workspace_folder: str | Path | None = None,
    repository_name: str = DEFAULT_REPOSITORY_NAME,
    home: Path | None = None,
    documents: Path | None = None,
) -> Path:
    """Expand a local sync path template into an absolute, normalized path.

    Supported variables: ``${workspaceFolder}``, ``${userHome}``,
    ``${documents}``, ``${repositoryName}`` (and ``${webdav.repositoryName}``).
    Does not touch the disk.
    """
    if not template or not template.strip():
        return default_local_sync_path(
            workspace_folder=workspace_folder,
            repository_name=repository_name,
            documents=documents,
        )

    home = home or Path.home()
    resolved = template.strip()
    if workspace_folder:
        resolved = resolved.replace("${workspaceFolder}", str(workspace_folder))
    resolved = resolved.replace("${userHome}", str(home))
    if "${documents}" in resolved:
        resolved = resolved.replace("${documents}", str(documents or documents_directory(home)))
    resolved = resolved.replace("${webdav.repositoryName}", repository_name)
    resolved = resolved.replace("${repositoryName}", repository_name)

    path = Path(resolved)
    if not path.is_absolute():
        anchor = Path(workspace_folder) if workspace_folder else Path.cwd()
        path = anchor / path
    return Path(os.path.normpath(path))


def ensure_local_sync_folder(settings: Settings) -> Path:
    """Create the resolved local sync folder if needed and return it."""
    path = settings.resolved_local_sync_path()
    path.mkdir(parents=True, exist_ok=True)
    return path


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
