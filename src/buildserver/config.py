"""Runtime configuration: server settings and per-project build definitions."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError


DEFAULT_BUILD_CMD = "npm run build"
DEFAULT_DIST_DIR = "dist"
DEFAULT_CONFIG_FILE = Path("buildserver.json")

# Keys used by legacy config.json files.
_LEGACY_KEYS = {
    "svnRoot": "root_dir",
    "outputDir": "output_dir",
    "nvmRoot": "tool_root",
    "dataDir": "data_dir",
    "maxWorkers": "max_workers",
}
_PATH_KEYS = ("root_dir", "output_dir", "tool_root", "data_dir", "database_file")


def _relative(value: str) -> str:
    return value.lstrip("/\\")


class ProjectSpec(BaseModel):
    """Static build definition of one front-end project."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    name: str = Field(..., min_length=1)
    path: str = Field(..., description="Source directory, relative to the configured root.")
    group: Optional[str] = Field(default=None, description="Output sub-directory the artifacts are grouped under.")
    node_modules_dir: Optional[str] = Field(
        default=None,
        description="Shared dependency directory (relative to root) linked into the project before building.",
    )
    build_cmd: str = DEFAULT_BUILD_CMD
    dist_dir: str = DEFAULT_DIST_DIR
    is_publish: bool = True
    node_version: Optional[str] = Field(default=None, description="Runtime version tag, e.g. 16.20.2.")
    link_name: str = "node_modules"

    @field_validator("build_cmd", mode="before")
    @classmethod
    def _check_build_cmd(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_BUILD_CMD
        if isinstance(value, str) and not value.strip():
            raise ValueError("build command must not be empty")
        return value

    @field_validator("dist_dir", mode="before")
    @classmethod
    def _default_dist_dir(cls, value: Any) -> Any:
        return value or DEFAULT_DIST_DIR

    @field_validator("group", "node_modules_dir", "node_version", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def source_dir(self, root_dir: Path) -> Path:
        return Path(root_dir) / _relative(self.path)

    def dist_path(self, root_dir: Path) -> Path:
        return self.source_dir(root_dir) / self.dist_dir

    def link_path(self, root_dir: Path) -> Path:
        return self.source_dir(root_dir) / self.link_name

    def shared_deps_path(self, root_dir: Path) -> Optional[Path]:
        if not self.node_modules_dir:
            return None
        return Path(root_dir) / _relative(self.node_modules_dir)

    def destination(self, output_dir: Path) -> Path:
        base = Path(output_dir) / self.group if self.group else Path(output_dir)
        return base / self.name


class Settings(BaseSettings):
    """Top level configuration consumed by the orchestrator for one engine instance."""

    model_config = SettingsConfigDict(env_prefix="BUILDSERVER_", env_file=".env", extra="ignore")

    root_dir: Path = Field(default_factory=Path.cwd)
    output_dir: Path = Field(default_factory=lambda: Path.cwd() / "publish")
    tool_root: Optional[Path] = None
    data_dir: Path = Field(default_factory=lambda: Path.cwd() / "var")
    database_file: Optional[Path] = None
    max_workers: Optional[int] = Field(default=4, ge=0)
    projects: List[ProjectSpec] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_project_names(self) -> "Settings":
        seen = set()
        for project in self.projects:
            if project.name in seen:
                raise ValueError(f"duplicate project name: {project.name}")
            seen.add(project.name)
        return self

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    def resolve_database_path(self) -> Path:
        """Return the SQLite database path, creating directories as needed."""

        db_path = self.database_file if self.database_file is not None else self.data_dir / "builds.db"
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return db_path

    def publish_projects(self) -> List[ProjectSpec]:
        return [project for project in self.projects if project.is_publish]

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON serialisable copy of the settings."""
        return {
            "root_dir": str(self.root_dir),
            "output_dir": str(self.output_dir),
            "tool_root": str(self.tool_root) if self.tool_root else None,
            "data_dir": str(self.data_dir),
            "database_file": str(self.database_file) if self.database_file else None,
            "max_workers": self.max_workers,
            "projects": [project.model_dump() for project in self.projects],
        }


def load_config(path: Optional[Path] = None) -> Settings:
    """
    Load settings from the JSON file at *path*.

    Relative directories in the file are resolved against the file's own
    directory. Without a path, settings come from the environment and defaults.
    """
    if path is None:
        return Settings()

    path = Path(path).expanduser()
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Configuration file {path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a JSON object")

    payload = _normalise_payload(data, base_dir=path.parent.resolve())
    try:
        return Settings(**payload)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc


def save_config(settings: Settings, path: Path) -> None:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")


def _normalise_payload(data: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for key, value in data.items():
        payload[_LEGACY_KEYS.get(key, key)] = value

    for key in _PATH_KEYS:
        value = payload.get(key)
        if value in (None, ""):
            payload.pop(key, None)
            continue
        candidate = Path(value).expanduser()
        payload[key] = candidate if candidate.is_absolute() else base_dir / candidate
    return payload
