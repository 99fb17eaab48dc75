from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .compat import DEFAULT_LOADERS, normalize_loader
from .models import Constraints
from .registries import CurseForgeClient, ModrinthClient
from .transport import DEFAULT_TIMEOUT

DEFAULT_CONFIG_FILENAME = ".modupdate.json"
DEFAULT_ENV_FILENAME = ".env"
DEFAULT_MODS_DIR = Path("mods")
DEFAULT_USER_AGENT = "modupdate-cli/dev"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


class FileConfig(BaseModel):
    mods_dir: Optional[Path] = None
    minecraft_version: Optional[str] = None
    loaders: Optional[List[str]] = None
    api_user_agent: Optional[str] = None
    curseforge_api_key: Optional[str] = None
    modrinth_api_base: Optional[str] = None
    curseforge_api_base: Optional[str] = None
    http_timeout: Optional[float] = None
    download_workers: Optional[int] = None


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MODUPDATE_", extra="ignore")

    root: Optional[Path] = None
    mods_dir: Optional[Path] = None
    minecraft_version: Optional[str] = None
    loaders: Optional[List[str]] = None
    api_user_agent: Optional[str] = None
    curseforge_api_key: Optional[str] = None
    http_timeout: Optional[float] = None
    download_workers: Optional[int] = None


class UpdaterConfig(BaseModel):
    root: Path
    mods_dir: Path
    minecraft_version: str = ""
    loaders: List[str] = Field(default_factory=lambda: list(DEFAULT_LOADERS))
    api_user_agent: str = DEFAULT_USER_AGENT
    curseforge_api_key: Optional[str] = None
    modrinth_api_base: str = ModrinthClient.API_BASE
    curseforge_api_base: str = CurseForgeClient.API_BASE
    http_timeout: float = DEFAULT_TIMEOUT
    download_workers: int = 1

    @property
    def constraints(self) -> Constraints:
        loaders = []
        for name in self.loaders:
            normalized = normalize_loader(name)
            if normalized and normalized not in loaders:
                loaders.append(normalized)
        return Constraints(game_version=self.minecraft_version, loaders=tuple(loaders))


def _coerce_path(base: Path, value: Path | str) -> Path:
    path = value if isinstance(value, Path) else Path(value)
    path = path.expanduser()
    return path if path.is_absolute() else (base / path).resolve()


def _load_file_config(path: Path) -> FileConfig:
    if not path.exists():
        return FileConfig()
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    try:
        return FileConfig(**data)
    except (TypeError, ValidationError) as exc:
        raise ConfigError(f"Invalid settings in {path}: {exc}") from exc


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def load_config(root: Path | None = None) -> UpdaterConfig:
    """Load configuration from env + .modupdate.json.

    Environment variables (``MODUPDATE_*``, optionally from ``<root>/.env``)
    win over the JSON file, which wins over the defaults.
    """

    instance_root = Path(root).expanduser().resolve() if root is not None else Path.cwd().resolve()
    env_file = instance_root / DEFAULT_ENV_FILENAME
    try:
        env_settings = EnvSettings(
            _env_file=env_file if env_file.exists() else None,
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid MODUPDATE_* environment settings: {exc}") from exc

    if env_settings.root:
        instance_root = _coerce_path(instance_root, env_settings.root)

    file_cfg = _load_file_config(instance_root / DEFAULT_CONFIG_FILENAME)

    mods_dir = _first(env_settings.mods_dir, file_cfg.mods_dir, DEFAULT_MODS_DIR)
    loaders = _first(env_settings.loaders, file_cfg.loaders, list(DEFAULT_LOADERS))

    return UpdaterConfig(
        root=instance_root,
        mods_dir=_coerce_path(instance_root, mods_dir),
        minecraft_version=_first(env_settings.minecraft_version, file_cfg.minecraft_version, ""),
        loaders=loaders,
        api_user_agent=_first(env_settings.api_user_agent, file_cfg.api_user_agent, DEFAULT_USER_AGENT),
        curseforge_api_key=_first(env_settings.curseforge_api_key, file_cfg.curseforge_api_key),
        modrinth_api_base=file_cfg.modrinth_api_base or ModrinthClient.API_BASE,
        curseforge_api_base=file_cfg.curseforge_api_base or CurseForgeClient.API_BASE,
        http_timeout=_first(env_settings.http_timeout, file_cfg.http_timeout, DEFAULT_TIMEOUT),
        download_workers=_first(env_settings.download_workers, file_cfg.download_workers, 1),
    )
