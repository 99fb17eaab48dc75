from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import RegistryError, UpdateError

T = TypeVar("T")

CURSEFORGE_SHA1_ALGO = 1


class Registry(str, Enum):
    MODRINTH = "modrinth"
    CURSEFORGE = "curseforge"

    @property
    def label(self) -> str:
        return {"modrinth": "Modrinth", "curseforge": "CurseForge"}[self.value]


@dataclass(frozen=True)
class LocalPackage:
    id: str
    name: Optional[str] = None
    version: Optional[str] = None
    file: Optional[Path] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.id:
            return self.id
        return self.file.stem if self.file else "?"


@dataclass(frozen=True)
class Constraints:
    game_version: str = ""
    loaders: Tuple[str, ...] = ()


@dataclass
class UpdateCandidate:
    """A proposed replacement for an installed package, pending selection."""

    package: LocalPackage
    current_file: Path
    current_digest: str
    registry: Registry
    project_id: str
    version_title: str
    version_number: str
    file_name: str
    file_url: str
    file_digest: Optional[str] = None
    project_slug: Optional[str] = None
    published_at: Optional[datetime] = None
    changelog: Optional[str] = None
    selected: bool = True

    def __post_init__(self) -> None:
        if self.file_digest is not None and self.file_digest.lower() == self.current_digest.lower():
            raise ValueError(
                f"{self.current_file.name} already matches the remote file; not an update."
            )

    @property
    def key(self) -> str:
        return str(self.current_file.resolve())

    @property
    def display_name(self) -> str:
        return self.package.display_name


@dataclass
class BatchResult(Generic[T]):
    """Outcome of one batched registry call.

    A failed call carries its error and an empty ``items``; callers decide
    whether to continue.
    """

    items: T
    error: Optional[RegistryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ApplyReport:
    succeeded: List[UpdateCandidate] = field(default_factory=list)
    failed: List[Tuple[UpdateCandidate, UpdateError]] = field(default_factory=list)
    skipped: List[UpdateCandidate] = field(default_factory=list)

    @property
    def success(self) -> int:
        return len(self.succeeded)

    @property
    def fail(self) -> int:
        return len(self.failed)


def is_http_url(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.lower().startswith(("http://", "https://"))


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    clean_value = value.strip()
    if clean_value.endswith("Z"):
        clean_value = clean_value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(clean_value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ModrinthHashes(_WireModel):
    sha1: Optional[str] = None
    sha512: Optional[str] = None


class ModrinthFile(_WireModel):
    filename: str
    url: str
    primary: bool = False
    hashes: ModrinthHashes = Field(default_factory=ModrinthHashes)

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        if not is_http_url(value):
            raise ValueError(f"not an http(s) download URL: {value!r}")
        return value


class ModrinthVersion(_WireModel):
    project_id: str
    name: Optional[str] = None
    version_number: Optional[str] = None
    date_published: Optional[datetime] = None
    changelog: Optional[str] = None
    files: List[ModrinthFile] = Field(default_factory=list)

    @field_validator("date_published", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)

    def primary_file(self) -> Optional[ModrinthFile]:
        for file in self.files:
            if file.primary:
                return file
        return self.files[0] if self.files else None


class FileHash(_WireModel):
    algo: int
    value: str


class RemoteFile(_WireModel):
    """A downloadable file listed under a CurseForge fingerprint match."""

    file_name: str = Field(alias="fileName")
    display_name: Optional[str] = Field(default=None, alias="displayName")
    download_url: Optional[str] = Field(default=None, alias="downloadUrl")
    game_versions: List[str] = Field(default_factory=list, alias="gameVersions")
    hashes: List[FileHash] = Field(default_factory=list)
    published_at: Optional[datetime] = Field(default=None, alias="fileDate")

    @field_validator("download_url")
    @classmethod
    def drop_unusable_url(cls, value: Optional[str]) -> Optional[str]:
        return value if is_http_url(value) else None

    @field_validator("published_at", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Optional[datetime]:
        return parse_timestamp(value)

    @property
    def sha1(self) -> Optional[str]:
        for entry in self.hashes:
            if entry.algo == CURSEFORGE_SHA1_ALGO:
                return entry.value
        return None


class MatchedFile(_WireModel):
    fingerprint: int = Field(alias="fileFingerprint")


class RegistryMatch(_WireModel):
    project_id: int = Field(alias="id")
    slug: Optional[str] = None
    file: MatchedFile
    latest_files: List[RemoteFile] = Field(default_factory=list, alias="latestFiles")

    @property
    def fingerprint(self) -> int:
        return self.file.fingerprint


class ModrinthUpdateRequest(_WireModel):
    hashes: List[str]
    algorithm: str = "sha1"
    loaders: List[str] = Field(default_factory=list)
    game_versions: List[str] = Field(default_factory=list)


class FingerprintRequest(_WireModel):
    fingerprints: List[int]
