"""Reconcile installed mod files with the latest versions on both registries.

Modrinth is consulted first, by SHA-1. Packages it produced an update for are
never sent to CurseForge; the rest are fingerprinted and looked up there.
Every per-file and per-call failure is logged and only shrinks the result.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Set

from . import hashing
from .compat import select_best
from .errors import OperationCancelled
from .models import (
    Constraints,
    LocalPackage,
    ModrinthVersion,
    Registry,
    RegistryMatch,
    UpdateCandidate,
)
from .registries import CurseForgeClient, ModrinthClient, RegistryClient
from .transport import UrllibTransport

if TYPE_CHECKING:  # pragma: no cover
    from .config import UpdaterConfig

logger = logging.getLogger(__name__)


@dataclass
class _Hashed:
    package: LocalPackage
    path: Path
    digest: str


def _path_key(path: Path) -> str:
    return str(Path(path).resolve())


def _check_cancel(cancel: Optional[threading.Event], stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"Update check cancelled before {stage}")


class UpdateResolver:
    def __init__(
        self,
        modrinth: RegistryClient,
        curseforge: RegistryClient,
        constraints: Constraints = Constraints(),
    ) -> None:
        self.modrinth = modrinth
        self.curseforge = curseforge
        self.constraints = constraints

    def resolve(
        self,
        packages: Iterable[LocalPackage],
        cancel: Optional[threading.Event] = None,
    ) -> List[UpdateCandidate]:
        _check_cancel(cancel, "hashing")
        hashed = self._digest_all(packages)
        if not hashed:
            logger.info("No readable mod files to check")
            return []

        _check_cancel(cancel, "the Modrinth lookup")
        by_digest: Dict[str, _Hashed] = {}
        for entry in hashed:
            by_digest[entry.digest] = entry
        modrinth_updates = self._check_modrinth(by_digest)

        resolved_paths: Set[str] = {_path_key(c.current_file) for c in modrinth_updates}
        remaining = [entry for entry in hashed if _path_key(entry.path) not in resolved_paths]

        curseforge_updates: List[UpdateCandidate] = []
        if remaining:
            _check_cancel(cancel, "the CurseForge lookup")
            curseforge_updates = self._check_curseforge(remaining)

        logger.info(
            "Found %d update(s): %d from Modrinth, %d from CurseForge",
            len(modrinth_updates) + len(curseforge_updates),
            len(modrinth_updates),
            len(curseforge_updates),
        )
        return modrinth_updates + curseforge_updates

    def _digest_all(self, packages: Iterable[LocalPackage]) -> List[_Hashed]:
        hashed: List[_Hashed] = []
        for package in packages:
            if package.file is None:
                continue
            try:
                file_digest = hashing.digest(package.file)
            except OSError as exc:
                logger.error("Failed to calculate hash for %s: %s", package.file.name, exc)
                continue
            hashed.append(_Hashed(package=package, path=package.file, digest=file_digest))
        return hashed

    def _check_modrinth(self, by_digest: Dict[str, _Hashed]) -> List[UpdateCandidate]:
        result = self.modrinth.lookup_by_digests(set(by_digest), self.constraints)
        if not result.ok:
            logger.warning("Modrinth lookup contributed no updates: %s", result.error)

        updates: List[UpdateCandidate] = []
        for digest, version in result.items.items():
            entry = by_digest.get(digest)
            if entry is None:
                continue
            candidate = self._modrinth_candidate(entry, version)
            if candidate is not None:
                updates.append(candidate)
        return updates

    def _modrinth_candidate(self, entry: _Hashed, version: ModrinthVersion) -> Optional[UpdateCandidate]:
        primary = version.primary_file()
        if primary is None:
            logger.debug("Modrinth version for %s lists no files", entry.path.name)
            return None
        latest_hash = primary.hashes.sha1
        if latest_hash is not None and latest_hash.lower() == entry.digest:
            logger.debug("%s is up to date on Modrinth", entry.path.name)
            return None
        return UpdateCandidate(
            package=entry.package,
            current_file=entry.path,
            current_digest=entry.digest,
            registry=Registry.MODRINTH,
            project_id=version.project_id,
            version_title=version.name or "Unknown",
            version_number=version.version_number or "",
            file_name=primary.filename,
            file_url=primary.url,
            file_digest=latest_hash,
            published_at=version.date_published,
            changelog=version.changelog,
        )

    def _check_curseforge(self, remaining: List[_Hashed]) -> List[UpdateCandidate]:
        by_fingerprint: Dict[int, _Hashed] = {}
        for entry in remaining:
            try:
                by_fingerprint[hashing.fingerprint(entry.path)] = entry
            except OSError as exc:
                logger.error("Failed to calculate fingerprint for %s: %s", entry.path.name, exc)
        if not by_fingerprint:
            return []

        result = self.curseforge.lookup_by_fingerprints(set(by_fingerprint))
        if not result.ok:
            logger.warning("CurseForge lookup contributed no updates: %s", result.error)

        updates: List[UpdateCandidate] = []
        for match in result.items:
            entry = by_fingerprint.get(match.fingerprint)
            if entry is None:
                continue
            candidate = self._curseforge_candidate(entry, match)
            if candidate is not None:
                updates.append(candidate)
        return updates

    def _curseforge_candidate(self, entry: _Hashed, match: RegistryMatch) -> Optional[UpdateCandidate]:
        best = select_best(match.latest_files, self.constraints.game_version, self.constraints.loaders)
        if best is None:
            logger.debug("No compatible CurseForge file for %s", entry.path.name)
            return None
        latest_hash = best.sha1
        if latest_hash is not None and latest_hash.lower() == entry.digest:
            logger.debug("%s is up to date on CurseForge", entry.path.name)
            return None
        if not best.download_url:
            logger.warning(
                "CurseForge file %s for %s has no download URL; skipping",
                best.file_name,
                entry.path.name,
            )
            return None
        title = best.display_name or "Unknown"
        return UpdateCandidate(
            package=entry.package,
            current_file=entry.path,
            current_digest=entry.digest,
            registry=Registry.CURSEFORGE,
            project_id=str(match.project_id),
            project_slug=match.slug,
            version_title=title,
            version_number=best.display_name or "",
            file_name=best.file_name,
            file_url=best.download_url,
            file_digest=latest_hash,
            published_at=best.published_at,
        )


def build_resolver(cfg: "UpdaterConfig") -> UpdateResolver:
    transport = UrllibTransport(timeout=cfg.http_timeout)
    modrinth = ModrinthClient(
        api_base=cfg.modrinth_api_base,
        transport=transport,
        user_agent=cfg.api_user_agent,
    )
    curseforge = CurseForgeClient(
        api_key=cfg.curseforge_api_key,
        api_base=cfg.curseforge_api_base,
        transport=transport,
        user_agent=cfg.api_user_agent,
    )
    return UpdateResolver(modrinth, curseforge, cfg.constraints)
