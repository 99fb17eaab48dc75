from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set

from .models import RemoteFile

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class Loader(str, Enum):
    FABRIC = "fabric"
    FORGE = "forge"
    NEOFORGE = "neoforge"
    QUILT = "quilt"

    @property
    def display_name(self) -> str:
        return {
            "fabric": "Fabric",
            "forge": "Forge",
            "neoforge": "NeoForge",
            "quilt": "Quilt",
        }[self.value]


DEFAULT_LOADERS: List[str] = [loader.value for loader in Loader]


def normalize_loader(name: Optional[str]) -> Optional[str]:
    """Map a loader name or spelling to the tag the registries use."""
    if not name:
        return None
    key = name.strip().lower()
    mapping = {
        "fabric": "fabric",
        "quilt": "quilt",
        "forge": "forge",
        "neoforge": "neoforge",
        "neo-forge": "neoforge",
    }
    return mapping.get(key, key if key else None)


def loader_aliases(loaders: Iterable[str]) -> Set[str]:
    """Every lowercase tag that counts as a match for one of ``loaders``."""
    aliases: Set[str] = set()
    for name in loaders:
        if not name:
            continue
        aliases.add(name.lower())
        normalized = normalize_loader(name)
        if normalized:
            aliases.add(normalized)
        try:
            loader = Loader(normalized)
        except ValueError:
            continue
        aliases.add(loader.display_name.lower())
    return aliases


def is_compatible(file: RemoteFile, target_version: str, accepted_loaders: Sequence[str]) -> bool:
    if target_version and target_version not in file.game_versions:
        return False
    if accepted_loaders:
        accepted = loader_aliases(accepted_loaders)
        if not any(tag.lower() in accepted for tag in file.game_versions):
            return False
    return True


def select_best(
    files: Iterable[RemoteFile],
    target_version: str = "",
    accepted_loaders: Sequence[str] = (),
) -> Optional[RemoteFile]:
    """Newest file matching the game version and one of the loaders.

    Files without a usable timestamp rank as the oldest. Among files with the
    same timestamp the first one listed wins; callers should not rely on it.
    """
    compatible = [f for f in files if is_compatible(f, target_version, accepted_loaders)]
    if not compatible:
        return None
    return max(compatible, key=lambda f: f.published_at or _EPOCH)
