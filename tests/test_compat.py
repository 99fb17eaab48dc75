from __future__ import annotations

from modupdate.compat import Loader, loader_aliases, normalize_loader, select_best
from modupdate.models import RemoteFile


def _file(name: str, versions, date=None) -> RemoteFile:
    payload = {"fileName": name, "gameVersions": list(versions), "hashes": []}
    if date is not None:
        payload["fileDate"] = date
    return RemoteFile.model_validate(payload)


def test_selects_only_matching_version_and_loader() -> None:
    fabric = _file("fabric.jar", ["1.20.1", "fabric"], "2023-06-01T00:00:00Z")
    forge = _file("forge.jar", ["1.19.2", "forge"], "2023-07-01T00:00:00Z")

    best = select_best([fabric, forge], "1.20.1", ["fabric"])

    assert best is not None
    assert best.file_name == "fabric.jar"


def test_returns_none_when_nothing_qualifies() -> None:
    forge = _file("forge.jar", ["1.19.2", "forge"])
    assert select_best([forge], "1.20.1", ["fabric"]) is None
    assert select_best([], "1.20.1", ["fabric"]) is None


def test_loader_match_is_case_insensitive() -> None:
    neo = _file("neo.jar", ["1.20.4", "NeoForge"])
    assert select_best([neo], "1.20.4", ["neoforge"]) is neo


def test_empty_constraints_accept_everything() -> None:
    files = [
        _file("old.jar", ["1.18.2", "forge"], "2022-01-01T00:00:00Z"),
        _file("new.jar", ["1.20.1", "quilt"], "2024-01-01T00:00:00Z"),
    ]
    assert select_best(files).file_name == "new.jar"


def test_latest_publish_date_wins() -> None:
    files = [
        _file("a.jar", ["1.20.1", "Fabric"], "2023-01-01T00:00:00Z"),
        _file("c.jar", ["1.20.1", "Fabric"], "2023-09-15T12:30:00.123Z"),
        _file("b.jar", ["1.20.1", "Fabric"], "2023-05-01T00:00:00Z"),
    ]
    assert select_best(files, "1.20.1", ["fabric"]).file_name == "c.jar"


def test_missing_or_garbage_dates_rank_oldest() -> None:
    files = [
        _file("nodate.jar", ["1.20.1", "fabric"]),
        _file("garbage.jar", ["1.20.1", "fabric"], "yesterday-ish"),
        _file("dated.jar", ["1.20.1", "fabric"], "2020-01-01T00:00:00Z"),
    ]
    assert files[1].published_at is None
    assert select_best(files, "1.20.1", ["fabric"]).file_name == "dated.jar"


def test_identical_timestamps_still_pick_one_file() -> None:
    files = [
        _file("x.jar", ["1.20.1", "fabric"], "2023-01-01T00:00:00Z"),
        _file("y.jar", ["1.20.1", "fabric"], "2023-01-01T00:00:00Z"),
    ]
    assert select_best(files, "1.20.1", ["fabric"]).file_name in {"x.jar", "y.jar"}


def test_loader_aliases_cover_display_names() -> None:
    aliases = loader_aliases([Loader.NEOFORGE.value, "Quilt"])
    assert {"neoforge", "quilt"} <= aliases
    assert normalize_loader(" Neo-Forge ") == "neoforge"
    assert normalize_loader("") is None
    assert normalize_loader("liteloader") == "liteloader"


def test_server_platforms_are_not_mapped_to_a_mod_loader() -> None:
    # paper/purpur/spigot run plugins, not mods; they pass through untouched
    assert normalize_loader("Purpur") == "purpur"
    assert normalize_loader("spigot") == "spigot"
    assert "paper" not in loader_aliases(["purpur", "spigot"])
