from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeTransport, make_candidate
from typer.testing import CliRunner

from modupdate import cli
from modupdate.apply import UpdateApplier
from modupdate.cli import app, scan_mods
from modupdate.config import UpdaterConfig
from modupdate.errors import NetworkError

runner = CliRunner()


class _FakeResolver:
    def __init__(self, candidates):
        self.candidates = candidates
        self.seen = None

    def resolve(self, packages, cancel=None):
        self.seen = list(packages)
        return self.candidates


def _setup(tmp_path: Path):
    mods = tmp_path / "mods"
    mods.mkdir()
    (mods / "notes.txt").write_text("not a mod")
    old_a = mods / "sodium-1.jar"
    old_a.write_bytes(b"sodium 1")
    old_b = mods / "jei-1.jar"
    old_b.write_bytes(b"jei 1")
    cfg = UpdaterConfig(root=tmp_path, mods_dir=mods, minecraft_version="1.20.1")
    candidates = [
        make_candidate(old_a, "sodium-2.jar", "https://cdn/sodium-2.jar", b"sodium 2"),
        make_candidate(old_b, "jei-2.jar", "https://cdn/jei-2.jar", b"jei 2"),
    ]
    return cfg, mods, candidates


def test_scan_mods_only_lists_archives(tmp_path: Path) -> None:
    _, mods, _ = _setup(tmp_path)
    packages = scan_mods(mods)
    assert [p.id for p in packages] == ["jei-1", "sodium-1"]
    assert scan_mods(tmp_path / "missing") == []


def test_check_lists_updates(tmp_path: Path) -> None:
    cfg, _, candidates = _setup(tmp_path)
    resolver = _FakeResolver(candidates)

    result = runner.invoke(app, ["check"], obj={"config": cfg, "resolver": resolver})

    assert result.exit_code == 0, result.output
    assert "2 update(s) available." in result.output
    assert len(resolver.seen) == 2


def test_check_reports_up_to_date(tmp_path: Path) -> None:
    cfg, _, _ = _setup(tmp_path)
    result = runner.invoke(app, ["check"], obj={"config": cfg, "resolver": _FakeResolver([])})
    assert result.exit_code == 0
    assert "All mods are up to date." in result.output


def test_update_applies_everything_with_yes(tmp_path: Path) -> None:
    cfg, mods, candidates = _setup(tmp_path)
    transport = FakeTransport(files={"https://cdn/sodium-2.jar": b"sodium 2", "https://cdn/jei-2.jar": b"jei 2"})
    applier = UpdateApplier(transport=transport, mods_dir=mods)

    result = runner.invoke(
        app,
        ["update", "--yes"],
        obj={"config": cfg, "resolver": _FakeResolver(candidates), "applier": applier},
    )

    assert result.exit_code == 0, result.output
    assert "Updated 2 mod(s), 0 failed." in result.output
    assert sorted(p.name for p in mods.glob("*.jar")) == ["jei-2.jar", "sodium-2.jar"]


def test_update_respects_exclude(tmp_path: Path) -> None:
    cfg, mods, candidates = _setup(tmp_path)
    transport = FakeTransport(files={"https://cdn/sodium-2.jar": b"sodium 2", "https://cdn/jei-2.jar": b"jei 2"})
    applier = UpdateApplier(transport=transport, mods_dir=mods)

    result = runner.invoke(
        app,
        ["update", "--yes", "--exclude", "jei-1"],
        obj={"config": cfg, "resolver": _FakeResolver(candidates), "applier": applier},
    )

    assert result.exit_code == 0, result.output
    assert transport.downloads == ["https://cdn/sodium-2.jar"]
    assert (mods / "jei-1.jar").exists()


def test_update_prompts_per_candidate(tmp_path: Path) -> None:
    cfg, mods, candidates = _setup(tmp_path)
    transport = FakeTransport(files={"https://cdn/sodium-2.jar": b"sodium 2", "https://cdn/jei-2.jar": b"jei 2"})
    applier = UpdateApplier(transport=transport, mods_dir=mods)

    result = runner.invoke(
        app,
        ["update"],
        input="n\ny\n",
        obj={"config": cfg, "resolver": _FakeResolver(candidates), "applier": applier},
    )

    assert result.exit_code == 0, result.output
    assert transport.downloads == ["https://cdn/jei-2.jar"]


def test_update_exits_nonzero_on_failure(tmp_path: Path) -> None:
    cfg, mods, candidates = _setup(tmp_path)
    transport = FakeTransport(
        files={"https://cdn/sodium-2.jar": NetworkError("boom"), "https://cdn/jei-2.jar": b"jei 2"}
    )
    applier = UpdateApplier(transport=transport, mods_dir=mods)

    result = runner.invoke(
        app,
        ["update", "-y"],
        obj={"config": cfg, "resolver": _FakeResolver(candidates), "applier": applier},
    )

    assert result.exit_code == 1
    assert "Updated 1 mod(s), 1 failed." in result.output


def test_config_command_masks_key(tmp_path: Path) -> None:
    cfg = UpdaterConfig(root=tmp_path, mods_dir=tmp_path / "mods", curseforge_api_key="super-secret")
    result = runner.invoke(app, ["config"], obj={"config": cfg})
    assert result.exit_code == 0
    assert "super-secret" not in result.output
    assert "(set)" in result.output


class _InterruptedFuture:
    """Raises one KeyboardInterrupt while waiting, then runs the job."""

    def __init__(self, fn, args, kwargs):
        self.job = lambda: fn(*args, **kwargs)
        self.interrupted = False

    def result(self, timeout=None):
        if not self.interrupted:
            self.interrupted = True
            raise KeyboardInterrupt
        return self.job()


class _InterruptingExecutor:
    def __init__(self, *args, **kwargs):
        self.futures = []

    def submit(self, fn, *args, **kwargs):
        future = _InterruptedFuture(fn, args, kwargs)
        self.futures.append(future)
        return future

    def shutdown(self, wait=True):
        pass


def test_ctrl_c_cancels_pending_downloads(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cfg, mods, candidates = _setup(tmp_path)
    transport = FakeTransport(files={"https://cdn/sodium-2.jar": b"sodium 2", "https://cdn/jei-2.jar": b"jei 2"})
    applier = UpdateApplier(transport=transport, mods_dir=mods)
    monkeypatch.setattr(cli, "ThreadPoolExecutor", _InterruptingExecutor)

    result = runner.invoke(
        app,
        ["update", "--yes"],
        obj={"config": cfg, "resolver": _FakeResolver(candidates), "applier": applier},
    )

    assert result.exit_code == 130
    assert "Skipped 2 update(s)." in result.output
    assert transport.downloads == []
    assert sorted(p.name for p in mods.glob("*.jar")) == ["jei-1.jar", "sodium-1.jar"]
    assert not list(mods.glob("*.tmp"))
