from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from .apply import UpdateApplier
from .config import ConfigError, UpdaterConfig, load_config
from .errors import ModUpdateError, OperationCancelled
from .models import ApplyReport, LocalPackage, Registry, UpdateCandidate
from .resolver import UpdateResolver, build_resolver
from .transport import UrllibTransport

app = typer.Typer(help="Check installed mods for updates on Modrinth and CurseForge")

_rich_console = Console()
_err_console = Console(stderr=True)

MOD_SUFFIXES = {".jar", ".zip"}
POLL_INTERVAL = 0.5


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[RichHandler(console=_err_console, show_path=False)],
        force=True,
    )


def _fail(message: str, code: int = 1) -> None:
    typer.secho(message, err=True, fg="red")
    raise typer.Exit(code=code)


def _load_or_exit(root: Path | None = None) -> UpdaterConfig:
    try:
        return load_config(root=root)
    except ConfigError as exc:
        _fail(str(exc), code=2)


def _get_config(ctx: typer.Context) -> UpdaterConfig:
    if ctx.obj is None:
        ctx.obj = {}
    cfg = ctx.obj.get("config")
    if cfg is None:
        cfg = _load_or_exit(ctx.obj.get("root"))
        ctx.obj["config"] = cfg
    return cfg


def _get_resolver(ctx: typer.Context, cfg: UpdaterConfig) -> UpdateResolver:
    resolver = ctx.obj.get("resolver")
    if resolver is None:
        resolver = build_resolver(cfg)
    return resolver


def _get_applier(ctx: typer.Context, cfg: UpdaterConfig, workers: Optional[int]) -> UpdateApplier:
    applier = ctx.obj.get("applier")
    if applier is None:
        applier = UpdateApplier(
            transport=UrllibTransport(timeout=cfg.http_timeout),
            mods_dir=cfg.mods_dir,
            user_agent=cfg.api_user_agent,
            workers=workers or cfg.download_workers,
        )
    return applier


def scan_mods(directory: Path) -> List[LocalPackage]:
    """Treat every jar/zip in ``directory`` as an installed package."""
    if not directory.exists():
        return []
    files = sorted(f for f in directory.iterdir() if f.is_file() and f.suffix in MOD_SUFFIXES)
    return [LocalPackage(id=f.stem, file=f) for f in files]


def _resolve_or_exit(ctx: typer.Context, cfg: UpdaterConfig) -> List[UpdateCandidate]:
    if not cfg.mods_dir.is_dir():
        _fail(f"Mods directory {cfg.mods_dir} does not exist.", code=2)
    packages = scan_mods(cfg.mods_dir)
    if not packages:
        typer.secho(f"No mod files found in {cfg.mods_dir}", fg="yellow")
        return []
    resolver = _get_resolver(ctx, cfg)
    with _rich_console.status(f"Checking {len(packages)} mod(s) for updates..."):
        try:
            return resolver.resolve(packages)
        except OperationCancelled as exc:
            _fail(str(exc), code=130)


def _apply_in_background(
    applier: UpdateApplier,
    candidates: List[UpdateCandidate],
    selection: Dict[str, bool],
    cancel: threading.Event,
) -> ApplyReport:
    """Run the batch off the main thread so Ctrl+C can stop pending downloads.

    The first interrupt sets ``cancel`` and waits for in-flight work to wind
    down; a second one propagates.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="modupdate-apply")
    future = executor.submit(
        applier.apply_updates,
        candidates,
        selected=lambda c: selection.get(c.key, False),
        cancel=cancel,
    )
    try:
        while True:
            try:
                return future.result(timeout=POLL_INTERVAL)
            except FutureTimeout:
                continue
            except KeyboardInterrupt:
                if cancel.is_set():
                    raise
                cancel.set()
                typer.secho("Cancelling pending updates...", err=True, fg="yellow")
    finally:
        executor.shutdown(wait=not cancel.is_set())


def _render_candidates(candidates: Iterable[UpdateCandidate]) -> None:
    table = Table(title="Available updates", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Mod", style="cyan")
    table.add_column("Source")
    table.add_column("Current")
    table.add_column("Latest", style="green")
    table.add_column("File")
    table.add_column("Published", style="dim")
    source_style = {Registry.MODRINTH: "green", Registry.CURSEFORGE: "magenta"}
    for candidate in candidates:
        published = candidate.published_at.strftime("%Y-%m-%d") if candidate.published_at else "-"
        table.add_row(
            candidate.display_name,
            Text(candidate.registry.label, style=source_style[candidate.registry]),
            candidate.package.version or candidate.current_file.name,
            candidate.version_number or candidate.version_title,
            candidate.file_name,
            published,
        )
    _rich_console.print(table)


@app.callback()
def main(
    ctx: typer.Context,
    root: Path = typer.Option(None, "--root", help="Instance directory containing .modupdate.json"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    ctx.obj = ctx.obj or {}
    setup_logging(verbose)
    if root is not None:
        ctx.obj["root"] = root


@app.command("check")
def check_command(ctx: typer.Context):
    """List mods that have a newer compatible version."""
    cfg = _get_config(ctx)
    candidates = _resolve_or_exit(ctx, cfg)
    if not candidates:
        typer.secho("All mods are up to date.", fg="green")
        return
    _render_candidates(candidates)
    typer.secho(f"{len(candidates)} update(s) available.", fg="cyan")


@app.command("update")
def update_command(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Apply every update without asking"),
    exclude: List[str] = typer.Option(None, "--exclude", "-x", help="Mod ID or file name to leave alone"),
    workers: int = typer.Option(None, "--workers", help="Parallel downloads (default from config)"),
):
    """Download and install the selected updates."""
    cfg = _get_config(ctx)
    candidates = _resolve_or_exit(ctx, cfg)
    if not candidates:
        typer.secho("All mods are up to date.", fg="green")
        return
    _render_candidates(candidates)

    excluded = set(exclude or [])
    selection: Dict[str, bool] = {}
    for candidate in candidates:
        if candidate.package.id in excluded or candidate.current_file.name in excluded:
            selection[candidate.key] = False
        elif yes:
            selection[candidate.key] = True
        else:
            selection[candidate.key] = typer.confirm(
                f"Update {candidate.display_name} to {candidate.version_number or candidate.version_title}?",
                default=True,
            )

    chosen = sum(1 for value in selection.values() if value)
    if not chosen:
        typer.secho("Nothing selected.", fg="yellow")
        return

    applier = _get_applier(ctx, cfg, workers)
    cancel = threading.Event()
    try:
        report = _apply_in_background(applier, candidates, selection, cancel)
    except ModUpdateError as exc:
        _fail(str(exc))

    for candidate, error in report.failed:
        typer.secho(f"  {candidate.display_name}: {error}", err=True, fg="red")
    if report.skipped:
        typer.secho(f"Skipped {len(report.skipped)} update(s).", fg="yellow")
    colour = "green" if report.fail == 0 else "yellow"
    typer.secho(f"Updated {report.success} mod(s), {report.fail} failed.", fg=colour)
    if cancel.is_set():
        _fail("Update interrupted.", code=130)
    if report.fail:
        raise typer.Exit(code=1)


@app.command("config")
def config_command(ctx: typer.Context):
    """Show the effective configuration."""
    cfg = _get_config(ctx)
    table = Table(title="modupdate config", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Root", str(cfg.root))
    table.add_row("Mods dir", str(cfg.mods_dir))
    table.add_row("Minecraft version", cfg.minecraft_version or "(any)")
    table.add_row("Loaders", ", ".join(cfg.loaders) or "(any)")
    table.add_row("User agent", cfg.api_user_agent)
    table.add_row("CurseForge key", "(set)" if cfg.curseforge_api_key else "(not set)")
    table.add_row("HTTP timeout", f"{cfg.http_timeout:g}s")
    table.add_row("Download workers", str(cfg.download_workers))
    _rich_console.print(table)
