from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from . import hashing
from .errors import ModUpdateError, OperationCancelled, UpdateError
from .models import ApplyReport, UpdateCandidate
from .registries import DEFAULT_USER_AGENT
from .transport import Transport, UrllibTransport

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"
DISABLED_SUFFIX = ".disabled"

Selector = Callable[[UpdateCandidate], bool]


def _is_selected(candidate: UpdateCandidate) -> bool:
    return candidate.selected


def safe_file_name(name: str) -> str:
    """Reduce a remote file name to a bare name inside the target directory."""
    bare = Path(name.replace("\\", "/")).name
    if not bare or bare in {".", ".."}:
        raise UpdateError(f"Refusing to install remote file with unusable name {name!r}")
    return bare


class UpdateApplier:
    """Download selected candidates and swap them in for the old files.

    Each replacement is written to ``<name>.tmp`` next to its destination,
    checked against the registry's SHA-1 when one is known, and renamed onto
    the destination. The old file and its ``.disabled`` marker are removed
    only after that rename succeeds.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        mods_dir: Optional[Path] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        workers: int = 1,
    ) -> None:
        self.transport = transport or UrllibTransport()
        self.mods_dir = mods_dir
        self.user_agent = user_agent
        self.workers = max(1, workers)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, destination: Path) -> threading.Lock:
        key = str(destination.resolve())
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def destination_for(self, candidate: UpdateCandidate) -> Path:
        target_dir = self.mods_dir or candidate.current_file.parent
        return target_dir / safe_file_name(candidate.file_name)

    def apply_update(self, candidate: UpdateCandidate, cancel: Optional[threading.Event] = None) -> Path:
        destination = self.destination_for(candidate)
        with self._lock_for(destination):
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"Update of {candidate.display_name} cancelled")
            return self._replace(candidate, destination, cancel)

    def _replace(self, candidate: UpdateCandidate, destination: Path, cancel: Optional[threading.Event]) -> Path:
        old_file = candidate.current_file
        temp_file = destination.with_name(destination.name + TEMP_SUFFIX)
        headers = {"User-Agent": self.user_agent}

        try:
            self.transport.download(candidate.file_url, temp_file, headers=headers, cancel=cancel)
            if candidate.file_digest:
                actual = hashing.digest(temp_file)
                if actual != candidate.file_digest.lower():
                    raise UpdateError(
                        f"Checksum mismatch for {destination.name}: expected {candidate.file_digest}, got {actual}"
                    )

            same_as_old = destination.exists() and old_file.exists() and destination.samefile(old_file)
            if destination.exists() and not same_as_old:
                destination.unlink()
            os.replace(temp_file, destination)
        except (OperationCancelled, UpdateError):
            raise
        except ModUpdateError as exc:
            raise UpdateError(f"Failed to download {candidate.display_name}: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise UpdateError(f"Failed to install {destination.name}: {exc}") from exc
        finally:
            # never leave a partial download behind, including on KeyboardInterrupt
            temp_file.unlink(missing_ok=True)

        try:
            if old_file.exists() and not old_file.samefile(destination):
                old_file.unlink()
            Path(str(old_file) + DISABLED_SUFFIX).unlink(missing_ok=True)
        except OSError as exc:
            raise UpdateError(
                f"Installed {destination.name} but could not remove {old_file.name}: {exc}"
            ) from exc

        logger.info("Updated %s -> %s", old_file.name, destination.name)
        return destination

    def apply_updates(
        self,
        candidates: Iterable[UpdateCandidate],
        selected: Optional[Selector] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ApplyReport:
        chosen: List[UpdateCandidate] = [c for c in candidates if (selected or _is_selected)(c)]
        report = ApplyReport()
        report_guard = threading.Lock()

        def _run(candidate: UpdateCandidate) -> None:
            try:
                self.apply_update(candidate, cancel=cancel)
            except OperationCancelled:
                with report_guard:
                    report.skipped.append(candidate)
            except UpdateError as exc:
                logger.error("Failed to update %s: %s", candidate.display_name, exc)
                with report_guard:
                    report.failed.append((candidate, exc))
            else:
                with report_guard:
                    report.succeeded.append(candidate)

        if self.workers == 1 or len(chosen) <= 1:
            for candidate in chosen:
                _run(candidate)
        else:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="modupdate") as executor:
                list(executor.map(_run, chosen))

        logger.info(
            "Applied %d update(s): %d succeeded, %d failed, %d skipped",
            len(chosen),
            report.success,
            report.fail,
            len(report.skipped),
        )
        return report
