from __future__ import annotations

import logging
import os
from pathlib import Path
import stat
from typing import Iterable, Iterator

from winstick.exclude_engine import ExcludeEngine, build_exclude_engine
from winstick.models import OversizedFile, ScanTotals


# Largest file FAT32 can hold (4 GiB - 1 byte)
FAT32_MAX_FILE_SIZE = 4 * 1024 * 1024 * 1024 - 1

SPLITTABLE_ARCHIVE_SUFFIXES = (".wim",)

_SIZE_UNITS = ("KB", "MB", "GB", "TB")

log = logging.getLogger("winstick.scan")


def _open_root(root: Path) -> None:
    # Only the root is allowed to fail the whole scan.
    with os.scandir(root):
        pass


def _iter_regular_files(root: Path, totals: ScanTotals | None = None) -> Iterator[tuple[str, int]]:
    def _on_walk_error(exc: OSError) -> None:
        log.debug("Skipping unreadable directory %s: %s", exc.filename, exc)
        if totals is not None:
            totals.skipped += 1

    for root_str, _, files in os.walk(root, onerror=_on_walk_error):
        current = Path(root_str)
        for file_name in files:
            path = current / file_name
            try:
                info = path.lstat()
            except OSError as exc:
                log.debug("Skipping unreadable entry %s: %s", path, exc)
                if totals is not None:
                    totals.skipped += 1
                continue
            if not stat.S_ISREG(info.st_mode):
                continue
            yield path.relative_to(root).as_posix(), info.st_size


def scan_tree(root: Path, exclude: ExcludeEngine | Iterable[str] | None = None) -> ScanTotals:
    """Count regular files and bytes under ``root``.

    Entries that cannot be stat'ed are counted in ``skipped`` instead of
    failing the scan.
    """
    root = Path(root)
    _open_root(root)
    excluder = build_exclude_engine(exclude)
    totals = ScanTotals()
    for rel_path, size in _iter_regular_files(root, totals):
        if excluder and excluder.is_excluded(rel_path):
            continue
        totals.files += 1
        totals.bytes += size
    return totals


def find_oversized_files(root: Path, limit: int = FAT32_MAX_FILE_SIZE) -> list[OversizedFile]:
    root = Path(root)
    _open_root(root)
    return [
        OversizedFile(rel_path=rel_path, size=size)
        for rel_path, size in _iter_regular_files(root)
        if size > limit
    ]


def is_splittable_archive(path: str | Path) -> bool:
    return str(path).lower().endswith(SPLITTABLE_ARCHIVE_SUFFIXES)


def largest_file(root: Path) -> tuple[int, str]:
    root = Path(root)
    _open_root(root)
    max_size = 0
    max_file = ""
    for rel_path, size in _iter_regular_files(root):
        if size > max_size:
            max_size = size
            max_file = rel_path
    return max_size, max_file


def format_size_human(size: int) -> str:
    unit = 1024
    if size < unit:
        return f"{size} B"

    div, exp = unit, 0
    remaining = size // unit
    while remaining >= unit and exp < len(_SIZE_UNITS) - 1:
        div *= unit
        exp += 1
        remaining //= unit
    return f"{size / div:.1f} {_SIZE_UNITS[exp]}"


def suggest_filesystem(root: Path) -> tuple[str, str]:
    oversized = find_oversized_files(root)
    if not oversized:
        return "FAT32", "All files are within FAT32 limits"

    max_size, max_file = largest_file(root)
    reason = f"File '{max_file}' ({format_size_human(max_size)}) exceeds FAT32 4GB limit"
    if len(oversized) > 1:
        reason += f" (and {len(oversized) - 1} other files)"
    return "NTFS", reason


def unsplittable_files(oversized: Iterable[OversizedFile]) -> list[OversizedFile]:
    return [item for item in oversized if not is_splittable_archive(item.rel_path)]


def validate_filesystem_choice(root: Path, filesystem: str) -> list[OversizedFile]:
    """Check that ``filesystem`` can hold the tree under ``root``.

    Returns the oversized archives that will have to be split on FAT.
    """
    if filesystem.upper() not in {"FAT", "FAT32"}:
        return []

    oversized = find_oversized_files(root)
    blocking = unsplittable_files(oversized)
    if blocking:
        names = ", ".join(f"{item.rel_path} ({format_size_human(item.size)})" for item in blocking)
        raise ValueError(f"Cannot use FAT32: {len(blocking)} file(s) exceed the 4GB limit: {names}")
    return oversized
