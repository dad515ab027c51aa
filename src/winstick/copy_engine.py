from __future__ import annotations

import logging
import os
from pathlib import Path
import shutil
import stat
import sys
from typing import Callable, Iterable

from winstick.exclude_engine import ExcludeEngine, build_exclude_engine
from winstick.models import CopyStatistics
from winstick.scan_engine import format_size_human, scan_tree


CHUNK_SIZE = 1024 * 1024
LARGE_FILE_THRESHOLD = 5 * 1024 * 1024

ProgressFunc = Callable[[int, int, str], None]

log = logging.getLogger("winstick.copy")


class CopyValidationError(ValueError):
    pass


def _report(progress_fn: ProgressFunc | None, stats: CopyStatistics) -> None:
    if progress_fn is not None:
        progress_fn(stats.bytes_copied, stats.total_bytes, stats.current_file)


def copy_file(
    source_file: Path,
    destination_file: Path,
    size: int,
    stats: CopyStatistics,
    progress_fn: ProgressFunc | None = None,
) -> None:
    with open(source_file, "rb") as src, open(destination_file, "wb") as dst:
        if size < LARGE_FILE_THRESHOLD:
            shutil.copyfileobj(src, dst)
            stats.bytes_copied += size
            _report(progress_fn, stats)
            return

        # Chunked so progress moves during multi-gigabyte installer images.
        while True:
            chunk = src.read(CHUNK_SIZE)
            if not chunk:
                break
            dst.write(chunk)
            stats.bytes_copied += len(chunk)
            _report(progress_fn, stats)


def copy_tree(
    source_root: Path,
    destination_root: Path,
    exclude: ExcludeEngine | Iterable[str] | None = None,
    progress_fn: ProgressFunc | None = None,
) -> CopyStatistics:
    """Recreate ``source_root`` under ``destination_root``.

    Totals are computed up front so the progress callback sees a fixed
    denominator. A file that fails to copy is recorded in ``failed`` and the
    walk continues; a directory that cannot be created aborts the copy.
    """
    source_root = Path(source_root)
    destination_root = Path(destination_root)
    excluder = build_exclude_engine(exclude)

    totals = scan_tree(source_root, excluder)
    stats = CopyStatistics(total_files=totals.files, total_bytes=totals.bytes)
    log.info(
        "Copying %s file(s), %s from %s to %s",
        totals.files,
        format_size_human(totals.bytes),
        source_root,
        destination_root,
    )

    def _on_walk_error(exc: OSError) -> None:
        failed_path = Path(exc.filename) if exc.filename else source_root
        rel_path = failed_path.relative_to(source_root).as_posix() if failed_path != source_root else "."
        log.warning("Cannot read %s: %s", failed_path, exc)
        stats.failed.append(rel_path)

    destination_root.mkdir(parents=True, exist_ok=True)

    for root_str, dirs, files in os.walk(source_root, onerror=_on_walk_error):
        root = Path(root_str)
        root_rel = root.relative_to(source_root)

        if excluder:
            dirs[:] = [name for name in dirs if not excluder.is_excluded((root_rel / name).as_posix(), is_dir=True)]
        for dir_name in dirs:
            if (root / dir_name).is_symlink():
                continue
            (destination_root / root_rel / dir_name).mkdir(parents=True, exist_ok=True)

        for file_name in files:
            rel_path = (root_rel / file_name).as_posix()
            if excluder and excluder.is_excluded(rel_path):
                continue

            source_file = root / file_name
            try:
                info = source_file.lstat()
            except OSError as exc:
                log.warning("Cannot stat %s: %s", source_file, exc)
                stats.failed.append(rel_path)
                continue
            if not stat.S_ISREG(info.st_mode):
                continue

            stats.current_file = rel_path
            _report(progress_fn, stats)
            bytes_before = stats.bytes_copied
            try:
                copy_file(source_file, destination_root / rel_path, info.st_size, stats, progress_fn)
            except OSError as exc:
                log.warning("Failed to copy %s: %s", rel_path, exc)
                stats.failed.append(rel_path)
                stats.partial_bytes += stats.bytes_copied - bytes_before
                continue
            stats.copied_files += 1

    return stats


def validate_copy(source_root: Path, destination_root: Path) -> None:
    source_totals = scan_tree(source_root)
    destination_totals = scan_tree(destination_root)

    if source_totals.files != destination_totals.files:
        raise CopyValidationError(
            f"File count mismatch: source={source_totals.files}, destination={destination_totals.files}"
        )
    if source_totals.bytes != destination_totals.bytes:
        raise CopyValidationError(
            f"Size mismatch: source={source_totals.bytes} bytes, destination={destination_totals.bytes} bytes"
        )


def print_progress(bytes_copied: int, total_bytes: int, current_file: str) -> None:
    percentage = bytes_copied / total_bytes * 100 if total_bytes else 100.0
    sys.stderr.write(f"\rCopying: {percentage:.1f}% ({format_size_human(bytes_copied)}) - {current_file}")
    sys.stderr.flush()
