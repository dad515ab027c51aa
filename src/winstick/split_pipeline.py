from __future__ import annotations

import logging
import math
from pathlib import Path
import re

from winstick.command_runner import CommandError, CommandRunner
from winstick.copy_engine import ProgressFunc, copy_tree
from winstick.exclude_engine import ExcludeEngine
from winstick.models import CopyStatistics, OversizedFile
from winstick.scan_engine import find_oversized_files, format_size_human, scan_tree, unsplittable_files


# Part size handed to wimlib-imagex, kept under the FAT32 limit.
SPLIT_WIM_MAX_SIZE_MB = 3800

# Share of the reported range used by the bulk copy; splitting gets the rest.
COPY_PHASE_SHARE = 0.85

log = logging.getLogger("winstick.split")


class OversizedFileError(ValueError):
    def __init__(self, oversized: OversizedFile) -> None:
        self.oversized = oversized
        super().__init__(
            f"File '{oversized.rel_path}' ({oversized.size / (1024 ** 3):.1f} GB) exceeds FAT32 4GB limit "
            "and is not a WIM file - cannot proceed with FAT32"
        )


class ArchiveSplitError(RuntimeError):
    pass


def _split_parts(output_dir: Path, stem: str) -> list[Path]:
    if not output_dir.is_dir():
        return []
    # <stem>.swm, <stem>2.swm, ... and nothing else sharing the prefix.
    part_name = re.compile(rf"{re.escape(stem)}\d*", re.IGNORECASE)
    return [
        path
        for path in output_dir.iterdir()
        if path.suffix.lower() == ".swm" and part_name.fullmatch(path.stem)
    ]


def split_wim(
    runner: CommandRunner,
    wim_path: Path,
    output_dir: Path,
    max_part_mb: int = SPLIT_WIM_MAX_SIZE_MB,
) -> None:
    """Split ``wim_path`` into ``<stem>.swm``, ``<stem>2.swm``, ... inside ``output_dir``.

    Parts left by an earlier run are removed first, and every part is
    removed again when the splitter fails, so a failed run never leaves a
    half-split image that looks complete.
    """
    wim_path = Path(wim_path)
    output_dir = Path(output_dir)
    output_pattern = output_dir / f"{wim_path.stem}.swm"

    for stale in _split_parts(output_dir, wim_path.stem):
        log.debug("Removing stale split output %s", stale)
        stale.unlink(missing_ok=True)

    try:
        runner.run("wimlib-imagex", ["split", str(wim_path), str(output_pattern), str(max_part_mb)])
    except CommandError:
        for part in _split_parts(output_dir, wim_path.stem):
            log.debug("Removing partial split output %s", part)
            part.unlink(missing_ok=True)
        raise


class _ScaledProgress:
    def __init__(self, progress_fn: ProgressFunc | None, copy_total: int, split_steps: int) -> None:
        self._progress_fn = progress_fn
        self._split_steps = split_steps
        if not split_steps:
            # Nothing to split: the copy alone fills the range.
            self.overall_total = copy_total
            self._copy_span = copy_total
        elif copy_total:
            self.overall_total = max(1, math.ceil(copy_total / COPY_PHASE_SHARE))
            self._copy_span = copy_total
        else:
            self.overall_total = 100
            self._copy_span = 0

    def on_copy(self, bytes_copied: int, _total_bytes: int, current_file: str) -> None:
        if self._progress_fn is not None:
            self._progress_fn(bytes_copied, self.overall_total, current_file)

    def on_split(self, completed: int, current_file: str) -> None:
        if self._progress_fn is None or not self._split_steps:
            return
        remaining = self.overall_total - self._copy_span
        done = self._copy_span + remaining * completed // self._split_steps
        self._progress_fn(done, self.overall_total, current_file)


def copy_with_archive_split(
    source_root: Path,
    destination_root: Path,
    runner: CommandRunner,
    progress_fn: ProgressFunc | None = None,
    exclude: ExcludeEngine | None = None,
    max_part_mb: int = SPLIT_WIM_MAX_SIZE_MB,
) -> CopyStatistics:
    """Copy an installer tree onto a FAT target, splitting oversized WIM images.

    When there is something to split, progress for the bulk copy is reported
    against a total inflated so that it fills the first 85% of the range and
    each finished split advances the remainder. Otherwise the copy reports
    against its own byte total.
    """
    source_root = Path(source_root)
    destination_root = Path(destination_root)

    oversized = find_oversized_files(source_root)
    blocking = unsplittable_files(oversized)
    if blocking:
        raise OversizedFileError(blocking[0])

    for item in oversized:
        log.info("Will split: %s (%s)", item.rel_path, format_size_human(item.size))

    base_exclude = exclude or ExcludeEngine()
    excluder = base_exclude.with_paths(item.rel_path for item in oversized)

    copy_total = scan_tree(source_root, excluder).bytes
    scaled = _ScaledProgress(progress_fn, copy_total, len(oversized))

    log.info("Copying files (excluding large WIM files)...")
    stats = copy_tree(source_root, destination_root, exclude=excluder, progress_fn=scaled.on_copy)

    for index, item in enumerate(oversized, start=1):
        rel_path = Path(item.rel_path)
        source_wim = source_root / rel_path
        destination_dir = destination_root / rel_path.parent
        log.info("Splitting %s...", item.rel_path)

        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArchiveSplitError(f"Failed to create directory {destination_dir}: {exc}") from exc

        try:
            split_wim(runner, source_wim, destination_dir, max_part_mb)
        except CommandError as exc:
            raise ArchiveSplitError(f"Failed to split {item.rel_path}: {exc}") from exc

        scaled.on_split(index, item.rel_path)
        log.info("Split %s into SWM files", item.rel_path)

    return stats
