from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import shutil
import threading
import time
from typing import Callable

from winstick.bootloader import BootloaderError, apply_windows7_uefi_workaround, install_grub
from winstick.command_runner import CommandError, CommandRunner, SubprocessRunner
from winstick.config import RunConfig
from winstick.copy_engine import ProgressFunc, copy_tree
from winstick.deps import Dependencies, MissingDependencyError, check_dependencies
from winstick.exclude_engine import ExcludeEngine
from winstick.models import CopyStatistics
from winstick.mount_lifecycle import MountError, MountManager
from winstick.partition import PartitionError, create_bootable_partition, format_partition, set_boot_flag
from winstick.scan_engine import find_oversized_files, suggest_filesystem, unsplittable_files, validate_filesystem_choice
from winstick.session import CleanupError, Session
from winstick.split_pipeline import ArchiveSplitError, OversizedFileError, copy_with_archive_split
from winstick.validation import validate_source, validate_target


EXIT_SUCCESS = 0
EXIT_RUNTIME_ERROR = 1
EXIT_PARTIAL_FAILURES = 2
EXIT_INVALID_CONFIG = 3

RUN_ERRORS = (
    ArchiveSplitError,
    BootloaderError,
    CleanupError,
    CommandError,
    MissingDependencyError,
    MountError,
    OSError,
    OversizedFileError,
    PartitionError,
    ValueError,
)


@dataclass(slots=True)
class RunSummary:
    filesystem: str = ""
    copied_files: int = 0
    copied_bytes: int = 0
    failed: list[str] = field(default_factory=list)
    split_archives: list[str] = field(default_factory=list)
    partial_failures: bool = False

    def absorb(self, stats: CopyStatistics) -> None:
        self.copied_files += stats.copied_files
        self.copied_bytes += stats.bytes_copied - stats.partial_bytes
        self.failed.extend(stats.failed)
        if stats.failed:
            self.partial_failures = True


def check_prerequisites(
    config: RunConfig,
    mounts: MountManager,
    which: Callable[[str], str | None] = shutil.which,
) -> Dependencies:
    deps = check_dependencies(which)
    validate_source(config.source)
    validate_target(config.target, config.mode)
    mounts.ensure_not_busy(config.target)
    return deps


def _choose_filesystem(config: RunConfig, source_root: Path, log: logging.Logger) -> str:
    filesystem = config.filesystem
    if filesystem != "FAT":
        return filesystem

    blocking = unsplittable_files(find_oversized_files(source_root))
    if not blocking:
        return filesystem

    if config.mode == "device":
        _, reason = suggest_filesystem(source_root)
        log.warning("%s", reason)
        log.warning("Switching to NTFS filesystem")
        return "NTFS"

    validate_filesystem_choice(source_root, filesystem)
    return filesystem


def write_installer(
    session: Session,
    runner: CommandRunner,
    deps: Dependencies,
    progress_fn: ProgressFunc | None = None,
    logger: logging.Logger | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunSummary:
    """Partition, format, copy and make the target bootable.

    Every mount and temp directory acquired here is registered on
    ``session``; the caller owns cleanup.
    """
    log = logger or logging.getLogger("winstick.run")
    config = session.config
    target = str(config.target)
    summary = RunSummary()

    log.info("Starting %s mode: %s -> %s", config.mode, config.source, config.target)
    source_root = session.mount_source().mountpoint

    filesystem = _choose_filesystem(config, source_root, log)
    summary.filesystem = filesystem
    if filesystem == "NTFS" and deps.ntfs_formatter is None:
        raise MissingDependencyError("mkntfs is required to create an NTFS target")

    if config.mode == "device":
        target_partition = create_bootable_partition(runner, target, filesystem, sleep=sleep)
    else:
        target_partition = target
    format_partition(runner, target_partition, filesystem, config.label, fat_cmd=deps.fat_formatter or "mkdosfs")

    destination_root = session.mount_target(target_partition, filesystem).mountpoint
    excluder = ExcludeEngine(patterns=config.additional_excludes)

    if filesystem == "FAT":
        summary.split_archives = [item.rel_path for item in find_oversized_files(source_root)]
        stats = copy_with_archive_split(source_root, destination_root, runner, progress_fn, exclude=excluder)
    else:
        stats = copy_tree(source_root, destination_root, exclude=excluder, progress_fn=progress_fn)
    summary.absorb(stats)
    for rel_path in stats.failed:
        log.warning("Not copied: %s", rel_path)

    apply_windows7_uefi_workaround(runner, source_root, destination_root, session.create_temp_dir())

    if config.mode == "device":
        if config.skip_grub:
            log.info("Skipping GRUB installation")
        elif deps.grub_cmd is None:
            log.warning("grub-install not found, skipping legacy BIOS bootloader")
        else:
            install_grub(runner, destination_root, target, deps.grub_cmd)

        if config.set_boot_flag:
            set_boot_flag(runner, target)

    return summary


def create_installer(
    config: RunConfig,
    runner: CommandRunner | None = None,
    mounts: MountManager | None = None,
    progress_fn: ProgressFunc | None = None,
    logger: logging.Logger | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> tuple[int, RunSummary]:
    log = logger or logging.getLogger("winstick.run")
    runner = runner or SubprocessRunner()
    mounts = mounts or MountManager(runner)

    try:
        deps = check_prerequisites(config, mounts, which)
    except (MissingDependencyError, MountError, ValueError) as exc:
        log.error("%s", exc)
        return EXIT_INVALID_CONFIG, RunSummary(partial_failures=True)

    session = Session(config, mounts)
    in_main_thread = threading.current_thread() is threading.main_thread()
    if in_main_thread:
        session.install_signal_handlers()

    summary = RunSummary()
    try:
        with session:
            summary = write_installer(session, runner, deps, progress_fn=progress_fn, logger=log)
    except RUN_ERRORS as exc:
        log.error("%s mode failed: %s", config.mode.capitalize(), exc)
        summary.partial_failures = True
        return EXIT_RUNTIME_ERROR, summary
    finally:
        if in_main_thread:
            session.restore_signal_handlers()

    if summary.partial_failures:
        log.warning("Completed with %s file(s) not copied", len(summary.failed))
        return EXIT_PARTIAL_FAILURES, summary

    log.info("Bootable USB created on %s (%s)", config.target, summary.filesystem)
    return EXIT_SUCCESS, summary
