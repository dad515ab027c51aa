from __future__ import annotations

import logging
import time
from typing import Callable

from winstick.command_runner import CommandError, CommandRunner


REREAD_SETTLE_SECONDS = 3.0

log = logging.getLogger("winstick.partition")


class PartitionError(RuntimeError):
    pass


def partition_path(device: str, number: int = 1) -> str:
    if "nvme" in device or "mmcblk" in device:
        return f"{device}p{number}"
    return f"{device}{number}"


def wipe(runner: CommandRunner, device: str) -> None:
    try:
        runner.run("wipefs", ["--all", device])
    except CommandError as exc:
        raise PartitionError(f"Failed to wipe device {device}: {exc}") from exc

    try:
        output = runner.run("lsblk", ["-n", "-o", "TYPE", device]).decode("utf-8", errors="replace")
    except CommandError:
        # lsblk may not see a freshly wiped device yet.
        return
    if any(line.strip() == "part" for line in output.splitlines()):
        raise PartitionError(f"Partitions still exist on device {device}")


def create_mbr_table(runner: CommandRunner, device: str) -> None:
    try:
        runner.run("parted", ["-s", device, "mklabel", "msdos"])
    except CommandError as exc:
        raise PartitionError(f"Failed to create MBR table on {device}: {exc}") from exc


def create_partition(runner: CommandRunner, device: str, filesystem: str) -> None:
    upper = filesystem.upper()
    if upper in {"FAT", "FAT32"}:
        end = "100%"
    elif upper == "NTFS":
        end = "-512KiB"
    else:
        raise PartitionError(f"Unsupported filesystem type: {filesystem}")

    try:
        runner.run("parted", ["-s", device, "mkpart", "primary", "1MiB", end])
    except CommandError as exc:
        raise PartitionError(f"Failed to create partition on {device}: {exc}") from exc


def reread_partition_table(
    runner: CommandRunner,
    device: str,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    try:
        runner.run("blockdev", ["--rereadpt", device])
    except CommandError as exc:
        raise PartitionError(f"Failed to re-read partition table for {device}: {exc}") from exc
    sleep(REREAD_SETTLE_SECONDS)


def create_bootable_partition(
    runner: CommandRunner,
    device: str,
    filesystem: str,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    log.info("Wiping %s and creating a %s partition", device, filesystem)
    wipe(runner, device)
    create_mbr_table(runner, device)
    create_partition(runner, device, filesystem)
    reread_partition_table(runner, device, sleep=sleep)
    return partition_path(device)


def set_boot_flag(runner: CommandRunner, device: str, number: int = 1) -> None:
    try:
        runner.run("parted", ["-s", device, "set", str(number), "boot", "on"])
    except CommandError as exc:
        raise PartitionError(f"Failed to set boot flag on {device} partition {number}: {exc}") from exc


def _set_fat_label(runner: CommandRunner, partition: str, label: str) -> None:
    try:
        runner.run("fatlabel", [partition, label])
    except CommandError:
        try:
            runner.run("dosfslabel", [partition, label])
        except CommandError as exc:
            raise PartitionError(f"Failed to set FAT32 label on {partition}: {exc}") from exc


def format_partition(
    runner: CommandRunner,
    partition: str,
    filesystem: str,
    label: str = "",
    fat_cmd: str = "mkdosfs",
) -> None:
    upper = filesystem.upper()
    log.info("Formatting %s as %s", partition, upper)

    if upper in {"FAT", "FAT32"}:
        try:
            runner.run(fat_cmd, ["-F", "32", partition])
        except CommandError as exc:
            raise PartitionError(f"Failed to format {partition} as FAT32: {exc}") from exc
        if label:
            # FAT labels are at most 11 characters.
            _set_fat_label(runner, partition, label[:11])
        return

    if upper == "NTFS":
        args = ["--quick"]
        if label:
            args.extend(["--label", label])
        args.append(partition)
        try:
            runner.run("mkntfs", args)
        except CommandError as exc:
            raise PartitionError(f"Failed to format {partition} as NTFS: {exc}") from exc
        return

    raise PartitionError(f"Unsupported filesystem type: {filesystem}")
