from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import tempfile
from typing import Sequence

from winstick.command_runner import CommandError, CommandRunner
from winstick.models import MountHandle


PROC_MOUNTS = Path("/proc/mounts")

# Windows 10/11 images are UDF; older ones only carry ISO9660.
IMAGE_FILESYSTEMS = ("udf", "iso9660")

_FSTYPE_ALIASES = {
    "fat": "vfat",
    "fat32": "vfat",
    "vfat": "vfat",
    "ntfs": "ntfs3",
    "ntfs-3g": "ntfs3",
}

log = logging.getLogger("winstick.mount")


class MountError(RuntimeError):
    pass


@dataclass(slots=True)
class MountEntry:
    device: str
    mountpoint: str
    filesystem: str
    options: str


def _decode_mount_field(value: str) -> str:
    # /proc/mounts escapes whitespace and backslashes as octal.
    return (
        value.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


def normalize_fstype(fstype: str) -> str:
    return _FSTYPE_ALIASES.get(fstype.lower(), fstype.lower())


class MountManager:
    def __init__(self, runner: CommandRunner, mounts_table: Path = PROC_MOUNTS) -> None:
        self.runner = runner
        self.mounts_table = mounts_table

    def mounted_filesystems(self) -> list[MountEntry]:
        try:
            text = self.mounts_table.read_text(encoding="utf-8")
        except OSError as exc:
            raise MountError(f"Failed to read {self.mounts_table}: {exc}") from exc

        entries: list[MountEntry] = []
        for line in text.splitlines():
            fields = line.split()
            if len(fields) < 4:
                continue
            entries.append(
                MountEntry(
                    device=_decode_mount_field(fields[0]),
                    mountpoint=_decode_mount_field(fields[1]),
                    filesystem=fields[2],
                    options=fields[3],
                )
            )
        return entries

    def mountpoints_for(self, path: str | Path) -> list[str]:
        target = str(path)
        return [
            entry.mountpoint
            for entry in self.mounted_filesystems()
            if entry.device == target or entry.mountpoint == target or entry.device.startswith(target)
        ]

    def is_mounted(self, path: str | Path) -> bool:
        return bool(self.mountpoints_for(path))

    def mount(self, source: str | Path, mountpoint: Path, fstype: str, options: Sequence[str] = ()) -> None:
        args = ["-t", fstype]
        if options:
            args.extend(["-o", ",".join(options)])
        args.extend([str(source), str(mountpoint)])
        self.runner.run("mount", args)

    def unmount(self, mountpoint: str | Path) -> None:
        try:
            self.runner.run("umount", [str(mountpoint)])
            return
        except CommandError as exc:
            log.warning("Unmount of %s failed (%s), retrying lazily", mountpoint, exc)

        try:
            self.runner.run("umount", ["-l", str(mountpoint)])
        except CommandError as exc:
            raise MountError(f"Failed to unmount {mountpoint}: {exc}") from exc

    def acquire(
        self,
        source: str | Path,
        filesystems: Sequence[str],
        options: Sequence[str] = (),
        prefix: str = "winstick-",
    ) -> MountHandle:
        """Mount ``source`` on a fresh temporary directory.

        Each filesystem type in ``filesystems`` is tried in order. The
        directory is removed again when none of them works.
        """
        if not filesystems:
            raise ValueError("At least one filesystem type is required")

        try:
            mountpoint = Path(tempfile.mkdtemp(prefix=prefix))
        except OSError as exc:
            raise MountError(f"Failed to create temp mountpoint: {exc}") from exc

        last_error: CommandError | None = None
        for fstype in filesystems:
            try:
                self.mount(source, mountpoint, fstype, options)
            except CommandError as exc:
                log.debug("Mounting %s as %s failed: %s", source, fstype, exc)
                last_error = exc
                continue
            log.info("Mounted %s at %s (%s)", source, mountpoint, fstype)
            return MountHandle(source=Path(source), mountpoint=mountpoint, fstype=fstype)

        try:
            mountpoint.rmdir()
        except OSError as exc:
            log.warning("Failed to remove mountpoint %s: %s", mountpoint, exc)
        raise MountError(f"Failed to mount {source}: {last_error}")

    def mount_image(self, image_path: str | Path) -> MountHandle:
        return self.acquire(image_path, IMAGE_FILESYSTEMS, options=("ro", "loop"), prefix="winstick-iso-")

    def mount_device(self, device_path: str | Path, fstype: str) -> MountHandle:
        return self.acquire(device_path, (normalize_fstype(fstype),), prefix="winstick-dev-")

    def release(self, handle: MountHandle) -> None:
        """Unmount ``handle`` and remove its mountpoint directory.

        A mountpoint that is no longer in the mount table is not unmounted
        again; when the table cannot be read the unmount is attempted anyway.
        A directory that is already gone is not an error. The directory is
        removed with rmdir even when unmounting failed.
        """
        errors: list[str] = []
        mountpoint = handle.mountpoint

        try:
            mounted = self.is_mounted(mountpoint)
        except MountError as exc:
            log.warning("%s, unmounting %s anyway", exc, mountpoint)
            mounted = True

        if mounted:
            try:
                self.unmount(mountpoint)
            except MountError as exc:
                errors.append(str(exc))

        try:
            os.rmdir(mountpoint)
        except FileNotFoundError:
            pass
        except OSError as exc:
            errors.append(f"Failed to remove mountpoint {mountpoint}: {exc}")

        if errors:
            raise MountError("; ".join(errors))
        log.debug("Released %s", mountpoint)

    def ensure_not_busy(self, device_path: str | Path) -> None:
        for mountpoint in self.mountpoints_for(device_path):
            log.info("Unmounting %s (in use by %s)", mountpoint, device_path)
            try:
                self.unmount(mountpoint)
            except MountError as exc:
                raise MountError(
                    f"Device {device_path} is busy (mounted at {mountpoint}) and cannot be unmounted: {exc}"
                ) from exc
