from __future__ import annotations

import logging
from pathlib import Path
import shutil

from winstick.command_runner import CommandError, CommandRunner


WIM_BOOTLOADER_ENTRY = "1/Windows/Boot/EFI/bootmgfw.efi"

GRUB_CONFIG = """# GRUB configuration for Windows USB
# Generated by winstick

set timeout=10
set default=0

menuentry "Windows" {
    insmod part_msdos
    insmod ntfs
    insmod search_fs_uuid
    insmod chain
    search --fs-uuid --set=root --hint-bios=hd0,msdos1 --hint-efi=hd0,msdos1 --hint-baremetal=ahci0,msdos1
    chainloader +1
}

menuentry "Windows (fallback)" {
    insmod part_msdos
    insmod fat
    insmod search_fs_uuid
    insmod chain
    search --fs-uuid --set=root --hint-bios=hd0,msdos1 --hint-efi=hd0,msdos1 --hint-baremetal=ahci0,msdos1
    chainloader +1
}
"""

log = logging.getLogger("winstick.bootloader")


class BootloaderError(RuntimeError):
    pass


def is_windows7(source_root: Path) -> bool:
    cversion = Path(source_root) / "sources" / "cversion.ini"
    try:
        text = cversion.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise BootloaderError(f"Failed to read {cversion}: {exc}") from exc

    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("MinServer="):
            return stripped[len("MinServer="):].startswith("7")
    return False


def extract_bootloader(
    runner: CommandRunner,
    source_root: Path,
    destination_root: Path,
    staging_dir: Path,
) -> Path:
    sources_dir = Path(source_root) / "sources"
    for candidate in ("install.wim", "install.esd"):
        install_file = sources_dir / candidate
        if install_file.exists():
            break
    else:
        raise BootloaderError("Neither install.wim nor install.esd found in sources directory")

    efi_boot_dir = Path(destination_root) / "efi" / "boot"
    efi_boot_dir.mkdir(parents=True, exist_ok=True)

    try:
        runner.run("7z", ["e", "-y", f"-o{staging_dir}", str(install_file), WIM_BOOTLOADER_ENTRY])
    except CommandError as exc:
        raise BootloaderError(f"Failed to extract bootmgfw.efi with 7z: {exc}") from exc

    extracted = Path(staging_dir) / "bootmgfw.efi"
    if not extracted.is_file() or extracted.stat().st_size == 0:
        raise BootloaderError(f"7z did not produce {extracted.name} from {install_file}")

    bootloader_path = efi_boot_dir / "bootx64.efi"
    shutil.copyfile(extracted, bootloader_path)
    return bootloader_path


def apply_windows7_uefi_workaround(
    runner: CommandRunner,
    source_root: Path,
    destination_root: Path,
    staging_dir: Path,
) -> bool:
    """Windows 7 media lack an EFI loader at efi/boot; pull it out of the install image."""
    if not is_windows7(source_root):
        return False
    log.info("Windows 7 detected, extracting UEFI bootloader")
    extract_bootloader(runner, source_root, destination_root, staging_dir)
    return True


def grub_prefix(grub_cmd: str) -> str:
    return "grub2" if "grub2" in grub_cmd else "grub"


def write_grub_config(mountpoint: Path, prefix: str) -> Path:
    boot_dir = Path(mountpoint) / "boot" / prefix
    boot_dir.mkdir(parents=True, exist_ok=True)
    config_path = boot_dir / "grub.cfg"
    config_path.write_text(GRUB_CONFIG, encoding="utf-8")
    return config_path


def install_grub(runner: CommandRunner, mountpoint: Path, device: str, grub_cmd: str) -> Path:
    args = [
        "--target=i386-pc",
        f"--boot-directory={Path(mountpoint) / 'boot'}",
        "--force",
        device,
    ]
    try:
        runner.run(grub_cmd, args)
    except CommandError as exc:
        raise BootloaderError(f"Failed to install GRUB with {grub_cmd}: {exc}") from exc
    return write_grub_config(mountpoint, grub_prefix(grub_cmd))
