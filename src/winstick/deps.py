from __future__ import annotations

from dataclasses import dataclass, field
import shutil
from typing import Callable


REQUIRED_TOOLS = ("wipefs", "parted", "lsblk", "blockdev", "mount", "umount", "7z", "wimlib-imagex")
FAT_FORMATTERS = ("mkdosfs", "mkfs.vfat", "mkfs.fat")
GRUB_INSTALLERS = ("grub-install", "grub2-install")


class MissingDependencyError(RuntimeError):
    pass


@dataclass(slots=True)
class Dependencies:
    tools: dict[str, str] = field(default_factory=dict)
    fat_formatter: str | None = None
    ntfs_formatter: str | None = None
    grub_cmd: str | None = None
    missing_required: list[str] = field(default_factory=list)
    missing_optional: list[str] = field(default_factory=list)


def _first_found(candidates: tuple[str, ...], which: Callable[[str], str | None]) -> str | None:
    for candidate in candidates:
        path = which(candidate)
        if path:
            return path
    return None


def find_dependencies(which: Callable[[str], str | None] = shutil.which) -> Dependencies:
    deps = Dependencies()
    for tool in REQUIRED_TOOLS:
        path = which(tool)
        if path:
            deps.tools[tool] = path
        else:
            deps.missing_required.append(tool)

    deps.fat_formatter = _first_found(FAT_FORMATTERS, which)
    if deps.fat_formatter is None:
        deps.missing_required.append(FAT_FORMATTERS[0])

    deps.ntfs_formatter = which("mkntfs")
    if deps.ntfs_formatter is None:
        deps.missing_optional.append("mkntfs")

    deps.grub_cmd = _first_found(GRUB_INSTALLERS, which)
    if deps.grub_cmd is None:
        deps.missing_optional.append(GRUB_INSTALLERS[0])

    return deps


def check_dependencies(which: Callable[[str], str | None] = shutil.which) -> Dependencies:
    deps = find_dependencies(which)
    if deps.missing_required:
        raise MissingDependencyError(f"Missing required dependencies: {', '.join(deps.missing_required)}")
    return deps
