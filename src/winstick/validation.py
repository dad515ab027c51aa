from __future__ import annotations

from pathlib import Path
import re
import stat


_WHOLE_DEVICE_PATTERNS = (
    re.compile(r"^sd[a-z]$"),
    re.compile(r"^nvme[0-9]+n[0-9]+$"),
    re.compile(r"^mmcblk[0-9]+$"),
)
_PARTITION_PATTERNS = (
    re.compile(r"^sd[a-z][0-9]+$"),
    re.compile(r"^nvme[0-9]+n[0-9]+p[0-9]+$"),
    re.compile(r"^mmcblk[0-9]+p[0-9]+$"),
)
_TRAILING_DIGITS = re.compile(r"[0-9]+$")


def is_whole_device(path: str | Path) -> bool:
    base = Path(path).name
    if any(pattern.match(base) for pattern in _WHOLE_DEVICE_PATTERNS):
        return True
    if any(pattern.match(base) for pattern in _PARTITION_PATTERNS):
        return False
    return not _TRAILING_DIGITS.search(base)


def _stat(path: Path, role: str) -> int:
    try:
        return path.stat().st_mode
    except FileNotFoundError as exc:
        raise ValueError(f"{role} does not exist: {path}") from exc
    except OSError as exc:
        raise ValueError(f"Cannot access {role.lower()}: {exc}") from exc


def validate_source(path: Path) -> None:
    mode = _stat(path, "Source")
    if stat.S_ISREG(mode) or stat.S_ISBLK(mode):
        return
    raise ValueError(f"Source must be a regular file or block device: {path}")


def validate_target(path: Path, mode: str) -> None:
    file_mode = _stat(path, "Target")
    if not stat.S_ISBLK(file_mode):
        raise ValueError(f"Target must be a block device: {path}")

    if mode == "device":
        if not is_whole_device(path):
            raise ValueError(f"Device mode requires whole device (e.g., /dev/sdb), not partition: {path}")
    elif mode == "partition":
        if is_whole_device(path):
            raise ValueError(f"Partition mode requires partition (e.g., /dev/sdb1), not whole device: {path}")
    else:
        raise ValueError(f"Invalid mode: {mode} (must be 'device' or 'partition')")
