from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class ScanTotals:
    files: int = 0
    bytes: int = 0
    skipped: int = 0


@dataclass(slots=True)
class CopyStatistics:
    total_files: int = 0
    total_bytes: int = 0
    copied_files: int = 0
    bytes_copied: int = 0
    current_file: str = ""
    failed: list[str] = field(default_factory=list)
    # Bytes of failed files, already counted in bytes_copied.
    partial_bytes: int = 0


@dataclass(frozen=True, slots=True)
class OversizedFile:
    rel_path: str
    size: int


@dataclass(frozen=True, slots=True)
class MountHandle:
    source: Path
    mountpoint: Path
    fstype: str
