from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import json
import yaml


DEFAULT_LABEL = "Windows USB"

MODES = ("device", "partition")
FILESYSTEMS = ("FAT", "NTFS")


@dataclass(slots=True)
class ProfileConfig:
    filesystem: str = "FAT"
    label: str = DEFAULT_LABEL
    skip_grub: bool = False
    set_boot_flag: bool = False
    verbose: bool = False
    log_file: Path | None = None
    additional_excludes: list[str] = field(default_factory=list)


@dataclass(slots=True)
class RunConfig:
    source: Path
    target: Path
    mode: str
    filesystem: str = "FAT"
    label: str = DEFAULT_LABEL
    skip_grub: bool = False
    set_boot_flag: bool = False
    verbose: bool = False
    log_file: Path | None = None
    additional_excludes: list[str] = field(default_factory=list)


def _as_path(value: Any, field_name: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string path")
    return Path(value).expanduser()


def _as_bool(value: Any, field_name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ValueError(f"{field_name} must be a boolean")


def _as_list_of_strings(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or any(not isinstance(item, str) for item in value):
        raise ValueError(f"{field_name} must be a list of strings")
    return [item for item in value if item.strip()]


def normalize_filesystem(value: Any, field_name: str = "filesystem") -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be one of: FAT, NTFS")
    upper = value.strip().upper()
    if upper == "FAT32":
        upper = "FAT"
    if upper not in FILESYSTEMS:
        raise ValueError(f"{field_name} must be one of: FAT, NTFS")
    return upper


def _load_raw_profile(profile_path: Path) -> dict[str, Any]:
    if not profile_path.exists():
        raise ValueError(f"Profile file does not exist: {profile_path}")

    suffix = profile_path.suffix.lower()
    text = profile_path.read_text(encoding="utf-8")
    if suffix in {".yml", ".yaml"}:
        loaded = yaml.safe_load(text)
    elif suffix == ".json":
        loaded = json.loads(text)
    else:
        raise ValueError("Profile file must be .yaml/.yml or .json")

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError("Profile root must be an object")
    return loaded


def load_profile(profile_path: Path) -> ProfileConfig:
    raw = _load_raw_profile(profile_path)

    label = raw.get("label", DEFAULT_LABEL)
    if not isinstance(label, str):
        raise ValueError("label must be a string")

    raw_log_file = raw.get("logFile")
    log_file = _as_path(raw_log_file, "logFile") if raw_log_file is not None else None

    return ProfileConfig(
        filesystem=normalize_filesystem(raw.get("filesystem", "FAT")),
        label=label,
        skip_grub=_as_bool(raw.get("skipGrub"), "skipGrub", default=False),
        set_boot_flag=_as_bool(raw.get("setBootFlag"), "setBootFlag", default=False),
        verbose=_as_bool(raw.get("verbose"), "verbose", default=False),
        log_file=log_file,
        additional_excludes=_as_list_of_strings(raw.get("additionalExcludes"), "additionalExcludes"),
    )


def build_run_config(
    source: Path,
    target: Path,
    mode: str,
    profile: ProfileConfig | None = None,
    filesystem: str | None = None,
    label: str | None = None,
    skip_grub: bool | None = None,
    set_boot_flag: bool | None = None,
    verbose: bool | None = None,
    log_file: Path | None = None,
) -> RunConfig:
    """Merge command line values over profile defaults; ``None`` means not given."""
    if mode not in MODES:
        raise ValueError(f"Invalid mode: {mode} (must be 'device' or 'partition')")

    base = profile or ProfileConfig()
    return RunConfig(
        source=source,
        target=target,
        mode=mode,
        filesystem=normalize_filesystem(filesystem) if filesystem is not None else base.filesystem,
        label=label if label is not None else base.label,
        skip_grub=base.skip_grub if skip_grub is None else skip_grub,
        set_boot_flag=base.set_boot_flag if set_boot_flag is None else set_boot_flag,
        verbose=base.verbose if verbose is None else verbose,
        log_file=log_file if log_file is not None else base.log_file,
        additional_excludes=list(base.additional_excludes),
    )
