from pathlib import Path
import os

import pytest

from winstick.exclude_engine import ExcludeEngine
from winstick.scan_engine import (
    FAT32_MAX_FILE_SIZE,
    find_oversized_files,
    format_size_human,
    is_splittable_archive,
    largest_file,
    scan_tree,
    suggest_filesystem,
    validate_filesystem_choice,
)


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _sparse(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        handle.truncate(size)


def test_scan_tree_counts_regular_files_and_bytes(tmp_path: Path) -> None:
    _write(tmp_path / "a.txt", "hello")
    _write(tmp_path / "b.txt", "world!")

    totals = scan_tree(tmp_path)

    assert totals.files == 2
    assert totals.bytes == 11
    assert totals.skipped == 0


def test_scan_tree_walks_nested_directories_and_ignores_symlinks(tmp_path: Path) -> None:
    _write(tmp_path / "boot" / "bcd", "12345678")
    _write(tmp_path / "sources" / "deep" / "setup.exe", "abc")
    (tmp_path / "empty").mkdir()
    (tmp_path / "link.txt").symlink_to(tmp_path / "boot" / "bcd")

    totals = scan_tree(tmp_path)

    assert totals.files == 2
    assert totals.bytes == 11


def test_scan_tree_exclusion_subtracts_exactly_the_excluded_files(tmp_path: Path) -> None:
    _write(tmp_path / "a.txt", "aaaa")
    _write(tmp_path / "sources" / "install.wim", "wimwimwim")
    _write(tmp_path / "sources" / "boot.wim", "bb")

    full = scan_tree(tmp_path)
    excluded = scan_tree(tmp_path, ["sources/install.wim", "missing/file.txt"])

    assert excluded.files == full.files - 1
    assert excluded.bytes == full.bytes - 9


def test_scan_tree_accepts_exclude_engine_patterns(tmp_path: Path) -> None:
    _write(tmp_path / "support" / "logging" / "a.log", "xx")
    _write(tmp_path / "setup.exe", "yyy")

    totals = scan_tree(tmp_path, ExcludeEngine(patterns=["support/"]))

    assert totals.files == 1
    assert totals.bytes == 3


def test_scan_tree_skips_unreadable_file_and_totals_the_rest(tmp_path: Path, monkeypatch) -> None:
    _write(tmp_path / "setup.exe", "abc")
    _write(tmp_path / "sources" / "locked.bin", "secret")
    _write(tmp_path / "sources" / "boot.wim", "wim")
    real_lstat = Path.lstat

    def lstat(self):
        if self.name == "locked.bin":
            raise PermissionError(13, "Permission denied", str(self))
        return real_lstat(self)

    monkeypatch.setattr(Path, "lstat", lstat)

    totals = scan_tree(tmp_path)

    assert totals.skipped == 1
    assert totals.files == 2
    assert totals.bytes == 6


def test_scan_tree_counts_unreadable_directory_as_skipped(tmp_path: Path, monkeypatch) -> None:
    _write(tmp_path / "setup.exe", "abc")
    real_walk = os.walk

    def walk(top, onerror=None, **kwargs):
        if onerror is not None:
            onerror(PermissionError(13, "Permission denied", str(tmp_path / "private")))
        yield from real_walk(top, onerror=onerror, **kwargs)

    monkeypatch.setattr(os, "walk", walk)

    totals = scan_tree(tmp_path)

    assert totals.skipped == 1
    assert totals.files == 1
    assert totals.bytes == 3


def test_scan_tree_missing_root_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        scan_tree(tmp_path / "missing")


def test_find_oversized_files_boundary(tmp_path: Path) -> None:
    _sparse(tmp_path / "at-limit.bin", FAT32_MAX_FILE_SIZE)
    _sparse(tmp_path / "over-limit.bin", FAT32_MAX_FILE_SIZE + 1)

    oversized = find_oversized_files(tmp_path)

    assert [(item.rel_path, item.size) for item in oversized] == [("over-limit.bin", FAT32_MAX_FILE_SIZE + 1)]


def test_find_oversized_files_reports_big_file_and_human_size(tmp_path: Path) -> None:
    _write(tmp_path / "small.txt", "hello")
    _sparse(tmp_path / "big.bin", 4294967296)

    oversized = find_oversized_files(tmp_path)

    assert len(oversized) == 1
    assert oversized[0].rel_path == "big.bin"
    assert oversized[0].size == 4294967296
    assert format_size_human(oversized[0].size) == "4.0 GB"


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (1023, "1023 B"), (1024, "1.0 KB"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5.0 MB")],
)
def test_format_size_human(size: int, expected: str) -> None:
    assert format_size_human(size) == expected


def test_is_splittable_archive_is_case_insensitive() -> None:
    assert is_splittable_archive("sources/install.wim")
    assert is_splittable_archive("SOURCES/INSTALL.WIM")
    assert not is_splittable_archive("sources/install.esd")
    assert not is_splittable_archive("big.iso")


def test_largest_file_and_suggest_filesystem(tmp_path: Path) -> None:
    _write(tmp_path / "small.txt", "x")
    _sparse(tmp_path / "sources" / "install.wim", FAT32_MAX_FILE_SIZE + 10)

    assert largest_file(tmp_path) == (FAT32_MAX_FILE_SIZE + 10, "sources/install.wim")

    suggested, reason = suggest_filesystem(tmp_path)
    assert suggested == "NTFS"
    assert "sources/install.wim" in reason


def test_suggest_filesystem_fat_when_everything_fits(tmp_path: Path) -> None:
    _write(tmp_path / "setup.exe", "x")

    assert suggest_filesystem(tmp_path) == ("FAT32", "All files are within FAT32 limits")


def test_validate_filesystem_choice_allows_wim_and_rejects_others(tmp_path: Path) -> None:
    _sparse(tmp_path / "sources" / "install.wim", FAT32_MAX_FILE_SIZE + 1)

    splittable = validate_filesystem_choice(tmp_path, "FAT")
    assert [item.rel_path for item in splittable] == ["sources/install.wim"]

    _sparse(tmp_path / "sources" / "install.esd", FAT32_MAX_FILE_SIZE + 1)
    with pytest.raises(ValueError, match="install.esd"):
        validate_filesystem_choice(tmp_path, "FAT32")

    assert validate_filesystem_choice(tmp_path, "NTFS") == []
