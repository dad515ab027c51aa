from pathlib import Path
import os

import pytest

from winstick import copy_engine
from winstick.copy_engine import (
    CHUNK_SIZE,
    LARGE_FILE_THRESHOLD,
    CopyValidationError,
    copy_file,
    copy_tree,
    print_progress,
    validate_copy,
)
from winstick.models import CopyStatistics


def _write(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def _relative_files(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def test_copy_file_small_file_reports_once(tmp_path: Path) -> None:
    source = tmp_path / "small.bin"
    _write(source, b"x" * 1024)
    stats = CopyStatistics(total_files=1, total_bytes=1024, current_file="small.bin")
    calls: list[tuple[int, int, str]] = []

    copy_file(source, tmp_path / "copy.bin", 1024, stats, lambda *args: calls.append(args))

    assert calls == [(1024, 1024, "small.bin")]
    assert (tmp_path / "copy.bin").read_bytes() == b"x" * 1024


def test_copy_file_large_file_reports_per_chunk(tmp_path: Path) -> None:
    size = 6 * 1024 * 1024
    assert size > LARGE_FILE_THRESHOLD
    source = tmp_path / "install.esd"
    _write(source, bytes(range(256)) * (size // 256))
    stats = CopyStatistics(total_files=1, total_bytes=size, current_file="install.esd")
    done_values: list[int] = []

    copy_file(source, tmp_path / "copy.esd", size, stats, lambda done, total, name: done_values.append(done))

    assert len(done_values) == size // CHUNK_SIZE
    assert done_values == sorted(done_values)
    assert done_values[-1] == size
    assert stats.bytes_copied == size
    assert (tmp_path / "copy.esd").read_bytes() == source.read_bytes()


def test_copy_file_threshold_size_uses_chunks(tmp_path: Path) -> None:
    source = tmp_path / "edge.bin"
    _write(source, b"\0" * LARGE_FILE_THRESHOLD)
    stats = CopyStatistics(total_bytes=LARGE_FILE_THRESHOLD)
    calls: list[int] = []

    copy_file(source, tmp_path / "edge.copy", LARGE_FILE_THRESHOLD, stats, lambda done, *_: calls.append(done))

    assert len(calls) == LARGE_FILE_THRESHOLD // CHUNK_SIZE


def test_copy_file_missing_source_propagates(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        copy_file(tmp_path / "missing", tmp_path / "out", 10, CopyStatistics())


def test_copy_tree_reproduces_tree(tmp_path: Path) -> None:
    source = tmp_path / "iso"
    destination = tmp_path / "usb"
    _write(source / "setup.exe", b"MZ" * 100)
    _write(source / "boot" / "bcd", b"bcd")
    _write(source / "sources" / "boot.wim", b"w" * (LARGE_FILE_THRESHOLD + 3))
    (source / "efi" / "boot").mkdir(parents=True)

    stats = copy_tree(source, destination)

    assert stats.failed == []
    assert stats.total_files == 3
    assert stats.copied_files == 3
    assert stats.bytes_copied == stats.total_bytes
    assert _relative_files(destination) == _relative_files(source)
    assert (destination / "efi" / "boot").is_dir()
    validate_copy(source, destination)


def test_copy_tree_progress_total_is_fixed_and_monotonic(tmp_path: Path) -> None:
    source = tmp_path / "iso"
    _write(source / "a.txt", b"hello")
    _write(source / "b.txt", b"world!")
    calls: list[tuple[int, int, str]] = []

    copy_tree(source, tmp_path / "usb", progress_fn=lambda *args: calls.append(args))

    assert {total for _, total, _ in calls} == {11}
    done_values = [done for done, _, _ in calls]
    assert done_values == sorted(done_values)
    assert done_values[-1] == 11


def test_copy_tree_skips_excluded_files(tmp_path: Path) -> None:
    source = tmp_path / "iso"
    destination = tmp_path / "usb"
    _write(source / "sources" / "install.wim", b"big")
    _write(source / "sources" / "boot.wim", b"small")

    stats = copy_tree(source, destination, exclude={"sources/install.wim"})

    assert stats.total_files == 1
    assert (destination / "sources" / "boot.wim").exists()
    assert not (destination / "sources" / "install.wim").exists()


def test_copy_tree_records_failed_file_and_continues(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "iso"
    destination = tmp_path / "usb"
    _write(source / "bad.txt", b"bad")
    _write(source / "good.txt", b"good")

    real_copy_file = copy_engine.copy_file

    def flaky_copy(source_file, destination_file, size, stats, progress_fn=None):
        if source_file.name == "bad.txt":
            raise OSError("Input/output error")
        real_copy_file(source_file, destination_file, size, stats, progress_fn)

    monkeypatch.setattr(copy_engine, "copy_file", flaky_copy)

    stats = copy_tree(source, destination)

    assert stats.failed == ["bad.txt"]
    assert stats.copied_files == 1
    assert stats.total_files == 2
    assert (destination / "good.txt").read_bytes() == b"good"


def test_copy_tree_keeps_partial_bytes_apart(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "iso"
    _write(source / "bad.bin", b"bad!")
    _write(source / "good.bin", b"good")
    real_copy_file = copy_engine.copy_file

    def failing_midway(source_file, destination_file, size, stats, progress_fn=None):
        if source_file.name == "bad.bin":
            stats.bytes_copied += 2
            raise OSError("Input/output error")
        real_copy_file(source_file, destination_file, size, stats, progress_fn)

    monkeypatch.setattr(copy_engine, "copy_file", failing_midway)

    stats = copy_tree(source, tmp_path / "usb")

    assert stats.failed == ["bad.bin"]
    assert stats.bytes_copied == 6
    assert stats.partial_bytes == 2


def test_copy_tree_records_unreadable_directory_and_continues(tmp_path: Path, monkeypatch) -> None:
    source = tmp_path / "iso"
    destination = tmp_path / "usb"
    _write(source / "setup.exe", b"MZ")
    real_walk = os.walk

    def walk(top, onerror=None, **kwargs):
        if onerror is not None:
            onerror(PermissionError(13, "Permission denied", str(source / "private")))
        yield from real_walk(top, onerror=onerror, **kwargs)

    monkeypatch.setattr(os, "walk", walk)

    stats = copy_tree(source, destination)

    assert stats.failed == ["private"]
    assert stats.copied_files == 1
    assert (destination / "setup.exe").read_bytes() == b"MZ"


def test_copy_tree_directory_creation_failure_propagates(tmp_path: Path) -> None:
    source = tmp_path / "iso"
    destination = tmp_path / "usb"
    _write(source / "sources" / "setup.dll", b"dll")
    _write(destination / "sources", b"not a directory")

    with pytest.raises(OSError):
        copy_tree(source, destination)


def test_validate_copy_detects_mismatch(tmp_path: Path) -> None:
    source = tmp_path / "iso"
    destination = tmp_path / "usb"
    _write(source / "a.txt", b"abc")
    _write(destination / "a.txt", b"ab")

    with pytest.raises(CopyValidationError, match="Size mismatch"):
        validate_copy(source, destination)

    _write(destination / "extra.txt", b"")
    with pytest.raises(CopyValidationError, match="File count mismatch"):
        validate_copy(source, destination)


def test_print_progress_writes_status_line(capsys) -> None:
    print_progress(512, 1024, "sources/boot.wim")

    err = capsys.readouterr().err
    assert err.startswith("\rCopying: 50.0% (512 B) - sources/boot.wim")
