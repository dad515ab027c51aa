from __future__ import annotations

import argparse
from importlib import metadata
from pathlib import Path
import sys

from winstick.config import FILESYSTEMS, ProfileConfig, build_run_config, load_profile
from winstick.copy_engine import print_progress
from winstick.log_setup import configure_logging
from winstick.run_service import (
    EXIT_INVALID_CONFIG,
    EXIT_PARTIAL_FAILURES,
    EXIT_RUNTIME_ERROR,
    EXIT_SUCCESS,
    create_installer,
)
from winstick.scan_engine import (
    find_oversized_files,
    format_size_human,
    is_splittable_archive,
    scan_tree,
    suggest_filesystem,
)


def _version() -> str:
    try:
        return metadata.version("winstick")
    except metadata.PackageNotFoundError:
        return "unknown"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="winstick",
        description="Create a bootable Windows USB drive from an ISO or DVD",
    )
    parser.add_argument("-V", "--version", action="version", version=f"winstick {_version()}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    write_parser = subparsers.add_parser("write", help="Write a Windows installer to a USB device")
    mode_group = write_parser.add_mutually_exclusive_group(required=True)
    mode_group.add_argument("-d", "--device", action="store_true", help="Wipe entire device")
    mode_group.add_argument("-p", "--partition", action="store_true", help="Use existing partition")
    write_parser.add_argument("source", type=Path, help="ISO image or optical device")
    write_parser.add_argument("target", type=Path, help="Target block device or partition")
    write_parser.add_argument("--target-filesystem", choices=FILESYSTEMS, type=str.upper, default=None)
    write_parser.add_argument("-l", "--label", default=None)
    write_parser.add_argument(
        "--workaround-bios-boot-flag",
        action="store_true",
        default=None,
        help="Set boot flag for buggy BIOSes",
    )
    write_parser.add_argument(
        "--workaround-skip-grub",
        action="store_true",
        default=None,
        help="Skip GRUB installation",
    )
    write_parser.add_argument("--profile", type=Path, help="YAML or JSON file with default options")
    write_parser.add_argument("-v", "--verbose", action="store_true", default=None)
    write_parser.add_argument("--log-file", type=Path, default=None)
    write_parser.add_argument("--no-progress", action="store_true", help="Do not draw the progress line")

    inspect_parser = subparsers.add_parser("inspect", help="Report sizes and FAT32 fitness of a directory")
    inspect_parser.add_argument("directory", type=Path)

    validate_parser = subparsers.add_parser("validate-profile", help="Validate a profile file")
    validate_parser.add_argument("--profile", required=True, type=Path)

    return parser


def cmd_validate(profile_path: Path) -> int:
    try:
        profile = load_profile(profile_path)
    except Exception as exc:
        print(f"Invalid profile: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    print(f"Valid profile: {profile_path}")
    print(
        f"  filesystem={profile.filesystem} "
        f"label={profile.label!r} "
        f"skipGrub={str(profile.skip_grub).lower()} "
        f"setBootFlag={str(profile.set_boot_flag).lower()} "
        f"additionalExcludes={len(profile.additional_excludes)}"
    )
    return EXIT_SUCCESS


def cmd_inspect(directory: Path) -> int:
    try:
        totals = scan_tree(directory)
        oversized = find_oversized_files(directory)
        suggested, reason = suggest_filesystem(directory)
    except OSError as exc:
        print(f"Cannot inspect {directory}: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    print(f"{directory}: files={totals.files} size={format_size_human(totals.bytes)} skipped={totals.skipped}")
    for item in oversized:
        handling = "split" if is_splittable_archive(item.rel_path) else "too large for FAT32"
        print(f"  - {item.rel_path} ({format_size_human(item.size)}) [{handling}]")
    print(f"Suggested filesystem: {suggested} ({reason})")
    return EXIT_PARTIAL_FAILURES if totals.skipped else EXIT_SUCCESS


def cmd_write(args: argparse.Namespace) -> int:
    try:
        profile = load_profile(args.profile) if args.profile else ProfileConfig()
        config = build_run_config(
            source=args.source,
            target=args.target,
            mode="device" if args.device else "partition",
            profile=profile,
            filesystem=args.target_filesystem,
            label=args.label,
            skip_grub=args.workaround_skip_grub,
            set_boot_flag=args.workaround_bios_boot_flag,
            verbose=args.verbose,
            log_file=args.log_file,
        )
    except Exception as exc:
        print(f"Invalid profile: {exc}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    logger = configure_logging(verbose=config.verbose, log_file=config.log_file)
    progress_fn = None if args.no_progress else print_progress
    exit_code, summary = create_installer(config, progress_fn=progress_fn, logger=logger.getChild("run"))
    if progress_fn is not None:
        print(file=sys.stderr)

    if exit_code in (EXIT_SUCCESS, EXIT_PARTIAL_FAILURES):
        print(
            f"{config.source} -> {config.target} | filesystem={summary.filesystem} "
            f"copied={summary.copied_files} size={format_size_human(summary.copied_bytes)} "
            f"split={len(summary.split_archives)} failed={len(summary.failed)}"
        )
    return exit_code


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "validate-profile":
        return cmd_validate(args.profile)
    if args.command == "inspect":
        return cmd_inspect(args.directory)
    if args.command == "write":
        return cmd_write(args)

    parser.print_help()
    return EXIT_RUNTIME_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
