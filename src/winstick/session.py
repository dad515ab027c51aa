from __future__ import annotations

import logging
from pathlib import Path
import shutil
import signal
import tempfile
import threading
from types import FrameType
from typing import Any

from winstick.config import RunConfig
from winstick.models import MountHandle
from winstick.mount_lifecycle import MountError, MountManager


EXIT_INTERRUPTED = 1

log = logging.getLogger("winstick.session")


class CleanupError(RuntimeError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Cleanup errors: {'; '.join(self.errors)}")


class Session:
    """Owns the mounts and temp directory of one run.

    ``cleanup`` may be called any number of times, from the normal exit path
    and from a signal handler; each resource is released at most once.
    """

    def __init__(self, config: RunConfig, mounts: MountManager) -> None:
        self.config = config
        self.mounts = mounts
        self.source_mount: MountHandle | None = None
        self.target_mount: MountHandle | None = None
        self.temp_dir: Path | None = None
        # Re-entrant: a signal handler runs on the main thread, possibly inside cleanup().
        self._lock = threading.RLock()
        self._previous_handlers: dict[int, Any] = {}

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.cleanup()
        except CleanupError as cleanup_exc:
            if exc is None:
                raise
            log.error("%s", cleanup_exc)

    def mount_source(self) -> MountHandle:
        source = self.config.source
        if source.is_file():
            handle = self.mounts.mount_image(source)
        else:
            handle = self.mounts.mount_device(source, "auto")
        with self._lock:
            self.source_mount = handle
        return handle

    def mount_target(self, partition: str | Path, filesystem: str) -> MountHandle:
        handle = self.mounts.mount_device(partition, filesystem)
        with self._lock:
            self.target_mount = handle
        return handle

    def create_temp_dir(self) -> Path:
        with self._lock:
            if self.temp_dir is None:
                self.temp_dir = Path(tempfile.mkdtemp(prefix="winstick-"))
            return self.temp_dir

    def _take(self, field_name: str) -> Any:
        value = getattr(self, field_name)
        setattr(self, field_name, None)
        return value

    def cleanup(self) -> None:
        with self._lock:
            errors: list[str] = []

            target_mount = self._take("target_mount")
            if target_mount is not None:
                try:
                    self.mounts.release(target_mount)
                except MountError as exc:
                    errors.append(f"release target: {exc}")

            source_mount = self._take("source_mount")
            if source_mount is not None:
                try:
                    self.mounts.release(source_mount)
                except MountError as exc:
                    errors.append(f"release source: {exc}")

            temp_dir = self._take("temp_dir")
            if temp_dir is not None:
                try:
                    shutil.rmtree(temp_dir)
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    errors.append(f"remove temp dir: {exc}")

            if errors:
                raise CleanupError(errors)

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        log.warning("Interrupted, cleaning up...")
        try:
            self.cleanup()
        except CleanupError as exc:
            log.error("%s", exc)
        raise SystemExit(EXIT_INTERRUPTED)

    def install_signal_handlers(self) -> None:
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
