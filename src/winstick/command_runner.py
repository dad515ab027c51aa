from __future__ import annotations

import logging
import subprocess
from typing import Protocol, Sequence


log = logging.getLogger("winstick.command")


class CommandError(RuntimeError):
    def __init__(self, name: str, args: Sequence[str], returncode: int | None, stderr: str = "") -> None:
        self.name = name
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        command_line = " ".join([name, *self.args_list])
        if returncode is None:
            message = f"Command not found: {command_line}"
        else:
            message = f"Command failed with exit status {returncode}: {command_line}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class CommandRunner(Protocol):
    def run(self, name: str, args: Sequence[str]) -> bytes:
        """Run ``name`` with ``args`` and return its stdout; raise CommandError on failure."""
        ...


class SubprocessRunner:
    def run(self, name: str, args: Sequence[str]) -> bytes:
        log.debug("Running %s %s", name, " ".join(args))
        try:
            completed = subprocess.run([name, *args], capture_output=True, check=False)
        except FileNotFoundError as exc:
            raise CommandError(name, args, None) from exc

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace")
            raise CommandError(name, args, completed.returncode, stderr)
        return completed.stdout
