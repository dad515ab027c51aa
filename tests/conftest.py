from __future__ import annotations

from pathlib import Path
from typing import Callable, Sequence

import pytest

from winstick.command_runner import CommandError


Handler = Callable[[list[str]], bytes | None]


class FakeRunner:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list[str]]] = []
        self._handlers: dict[str, Handler] = {}
        self._failures: dict[str, int] = {}

    def on(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def fail(self, name: str, times: int = 1_000_000) -> None:
        self._failures[name] = times

    def run(self, name: str, args: Sequence[str]) -> bytes:
        args_list = list(args)
        self.calls.append((name, args_list))
        remaining = self._failures.get(name, 0)
        if remaining:
            self._failures[name] = remaining - 1
            raise CommandError(name, args_list, 32, f"{name} failed")
        handler = self._handlers.get(name)
        if handler is None:
            return b""
        return handler(args_list) or b""

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def mounts_table(tmp_path: Path) -> Path:
    table = tmp_path / "mounts"
    table.write_text("proc /proc proc rw,nosuid 0 0\n", encoding="utf-8")
    return table
