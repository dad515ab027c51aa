from __future__ import annotations

from pathlib import PurePath
from typing import Iterable

import pathspec


def normalize_rel_path(relative_path: str | PurePath) -> str:
    unix_path = PurePath(relative_path).as_posix()
    return unix_path[2:] if unix_path.startswith("./") else unix_path


class ExcludeEngine:
    """Decides which root-relative paths a scan or copy pass leaves out.

    Exact paths are compared as normalized POSIX strings. Patterns use
    gitignore syntax and come from the user's profile.
    """

    def __init__(self, exact_paths: Iterable[str | PurePath] = (), patterns: Iterable[str] = ()) -> None:
        self._exact = {normalize_rel_path(path) for path in exact_paths}
        pattern_list = [pattern for pattern in patterns if pattern.strip()]
        self._spec = pathspec.PathSpec.from_lines("gitignore", pattern_list) if pattern_list else None

    @property
    def exact_paths(self) -> frozenset[str]:
        return frozenset(self._exact)

    def with_paths(self, extra_paths: Iterable[str | PurePath]) -> "ExcludeEngine":
        merged = ExcludeEngine(self._exact)
        merged._exact.update(normalize_rel_path(path) for path in extra_paths)
        merged._spec = self._spec
        return merged

    def is_excluded(self, relative_path: str | PurePath, is_dir: bool = False) -> bool:
        unix_path = normalize_rel_path(relative_path)
        if unix_path in self._exact:
            return True
        if self._spec is None:
            return False
        # Directory-only patterns such as "support/" need the trailing slash.
        return self._spec.match_file(f"{unix_path}/" if is_dir else unix_path)

    def __bool__(self) -> bool:
        return bool(self._exact) or self._spec is not None


def build_exclude_engine(exclude: "ExcludeEngine | Iterable[str | PurePath] | None") -> ExcludeEngine:
    if exclude is None:
        return ExcludeEngine()
    if isinstance(exclude, ExcludeEngine):
        return exclude
    return ExcludeEngine(exact_paths=exclude)
