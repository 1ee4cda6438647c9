"""Workspace file search backing the console's ``#file`` references.

Scans the workspace with ``os.scandir``, skipping well-known build,
cache and dependency folders plus any user-configured globs, and ranks
results folders first, then name-prefix, then name-substring matches.
"""
from __future__ import annotations

import fnmatch
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_IGNORED_SOURCE_GLOBS: list[str] = [
    "**/node_modules/**",
    "**/.venv/**",
    "**/__pycache__/**",
    # Python
    "**/.mypy_cache/**",
    "**/.pytest_cache/**",
    "**/.ruff_cache/**",
    "**/.tox/**",
    "**/.pdm-build/**",
    # JavaScript / TypeScript
    "**/dist/**",
    "**/build/**",
    "**/.turbo/**",
    "**/.parcel-cache/**",
    "**/.next/**",
    "**/.nuxt/**",
    "**/.svelte-kit/**",
    "**/.vite/**",
    "**/.yarn/**",
    "**/.pnpm-store/**",
    # Java / Kotlin
    "**/out/**",
    "**/.gradle/**",
    "**/.mvn/**",
    # .NET
    "**/bin/**",
    "**/obj/**",
    # Rust
    "**/target/**",
    # Go
    "**/vendor/**",
    # Ruby
    "**/.bundle/**",
    "**/bundle/**",
    # General tooling
    "**/.git/**",
    "**/.hg/**",
    "**/.svn/**",
    "**/.idea/**",
    "**/.vscode/**",
    "**/.DS_Store",
    "**/Thumbs.db",
    "**/.cache/**",
    "**/coverage/**",
    "**/tmp/**",
    "**/temp/**",
]

MAX_RESULTS = 50
MAX_QUERY_LENGTH = 100

_TRAVERSAL_RE = re.compile(r"\.\.[/\\]|\.\.$")
_CONTROL_RE = re.compile(r"[\x00-\x1f]")


def get_ignored_paths(ignore_common: bool = True, additional: list[str] | None = None) -> list[str]:
    """Default globs plus user globs, or only the user globs when disabled."""
    extra = list(additional or [])
    if not ignore_common:
        return extra
    combined = list(DEFAULT_IGNORED_SOURCE_GLOBS)
    for pattern in extra:
        if pattern not in combined:
            combined.append(pattern)
    return combined


def sanitize_query(query: str) -> str:
    if not query:
        return ""
    sanitized = query[:MAX_QUERY_LENGTH]
    sanitized = _TRAVERSAL_RE.sub("", sanitized)
    sanitized = _CONTROL_RE.sub("", sanitized)
    return sanitized.strip()


@dataclass
class FileSearchResult:
    name: str
    path: str
    uri: str
    is_folder: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "uri": self.uri,
            "icon": "folder" if self.is_folder else "file",
            "isFolder": self.is_folder,
        }


class WorkspaceFileSearch:
    """Cached scan of a workspace root."""

    MAX_DEPTH: int = 8
    MAX_FILES: int = 2000
    CACHE_TTL: float = 30.0

    def __init__(self, root: Path, ignored_globs: list[str] | None = None) -> None:
        self._root = root
        self._globs = list(ignored_globs if ignored_globs is not None else DEFAULT_IGNORED_SOURCE_GLOBS)
        self._files: list[str] = []
        self._last_scan = 0.0

    def is_ignored(self, rel_path: str, is_dir: bool) -> bool:
        parts = rel_path.replace("\\", "/").split("/")
        dir_parts = parts if is_dir else parts[:-1]
        for pattern in self._globs:
            if pattern.startswith("**/"):
                tail = pattern[3:]
                if tail.endswith("/**"):
                    dir_glob = tail[:-3]
                    if any(fnmatch.fnmatch(p, dir_glob) for p in dir_parts):
                        return True
                    continue
                if fnmatch.fnmatch(parts[-1], tail) or fnmatch.fnmatch(rel_path, tail):
                    return True
            elif fnmatch.fnmatch(rel_path, pattern):
                return True
        return False

    def _scan(self) -> list[str]:
        files: list[str] = []
        self._scan_dir(self._root, "", 0, files)
        return files

    def _scan_dir(self, abs_path: Path, rel_prefix: str, depth: int, files: list[str]) -> None:
        if depth >= self.MAX_DEPTH or len(files) >= self.MAX_FILES:
            return
        try:
            with os.scandir(abs_path) as it:
                for entry in sorted(it, key=lambda e: e.name):
                    rel = f"{rel_prefix}{entry.name}"
                    is_dir = entry.is_dir(follow_symlinks=False)
                    if self.is_ignored(rel, is_dir):
                        continue
                    if is_dir:
                        self._scan_dir(abs_path / entry.name, rel + "/", depth + 1, files)
                    elif len(files) < self.MAX_FILES:
                        files.append(rel)
        except OSError:
            pass

    def _ensure_fresh(self) -> None:
        now = time.monotonic()
        if now - self._last_scan > self.CACHE_TTL or not self._files:
            self._files = self._scan()
            self._last_scan = now

    def search(self, query: str) -> list[FileSearchResult]:
        """Case-insensitive match on name or relative path, at most 50 results."""
        self._ensure_fresh()
        q = sanitize_query(query).lower()

        folders: dict[str, FileSearchResult] = {}
        files: list[FileSearchResult] = []
        for rel in self._files:
            dir_path = os.path.dirname(rel)
            if dir_path and dir_path not in folders:
                folder_name = dir_path.rsplit("/", 1)[-1]
                if not q or q in folder_name.lower() or q in dir_path.lower():
                    folders[dir_path] = FileSearchResult(
                        name=folder_name,
                        path=dir_path,
                        uri=(self._root / dir_path).resolve().as_uri(),
                        is_folder=True,
                    )
            name = rel.rsplit("/", 1)[-1]
            if not q or q in name.lower() or q in rel.lower():
                files.append(FileSearchResult(
                    name=name,
                    path=rel,
                    uri=(self._root / rel).resolve().as_uri(),
                    is_folder=False,
                ))

        def rank(result: FileSearchResult) -> tuple[bool, bool, bool, str]:
            lowered = result.name.lower()
            return (
                not result.is_folder,
                not lowered.startswith(q),
                q not in lowered,
                lowered,
            )

        return sorted([*folders.values(), *files], key=rank)[:MAX_RESULTS]
