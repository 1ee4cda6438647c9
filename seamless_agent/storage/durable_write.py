"""Crash-safe replacement of the small files Seamless Agent owns or edits.

Every file the service writes (history and task list stores, the bridge
token, ``server.json``, the shared MCP client config) goes through
``atomic_write_text``: readers such as the MCP proxy or another editor
see either the old document or the new one, never a torn write.
"""
from __future__ import annotations

import os
import stat
import tempfile
from pathlib import Path


def _sync_parent(path: Path) -> None:
    """Flush the directory entry of *path* after a rename. Best effort."""
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(str(path.parent), flags)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # Directory fsync is unsupported on Windows and some filesystems.
        pass
    finally:
        os.close(fd)


def _existing_mode(path: Path) -> int | None:
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except OSError:
        return None


def atomic_write_text(
    path: Path,
    content: str,
    *,
    encoding: str = "utf-8",
    mode: int | None = None,
) -> None:
    """Replace *path* with *content* via a fsynced sibling temp file.

    ``mode`` sets the permissions of the result (the token and
    ``server.json`` use 0o600). Without it, a file that already exists
    keeps its permissions, which matters for the MCP client config we
    share with another tool. Raises OSError; the temp file never outlives
    a failed write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None:
        mode = _existing_mode(path)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    replaced = False
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            if mode is not None:
                os.chmod(tmp_path, mode)
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        replaced = True
    finally:
        if not replaced:
            try:
                tmp_path.unlink()
            except OSError:
                pass
    _sync_parent(path)
