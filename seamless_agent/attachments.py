"""Attachments bundled with a human response.

Pasted or dropped images are written to ``<storage_dir>/temp-images``
and flagged ``is_temporary``. They are deleted a fixed delay after the
owning request settles, so the calling agent has time to read them,
and never before.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from .errors import AttachmentError
from .models import AttachmentInfo, new_id

logger = logging.getLogger(__name__)

TEMP_DIR_NAME = "temp-images"
MAX_IMAGE_SIZE_BYTES = 10 * 1024 * 1024
DEFAULT_CLEANUP_DELAY = 60.0

IMAGE_EXTENSIONS: dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
    "image/svg+xml": ".svg",
}

_MIME_BY_SUFFIX: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
}


def get_image_mime_type(path: str | Path) -> str:
    """Guess an image mime type from the file suffix."""
    return _MIME_BY_SUFFIX.get(Path(path).suffix.lower(), "application/octet-stream")


def validate_image_magic_number(data: bytes, mime_type: str) -> bool:
    """Check that file content matches the claimed image type."""
    if mime_type == "image/png":
        return data.startswith(b"\x89PNG\r\n\x1a\n")
    if mime_type == "image/jpeg":
        return data.startswith(b"\xff\xd8\xff")
    if mime_type == "image/gif":
        return data.startswith((b"GIF87a", b"GIF89a"))
    if mime_type == "image/webp":
        return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP"
    if mime_type == "image/bmp":
        return data.startswith(b"BM")
    if mime_type == "image/svg+xml":
        head = data[:512].lstrip().lower()
        return head.startswith(b"<svg") or head.startswith(b"<?xml")
    return False


def uri_to_path(uri: str) -> Path:
    """Convert a ``file://`` uri (or a plain path) to a Path."""
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(url2pathname(unquote(parsed.path)))
    return Path(uri)


def decode_data_url(data_url: str, mime_type: str = "") -> tuple[bytes, str]:
    """Split ``data:<mime>[;base64],<payload>`` into bytes and a mime type.

    An explicit *mime_type* wins over the one in the url header.
    """
    if not data_url or not data_url.startswith("data:"):
        raise AttachmentError("Invalid data URL")
    header, sep, payload = data_url[len("data:"):].partition(",")
    if not sep:
        raise AttachmentError("Invalid data URL (missing comma)")
    parts = [p.strip() for p in header.split(";") if p.strip()]
    mime_from_url = parts[0] if parts and "/" in parts[0] else ""
    is_base64 = any(p.lower() == "base64" for p in parts)
    try:
        data = base64.b64decode(payload, validate=True) if is_base64 else unquote(payload).encode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise AttachmentError(f"Invalid data URL payload: {exc}") from exc
    return data, mime_type or mime_from_url


def file_reference(path: str | Path, *, depth: int | None = None) -> AttachmentInfo:
    """Build an attachment for a workspace file or folder."""
    p = Path(path)
    if p.is_dir():
        return AttachmentInfo(
            id=new_id("folder"),
            name=p.name or str(p),
            uri=p.resolve().as_uri(),
            is_folder=True,
            folder_path=str(p),
            depth=depth,
        )
    return AttachmentInfo(id=new_id("file"), name=p.name, uri=p.resolve().as_uri())


class AttachmentStore:
    """Owns temporary image files and their delayed cleanup."""

    def __init__(self, temp_dir: Path, cleanup_delay: float = DEFAULT_CLEANUP_DELAY) -> None:
        self._temp_dir = temp_dir
        self._cleanup_delay = cleanup_delay
        self._timers: dict[Path, asyncio.TimerHandle] = {}

    @property
    def temp_dir(self) -> Path:
        return self._temp_dir

    @property
    def scheduled(self) -> list[Path]:
        return list(self._timers)

    def owns(self, path: Path) -> bool:
        """Whether *path* lies inside the temp directory."""
        root = self._temp_dir.resolve()
        resolved = path.resolve()
        return resolved != root and resolved.is_relative_to(root)

    def save_image(self, data_url: str, mime_type: str = "") -> AttachmentInfo:
        """Write a pasted image to the temp directory.

        Raises AttachmentError for bad payloads, unsupported types and
        images over 10 MB.
        """
        data, effective_mime = decode_data_url(data_url, mime_type)
        if not effective_mime:
            raise AttachmentError("Unsupported image type: unknown")
        if len(data) > MAX_IMAGE_SIZE_BYTES:
            raise AttachmentError(
                f"Image is too large ({len(data) / (1024 * 1024):.2f} MB, max 10 MB)"
            )
        ext = IMAGE_EXTENSIONS.get(effective_mime)
        if ext is None:
            raise AttachmentError(f"Unsupported image type: {effective_mime}")

        self._temp_dir.mkdir(parents=True, exist_ok=True)
        target = self._unique_path(f"image-pasted{ext}")
        target.write_bytes(data)
        logger.info("Saved pasted image %s (%d bytes)", target.name, len(data))
        return AttachmentInfo(
            id=new_id("img"),
            name=target.name,
            uri=target.resolve().as_uri(),
            is_temporary=True,
        )

    def _unique_path(self, filename: str) -> Path:
        candidate = self._temp_dir / filename
        stem, suffix = candidate.stem, candidate.suffix
        counter = 1
        while candidate.exists():
            candidate = self._temp_dir / f"{stem}-{counter}{suffix}"
            counter += 1
        return candidate

    def schedule_cleanup(self, attachments: list[AttachmentInfo]) -> None:
        """Delete the temporary files among *attachments* after the delay.

        Only files inside the temp directory are ever scheduled; anything
        else flagged temporary is logged and left alone.
        """
        temporary = [a for a in attachments if a.is_temporary]
        if not temporary:
            return
        loop = asyncio.get_running_loop()
        for attachment in temporary:
            path = uri_to_path(attachment.uri)
            if not self.owns(path):
                logger.warning("Refusing to clean up %s outside %s", path, self._temp_dir)
                continue
            existing = self._timers.pop(path, None)
            if existing is not None:
                existing.cancel()
            self._timers[path] = loop.call_later(self._cleanup_delay, self._expire, path)
        logger.debug(
            "Scheduled cleanup of %d temp attachment(s) in %.1fs",
            len(temporary), self._cleanup_delay,
        )

    def _expire(self, path: Path) -> None:
        self._timers.pop(path, None)
        loop = asyncio.get_running_loop()
        loop.run_in_executor(None, _remove_file, path)

    def cleanup_all_temp_files(self) -> None:
        """Cancel pending timers and remove everything in the temp directory."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        if not self._temp_dir.is_dir():
            return
        removed = 0
        for entry in self._temp_dir.iterdir():
            if entry.is_file() and _remove_file(entry):
                removed += 1
        if removed:
            logger.info("Removed %d temp attachment(s)", removed)


def _remove_file(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Failed to remove temp attachment %s: %s", path, exc)
        return False
