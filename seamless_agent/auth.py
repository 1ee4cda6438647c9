"""Bearer token for the loopback bridge.

The token is generated once per install, persisted with owner-only
permissions, and reused across restarts as long as it is long enough.
"""
from __future__ import annotations

import hmac
import logging
import secrets
from pathlib import Path

from .storage.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

TOKEN_FILENAME = "api_token"
MIN_TOKEN_LENGTH = 20
AUTH_HEADER = "Authorization"
FALLBACK_HEADER = "X-Seamless-Agent-Token"


def read_token(storage_dir: Path) -> str | None:
    """The persisted token, or None when missing or too short."""
    path = storage_dir / TOKEN_FILENAME
    try:
        existing = path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Cannot read bridge token %s: %s", path, exc)
        return None
    return existing if len(existing) >= MIN_TOKEN_LENGTH else None


def load_or_create_token(storage_dir: Path) -> str:
    """Return the persisted token, generating and saving a new one if needed."""
    existing = read_token(storage_dir)
    if existing:
        return existing
    path = storage_dir / TOKEN_FILENAME

    token = secrets.token_urlsafe(32)
    try:
        atomic_write_text(path, token, mode=0o600)
        logger.info("Generated new bridge token at %s", path)
    except OSError:
        # The bridge still works for this run; the CLI gets the token via its args.
        logger.exception("Failed to persist bridge token")
    return token


def safe_equal(a: str, b: str) -> bool:
    """Constant-time comparison once lengths match."""
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


def extract_token(headers) -> str | None:
    """Read the token from ``Authorization: Bearer`` or the fallback header."""
    auth = headers.get(AUTH_HEADER, "")
    if auth.lower().startswith("bearer "):
        return auth[len("bearer "):].strip()
    fallback = headers.get(FALLBACK_HEADER)
    if fallback:
        return fallback.strip()
    return None


def is_authorized(headers, expected: str) -> bool:
    token = extract_token(headers)
    if not token:
        return False
    return safe_equal(token, expected)
