"""Registration of this service in the shared MCP client config.

The config file is owned by another tool and may hold unrelated
servers, so every write is read-merge-write and only the
``seamless-agent`` key is ever added or removed.
"""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

from .storage.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

SERVER_KEY = "seamless-agent"
DEFAULT_MCP_CONFIG_PATH = Path.home() / ".gemini" / "antigravity" / "mcp_config.json"


def stdio_descriptor(port: int, token: str) -> dict[str, Any]:
    """Launch descriptor for the stdio proxy relaying to the bridge."""
    return {
        "command": sys.executable,
        "args": ["-m", "seamless_agent", "mcp", "--port", str(port), "--token", token],
    }


def url_descriptor(port: int, path: str = "/mcp") -> dict[str, Any]:
    """Descriptor for the in-process streamable HTTP server."""
    return {"serverUrl": f"http://localhost:{port}{path}"}


class McpRegistration:
    """Adds and removes this service's entry in an MCP config file."""

    def __init__(self, config_path: Path = DEFAULT_MCP_CONFIG_PATH, key: str = SERVER_KEY) -> None:
        self._path = config_path
        self._key = key

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any] | None:
        """Parsed config, {} when missing, None when unreadable."""
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
            logger.warning("Cannot parse MCP config %s: %s", self._path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("MCP config %s is not a JSON object", self._path)
            return None
        return data

    def register(self, descriptor: dict[str, Any]) -> bool:
        """Merge our descriptor in. A corrupt file is replaced by a fresh document."""
        config = self._read()
        if config is None:
            config = {}
        servers = config.get("mcpServers")
        if not isinstance(servers, dict):
            servers = {}
            config["mcpServers"] = servers
        servers[self._key] = descriptor
        try:
            atomic_write_text(self._path, json.dumps(config, indent=2) + "\n")
        except OSError:
            logger.exception("Failed to register MCP server in %s", self._path)
            return False
        logger.info("Registered %s in %s", self._key, self._path)
        return True

    def unregister(self) -> bool:
        """Remove only our key. Unreadable files are left untouched."""
        config = self._read()
        if not config:
            return False
        servers = config.get("mcpServers")
        if not isinstance(servers, dict) or self._key not in servers:
            return False
        del servers[self._key]
        try:
            atomic_write_text(self._path, json.dumps(config, indent=2) + "\n")
        except OSError:
            logger.exception("Failed to unregister MCP server from %s", self._path)
            return False
        logger.info("Unregistered %s from %s", self._key, self._path)
        return True
