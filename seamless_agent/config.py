"""Configuration for the Seamless Agent service.

All settings have sensible defaults. A YAML file can override them, and
SEAMLESS_AGENT_* env vars override both.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .registration import DEFAULT_MCP_CONFIG_PATH

logger = logging.getLogger(__name__)

ENV_PREFIX = "SEAMLESS_AGENT_"
MCP_TRANSPORTS = ("bridge", "streamable")


def _as_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_list(value: str | list) -> list[str]:
    if isinstance(value, list):
        return [str(v) for v in value if str(v).strip()]
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class SeamlessAgentConfig:
    """Service configuration."""

    # Loopback bridge
    host: str = "127.0.0.1"
    # 0 lets the OS pick a free port; the chosen one is announced on stdout.
    port: int = 0

    # Persistence: history, task lists, token, temp images, logs
    storage_dir: Path = field(default_factory=lambda: Path.home() / ".seamless-agent")

    # MCP client registration
    mcp_config_path: Path = DEFAULT_MCP_CONFIG_PATH
    mcp_transport: str = "bridge"
    register_mcp: bool = True

    # Max wait for a console client to connect before falling back.
    view_init_timeout: float = 0.5
    # Seconds a temporary image outlives the request it was attached to.
    temp_cleanup_delay: float = 60.0
    max_history: int = 50

    # Workspace file search
    workspace_root: Path = field(default_factory=Path.cwd)
    ignore_common_paths: bool = True
    additional_ignored_paths: list[str] = field(default_factory=list)

    terminal_fallback: bool = True

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.storage_dir = Path(self.storage_dir).expanduser()
        self.mcp_config_path = Path(self.mcp_config_path).expanduser()
        self.workspace_root = Path(self.workspace_root).expanduser()
        if self.mcp_transport not in MCP_TRANSPORTS:
            raise ValueError(
                f"mcp_transport must be one of {', '.join(MCP_TRANSPORTS)}, "
                f"got {self.mcp_transport!r}"
            )

    @property
    def temp_dir(self) -> Path:
        return self.storage_dir / "temp-images"

    @property
    def log_dir(self) -> Path:
        return self.storage_dir / "logs"

    @classmethod
    def from_env(cls, base: SeamlessAgentConfig | None = None) -> SeamlessAgentConfig:
        """Apply SEAMLESS_AGENT_* environment variables on top of *base*."""
        base = base or cls()
        env_vars = {k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)}
        if env_vars:
            logger.info(
                "SeamlessAgentConfig.from_env: env overrides: %s",
                ", ".join(
                    f"{k}={'***' if 'TOKEN' in k else v}"
                    for k, v in sorted(env_vars.items())
                ),
            )
        else:
            logger.debug("SeamlessAgentConfig.from_env: no %s* env vars set", ENV_PREFIX)

        def env(name: str) -> str | None:
            return os.getenv(ENV_PREFIX + name)

        overrides: dict[str, Any] = {}
        if (v := env("HOST")) is not None:
            overrides["host"] = v
        if (v := env("PORT")) is not None:
            overrides["port"] = int(v)
        if (v := env("STORAGE_DIR")) is not None:
            overrides["storage_dir"] = Path(v)
        if (v := env("MCP_CONFIG_PATH")) is not None:
            overrides["mcp_config_path"] = Path(v)
        if (v := env("MCP_TRANSPORT")) is not None:
            overrides["mcp_transport"] = v.strip().lower()
        if (v := env("REGISTER_MCP")) is not None:
            overrides["register_mcp"] = _as_bool(v)
        if (v := env("VIEW_INIT_TIMEOUT")) is not None:
            overrides["view_init_timeout"] = float(v)
        if (v := env("TEMP_CLEANUP_DELAY")) is not None:
            overrides["temp_cleanup_delay"] = float(v)
        if (v := env("MAX_HISTORY")) is not None:
            overrides["max_history"] = int(v)
        if (v := env("WORKSPACE_ROOT")) is not None:
            overrides["workspace_root"] = Path(v)
        if (v := env("IGNORE_COMMON_PATHS")) is not None:
            overrides["ignore_common_paths"] = _as_bool(v)
        if (v := env("ADDITIONAL_IGNORED_PATHS")) is not None:
            overrides["additional_ignored_paths"] = _as_list(v)
        if (v := env("TERMINAL_FALLBACK")) is not None:
            overrides["terminal_fallback"] = _as_bool(v)
        if (v := env("LOG_LEVEL")) is not None:
            overrides["log_level"] = v.upper()

        config = replace(base, **overrides)
        logger.info(
            "SeamlessAgentConfig.from_env: host=%s port=%s storage=%s transport=%s log_level=%s",
            config.host, config.port, config.storage_dir,
            config.mcp_transport, config.log_level,
        )
        return config


def load_yaml_config(path: str | Path) -> SeamlessAgentConfig:
    """Load a YAML config file with ``server:`` and ``attachments:`` sections.

    Unknown keys are logged and ignored. Missing files and parse errors
    are logged and re-raised.
    """
    path = Path(path)
    logger.info("load_yaml_config: loading %s (exists=%s)", path, path.exists())
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    server_raw = raw.get("server") or {}
    attachments_raw = raw.get("attachments") or {}
    defaults = SeamlessAgentConfig()

    known_server = {
        "host", "port", "storage_dir", "mcp_config_path", "mcp_transport",
        "register_mcp", "view_init_timeout", "max_history", "workspace_root",
        "ignore_common_paths", "additional_ignored_paths", "terminal_fallback",
        "log_level",
    }
    known_attachments = {"temp_cleanup_delay"}
    for key in sorted(set(server_raw) - known_server):
        logger.warning("load_yaml_config: unknown server key %r ignored", key)
    for key in sorted(set(attachments_raw) - known_attachments):
        logger.warning("load_yaml_config: unknown attachments key %r ignored", key)

    config = SeamlessAgentConfig(
        host=str(server_raw.get("host", defaults.host)),
        port=int(server_raw.get("port", defaults.port)),
        storage_dir=Path(server_raw.get("storage_dir", defaults.storage_dir)),
        mcp_config_path=Path(server_raw.get("mcp_config_path", defaults.mcp_config_path)),
        mcp_transport=str(server_raw.get("mcp_transport", defaults.mcp_transport)).lower(),
        register_mcp=_as_bool(server_raw.get("register_mcp", defaults.register_mcp)),
        view_init_timeout=float(server_raw.get("view_init_timeout", defaults.view_init_timeout)),
        temp_cleanup_delay=float(
            attachments_raw.get("temp_cleanup_delay", defaults.temp_cleanup_delay)
        ),
        max_history=int(server_raw.get("max_history", defaults.max_history)),
        workspace_root=Path(server_raw.get("workspace_root", defaults.workspace_root)),
        ignore_common_paths=_as_bool(
            server_raw.get("ignore_common_paths", defaults.ignore_common_paths)
        ),
        additional_ignored_paths=_as_list(server_raw.get("additional_ignored_paths", [])),
        terminal_fallback=_as_bool(server_raw.get("terminal_fallback", defaults.terminal_fallback)),
        log_level=str(server_raw.get("log_level", defaults.log_level)).upper(),
    )
    return config
