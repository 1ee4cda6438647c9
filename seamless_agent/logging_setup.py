"""Root logger setup for the service and the MCP proxy.

stdout is reserved for the port announcement and the MCP stdio stream,
so everything goes to stderr plus a rotating file under the storage dir.
"""
from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(
    level: str = "INFO",
    log_dir: Path | None = None,
    *,
    filename: str = "seamless-agent.log",
    stderr: bool = True,
) -> Path | None:
    """Install stderr and file handlers on the root logger.

    Pass ``stderr=False`` when something else owns the terminal.

    Returns the log file path, or None when the file could not be opened.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)

    if stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    # Chatty libraries stay at WARNING unless we are debugging.
    if root.level > logging.DEBUG:
        for name in ("aiohttp.access", "asyncio", "httpx", "mcp.server.lowlevel"):
            logging.getLogger(name).setLevel(logging.WARNING)

    if log_dir is None:
        return None
    log_file = log_dir / filename
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8",
        )
    except OSError as exc:
        logging.getLogger(__name__).warning("File logging disabled (%s): %s", log_file, exc)
        return None
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    logging.getLogger(__name__).debug("Logging to %s (pid=%s)", log_file, os.getpid())
    return log_file
