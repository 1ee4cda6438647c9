"""Seamless Agent command line.

    seamless-agent serve     run the service (bridge + broker); prints {"port": N}
    seamless-agent mcp       MCP stdio proxy relaying to a running service
    seamless-agent console   Textual console attached to a running service
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from . import __version__
from .config import MCP_TRANSPORTS, SeamlessAgentConfig, load_yaml_config
from .logging_setup import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAMES = (".seamless-agent.yaml", "seamless-agent.yaml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seamless-agent",
        description="Let an AI coding agent pause and ask the human in the loop",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the service")
    serve.add_argument("--config", metavar="PATH", help="YAML config file")
    serve.add_argument("--host", help="Bridge host (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, help="Bridge port (0=random available port)")
    serve.add_argument("--storage-dir", metavar="DIR", help="History, task lists and token directory")
    serve.add_argument("--transport", choices=MCP_TRANSPORTS, help="MCP transport to register")
    serve.add_argument("--no-register", action="store_true", help="Do not touch the MCP client config")
    serve.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    from .mcp_server import proxy

    mcp = sub.add_parser("mcp", help="MCP stdio proxy for a running service")
    proxy.add_arguments(mcp)

    console = sub.add_parser("console", help="Terminal console for a running service")
    console.add_argument("--host", default="127.0.0.1", help="Bridge host (default: 127.0.0.1)")
    console.add_argument("--port", type=int, help="Bridge port (default: read from the storage dir)")
    console.add_argument("--token", help="Bridge token (default: read from the storage dir)")
    console.add_argument("--storage-dir", metavar="DIR", help="Storage directory of the service")
    return parser


def _discover_config(explicit: str | None) -> Path | None:
    if explicit:
        return Path(explicit)
    for name in DEFAULT_CONFIG_NAMES:
        candidate = Path.cwd() / name
        if candidate.exists():
            return candidate
    return None


def resolve_config(args: argparse.Namespace) -> SeamlessAgentConfig:
    """Defaults, then YAML, then SEAMLESS_AGENT_* env, then command-line flags."""
    config_path = _discover_config(getattr(args, "config", None))
    base = load_yaml_config(config_path) if config_path else None
    config = SeamlessAgentConfig.from_env(base)

    overrides: dict = {}
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None) is not None:
        overrides["port"] = args.port
    if getattr(args, "storage_dir", None):
        overrides["storage_dir"] = Path(args.storage_dir)
    if getattr(args, "transport", None):
        overrides["mcp_transport"] = args.transport
    if getattr(args, "no_register", False):
        overrides["register_mcp"] = False
    if getattr(args, "verbose", False):
        overrides["log_level"] = "DEBUG"
    return replace(config, **overrides) if overrides else config


async def _serve(config: SeamlessAgentConfig) -> None:
    from .app import SeamlessAgent

    agent = SeamlessAgent(config)
    port = await agent.start()
    sys.stdout.write(json.dumps({"port": port}) + "\n")
    sys.stdout.flush()
    try:
        await asyncio.Event().wait()
    finally:
        await agent.shutdown()


def cmd_serve(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    log_file = configure_logging(config.log_level, config.log_dir)
    logger.info(
        "Starting Seamless Agent cwd=%s port=%s storage=%s log=%s",
        Path.cwd(), config.port, config.storage_dir, log_file,
    )
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shut down")
    return 0


def cmd_console(args: argparse.Namespace) -> int:
    from .app import read_server_info
    from .auth import read_token
    from .tui.app import ConsoleApp

    storage_dir = Path(args.storage_dir).expanduser() if args.storage_dir else SeamlessAgentConfig().storage_dir
    configure_logging("INFO", storage_dir / "logs", filename="console.log", stderr=False)

    port = args.port
    if port is None:
        info = read_server_info(storage_dir)
        port = info["port"] if info else None
    token = args.token or read_token(storage_dir)
    if not port or not token:
        print(
            f"No running service found in {storage_dir}; pass --port and --token.",
            file=sys.stderr,
        )
        return 1
    ConsoleApp(port=port, token=token, host=args.host).run()
    return 0


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        sys.exit(cmd_serve(args))
    if args.command == "mcp":
        from .mcp_server import proxy

        proxy.run(args)
        return
    if args.command == "console":
        sys.exit(cmd_console(args))


if __name__ == "__main__":
    main()
