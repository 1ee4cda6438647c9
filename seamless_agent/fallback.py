"""Terminal prompt used when no console client is connected.

Stands in for the native dialog of an editor host: the question is
rendered with rich on stderr and the answer read from stdin. Only one
prompt runs at a time so concurrent questions do not interleave.
"""
from __future__ import annotations

import asyncio
import logging
import sys

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt

from .models import UserResponseResult

logger = logging.getLogger(__name__)


class TerminalPrompt:
    """Ask a question on the controlling terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)
        self._lock = asyncio.Lock()

    @staticmethod
    def is_supported() -> bool:
        return sys.stdin is not None and sys.stdin.isatty()

    async def ask(self, question: str, title: str) -> UserResponseResult:
        async with self._lock:
            loop = asyncio.get_running_loop()
            try:
                answer = await loop.run_in_executor(None, self._ask_blocking, question, title)
            except (EOFError, KeyboardInterrupt):
                logger.info("Terminal prompt dismissed")
                return UserResponseResult(False, "")
        if not answer:
            return UserResponseResult(False, "")
        return UserResponseResult(True, answer)

    def _ask_blocking(self, question: str, title: str) -> str:
        self._console.print(Panel(Markdown(question), title=title, border_style="yellow"))
        return Prompt.ask("[bold yellow]Your response[/bold yellow]", console=self._console).strip()
