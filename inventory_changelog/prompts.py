"""Confirmation prompts used to gate destructive operations."""

from __future__ import annotations

import asyncio
import sys
from typing import Callable, Optional, Protocol, TextIO

AFFIRMATIVE_ANSWERS = {"y", "yes", "s", "si", "sí"}


class ConfirmationPrompt(Protocol):
    """Asynchronous yes/no question."""

    async def confirm(self, message: str, title: str = "") -> bool:
        ...


class StaticPrompt:
    """Prompt that always gives the same answer."""

    def __init__(self, answer: bool) -> None:
        self.answer = answer
        self.questions: list = []

    async def confirm(self, message: str, title: str = "") -> bool:
        self.questions.append((title, message))
        return self.answer


class ConsolePrompt:
    """Ask on the terminal; anything but an explicit yes declines."""

    def __init__(
        self,
        reader: Optional[Callable[[str], str]] = None,
        stream: Optional[TextIO] = None,
    ) -> None:
        self._reader = reader or input
        self._stream = stream or sys.stderr

    def _ask(self, message: str, title: str) -> bool:
        if title:
            print(f"[{title}]", file=self._stream)
        try:
            answer = self._reader(f"{message} [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in AFFIRMATIVE_ANSWERS

    async def confirm(self, message: str, title: str = "") -> bool:
        # input() blocks, so keep it off the event loop.
        return await asyncio.to_thread(self._ask, message, title)
