"""Terminal line reader over prompt_toolkit."""

import os
from pathlib import Path
from typing import Callable, Protocol

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import FileHistory, InMemoryHistory
from prompt_toolkit.key_binding import KeyBindings


class TerminalReader(Protocol):
    async def question(self, prompt: str) -> str:
        """Read one line.

        Raises InputCancelled when interrupted and EOFError on end of input.
        """
        ...


class PromptToolkitReader:
    """Reads lines with a PromptSession.

    Ctrl-C inside the prompt is routed to *on_interrupt* instead of raising
    KeyboardInterrupt, so it reaches the cancellation controller the same way
    a SIGINT does.
    """

    def __init__(
        self,
        on_interrupt: Callable[[], None],
        history_path: Path | None = None,
        *,
        input=None,
        output=None,
    ):
        bindings = KeyBindings()

        @bindings.add("c-c")
        def _(event):
            on_interrupt()

        if history_path is not None:
            os.makedirs(history_path.parent, exist_ok=True)
            history = FileHistory(str(history_path))
        else:
            history = InMemoryHistory()

        self._session = PromptSession(
            history=history,
            enable_history_search=True,
            key_bindings=bindings,
            input=input,
            output=output,
        )

    async def question(self, prompt: str) -> str:
        return await self._session.prompt_async(
            FormattedText([("bold fg:ansigreen", prompt)])
        )
