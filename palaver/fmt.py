"""ANSI-formatted stderr output using Rich."""

import sys

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Rebuild the stderr console once the color flags are known."""
    global _console
    if no_color:
        _console = Console(stderr=True, no_color=True)
    elif color:
        _console = Console(stderr=True, force_terminal=True)
    else:
        _console = Console(stderr=True)


# -- Model calls -------------------------------------------------------------


def call_header(n: int, token_est: int) -> None:
    title = f"Model call {n} (~{token_est} tokens)"
    _console.print(Rule(title, style="cyan"))


def llm_timing(elapsed: float, stop_reason: str) -> None:
    style = "green" if stop_reason == "end_turn" else "yellow"
    text = Text()
    text.append(f"  Model responded in {elapsed:.1f}s", style=style)
    text.append(f"  stop_reason={escape(str(stop_reason))}", style=style)
    _console.print(text)


def stream_text(text: str) -> None:
    """Write a streamed assistant text delta straight to stdout."""
    sys.stdout.write(text)
    sys.stdout.flush()


def end_of_reply() -> None:
    sys.stdout.write("\n\n")
    sys.stdout.flush()


# -- Tool calls --------------------------------------------------------------


def tool_call(name: str, detail: str) -> None:
    header = Text()
    header.append(f"Executing {name} tool", style="bold magenta")
    if detail:
        header.append(f": {detail}", style="grey50")
    _console.print(header)


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {msg}", style="red")
    _console.print(header)


# -- Turn outcomes -----------------------------------------------------------


def aborted() -> None:
    _console.print(Text("\nAborted", style="yellow"))


def empty_input() -> None:
    _console.print(Text("Empty input, aborting", style="dim"))


def session_cost(line: str) -> None:
    _console.print(Text(line, style="dim"))


# -- Diagnostics -------------------------------------------------------------


def error(msg: str) -> None:
    _console.print(Text.assemble(("Error: ", "bold red"), (msg, "red")), soft_wrap=True)


def repl_banner(model: str) -> None:
    _console.print(
        Text(
            f"Talking to {model}. Ctrl-C cancels, Ctrl-C twice or Ctrl-D exits.",
            style="dim",
        )
    )
