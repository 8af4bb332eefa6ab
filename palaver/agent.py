import argparse
import asyncio
import json
import logging
import re
import signal
import sys
import time
from importlib import metadata
from pathlib import Path
from typing import Sequence

import tiktoken

from . import fmt
from .cancel import (
    CancellationController,
    ExitRequested,
    InputCancelled,
    ModelCallCancelled,
)
from .config import (
    _UNSET,
    Settings,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
)
from .messages import (
    Message,
    ModelReply,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    strip_cache_markers,
    tool_result_message,
    user_text,
)
from .model import LiteLLMModelService, ModelService
from .report import AgentError, format_session_cost
from .store import ConversationStore
from .terminal import PromptToolkitReader, TerminalReader
from .tools import TOOLS, dispatch

logger = logging.getLogger(__name__)

INPUT_PROMPT = "> "
CONFIRM_PROMPT = "y(es) or <C-c> to exit "
_CONFIRM_RE = re.compile(r"^y(es)?$", re.IGNORECASE)

DEFAULT_SYSTEM_PROMPT = (
    "You are a coding assistant running in the user's terminal. "
    "Use the provided tools to inspect and change files and to run commands. "
    "Paths are relative to the current working directory unless absolute."
)

_encoder = tiktoken.get_encoding("cl100k_base")


def estimate_tokens(messages: Sequence[Message], tools: list | None = None) -> int:
    """Rough prompt size using tiktoken."""
    total = 0
    for m in messages:
        if not m.has_blocks:
            total += len(_encoder.encode(m.content))
            continue
        for b in m.content:
            if isinstance(b, TextBlock):
                total += len(_encoder.encode(b.text))
            elif isinstance(b, ToolUseBlock):
                total += len(_encoder.encode(b.name + json.dumps(b.input)))
            elif isinstance(b, ToolResultBlock):
                total += len(_encoder.encode(b.content))
    if tools:
        total += len(_encoder.encode(json.dumps(tools)))
    # Per-message overhead (role, separators), ~4 tokens each
    total += 4 * len(messages)
    return total


class TurnOrchestrator:
    """Drives user turns: read input, call the model, run tool round trips.

    States: AwaitingInput -> CallingModel -> (DispatchingTools -> CallingModel)*
    -> AwaitingInput, with ConfirmExit reachable from AwaitingInput.
    """

    def __init__(
        self,
        store: ConversationStore,
        controller: CancellationController,
        reader: TerminalReader,
        model_service: ModelService,
        *,
        settings: Settings,
        tools: list | None = None,
        system_prompt: str | None = None,
        base_dir: str = ".",
        verbose: bool = False,
    ):
        self.store = store
        self.controller = controller
        self.reader = reader
        self.model_service = model_service
        self.settings = settings
        self.tools = TOOLS if tools is None else tools
        self.system_prompt = system_prompt
        self.base_dir = base_dir
        self.verbose = verbose
        self._calls = 0

    async def repl_loop(self) -> None:
        """Loop until the operator confirms exit."""
        while self.store.running:
            await self.step()

    async def step(self) -> None:
        """Run one AwaitingInput -> turn completion iteration."""
        try:
            line = await self.controller.read(self.reader.question(INPUT_PROMPT))
        except InputCancelled:
            await self.confirm_exit()
            return
        except EOFError:
            self.store.set_running(False)
            return

        if not line.strip():
            fmt.empty_input()
            return
        await self.run_turn(line)

    async def confirm_exit(self) -> None:
        """Ask whether to exit; "y", "yes" or another Ctrl-C ends the session."""
        self.store.set_interrupted(True)
        try:
            answer = await self.controller.read(self.reader.question(CONFIRM_PROMPT))
        except InputCancelled:
            answer = ""
        except (EOFError, ExitRequested):
            answer = "yes"
        finally:
            self.store.set_interrupted(False)

        if _CONFIRM_RE.match(answer.strip()):
            self.store.set_running(False)

    async def run_turn(self, text: str) -> ModelReply | None:
        """Send *text* as a new user turn and follow tool round trips to the end.

        Returns the final reply, or None if the turn was cancelled. A
        cancelled turn is rolled back in full, including tool round trips
        that had already completed.
        """
        checkpoint = len(self.store.messages)
        try:
            reply = await self._call_until_done(user_text(text))
        except ModelCallCancelled:
            logger.debug("turn cancelled, rolling back to %d messages", checkpoint)
            self.store.truncate_messages(checkpoint)
            fmt.aborted()
            return None

        settings = self.settings
        if not settings.disable_cost_message:
            fmt.session_cost(
                format_session_cost(
                    settings.model, self.store.usage_log, settings.pricing_per_model
                )
            )
        return reply

    async def _call_until_done(self, outbound: Message) -> ModelReply:
        while True:
            reply = await self._call_model(outbound)
            tool_uses = reply.to_message().tool_uses()
            if reply.stop_reason != "tool_use" or not tool_uses:
                return reply
            results = [dispatch(invocation, self.base_dir) for invocation in tool_uses]
            outbound = tool_result_message(results)

    async def _call_model(self, outbound: Message) -> ModelReply:
        # The outbound message is the only cache boundary in the request.
        history = tuple(strip_cache_markers(m) for m in self.store.messages)
        history += (outbound,)

        self._calls += 1
        if self.verbose:
            fmt.call_header(self._calls, estimate_tokens(history, self.tools))

        t0 = time.monotonic()
        reply = await self.controller.call_model(
            self.model_service.invoke(
                history, self.tools, self.system_prompt, fmt.stream_text
            )
        )
        fmt.end_of_reply()
        if self.verbose:
            fmt.llm_timing(time.monotonic() - t0, reply.stop_reason)

        self.store.append_message(outbound)
        self.store.append_message(reply.to_message())
        self.store.append_usage(reply.usage)
        return reply


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="palaver",
        description="An interactive terminal agent that lets Claude run shell commands and edit files.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented config template and exit.",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="Model to talk to (default: claude-opus-4-6).",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=_UNSET,
        help="API key (overrides ANTHROPIC_API_KEY).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="Override the provider's API base URL.",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per model call (default: 4096).",
    )
    parser.add_argument(
        "--system-prompt",
        type=str,
        default=_UNSET,
        help="System prompt to send with every call.",
    )
    parser.add_argument(
        "--base-dir",
        type=str,
        default=".",
        help="Directory tools run in and relative paths resolve against (default: current directory).",
    )
    parser.add_argument(
        "--no-cost",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Don't print the session cost after each turn.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Suppress per-call diagnostics.",
    )
    parser.add_argument(
        "--debug",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Log internal state transitions to stderr.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )
    return parser


def _setup_logging(debug: bool) -> None:
    # Diagnostics meant for the operator go through fmt; logging is the
    # internal trace and stays quiet unless --debug is given.
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # LiteLLM is very chatty at DEBUG.
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def _install_interrupt_handler(loop, controller: CancellationController) -> bool:
    try:
        loop.add_signal_handler(signal.SIGINT, controller.interrupt)
        return True
    except (NotImplementedError, RuntimeError):
        # Windows: no add_signal_handler; hop onto the loop from the handler.
        signal.signal(
            signal.SIGINT,
            lambda signum, frame: loop.call_soon_threadsafe(controller.interrupt),
        )
        return False


async def _run_repl(args) -> None:
    store = ConversationStore()
    controller = CancellationController(store)
    reader = PromptToolkitReader(
        controller.interrupt, history_path=global_config_dir() / "repl_history"
    )
    service = LiteLLMModelService(
        args.model,
        max_output_tokens=args.max_output_tokens,
        api_key=args.api_key,
        base_url=args.base_url,
    )
    orchestrator = TurnOrchestrator(
        store,
        controller,
        reader,
        service,
        settings=Settings.from_args(args),
        system_prompt=args.system_prompt or DEFAULT_SYSTEM_PROMPT,
        base_dir=args.base_dir,
        verbose=not args.quiet,
    )

    loop = asyncio.get_running_loop()
    via_loop = _install_interrupt_handler(loop, controller)
    if not args.quiet:
        fmt.repl_banner(args.model)
    try:
        await orchestrator.repl_loop()
    finally:
        if via_loop:
            loop.remove_signal_handler(signal.SIGINT)


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("palaver")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(), end="")
        sys.exit(0)

    base = Path(args.base_dir)
    if not base.is_dir():
        parser.error(f"--base-dir is not a directory: {args.base_dir}")

    try:
        config = load_config(base)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)

    fmt.init(color=args.color, no_color=args.no_color)
    _setup_logging(args.debug)

    try:
        asyncio.run(_run_repl(args))
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
