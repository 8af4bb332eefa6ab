"""Cancellation controller: routes interrupts into the active suspension point.

There are two independent tokens, each an asyncio task: one for a pending
terminal read and one for an in-flight model call. An interrupt cancels
whichever is active. Cancellation is advisory: I/O already issued runs to
completion or fails on its own, and callers decide what to discard.
"""

import asyncio
import logging
import os
import sys
from typing import Awaitable, Callable, TypeVar

from .store import ConversationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InputCancelled(Exception):
    """The pending terminal read was interrupted."""


class ModelCallCancelled(Exception):
    """The in-flight model call was interrupted."""


class ExitRequested(Exception):
    """The operator interrupted the exit confirmation itself."""


def _exit_process() -> None:
    sys.stderr.write("\n")
    sys.stderr.flush()
    os._exit(0)


class CancellationController:
    def __init__(
        self,
        store: ConversationStore,
        *,
        terminate: Callable[[], None] = _exit_process,
    ):
        self._store = store
        self._terminate = terminate
        self._read_task: asyncio.Task | None = None
        self._model_task: asyncio.Task | None = None
        self._exit_requested = False

    @property
    def reading(self) -> bool:
        return self._read_task is not None

    @property
    def calling_model(self) -> bool:
        return self._model_task is not None

    def interrupt(self) -> None:
        """Handle one operator interrupt (Ctrl-C).

        A second interrupt while the exit confirmation is pending ends the
        session at once. The confirmation read is cancelled so the terminal
        layer can restore the tty on its way out, and read() raises
        ExitRequested. With no read to unwind the process is terminated.
        """
        if self._store.interrupted:
            if self._read_task is not None:
                logger.debug("interrupt during exit confirmation, unwinding read")
                self._exit_requested = True
                self._read_task.cancel()
            else:
                logger.debug("interrupt during exit confirmation, terminating")
                self._terminate()
            return
        if self._model_task is not None:
            logger.debug("interrupt: cancelling model call")
            self._model_task.cancel()
        if self._read_task is not None:
            logger.debug("interrupt: cancelling terminal read")
            self._read_task.cancel()

    async def read(self, awaitable: Awaitable[T]) -> T:
        """Await a terminal read as the active read token.

        Raises InputCancelled if an interrupt cancels it, or ExitRequested
        if the interrupt came while the exit confirmation was pending.
        """
        task = asyncio.ensure_future(awaitable)
        self._read_task = task
        try:
            return await _await_token(task, InputCancelled)
        except InputCancelled:
            if self._exit_requested:
                raise ExitRequested() from None
            raise
        finally:
            self._read_task = None
            self._exit_requested = False

    async def call_model(self, awaitable: Awaitable[T]) -> T:
        """Await a model call as the active model token.

        Raises ModelCallCancelled if an interrupt cancels it.
        """
        task = asyncio.ensure_future(awaitable)
        self._model_task = task
        try:
            return await _await_token(task, ModelCallCancelled)
        finally:
            self._model_task = None


async def _await_token(task: asyncio.Task, cancelled_exc: type[Exception]):
    try:
        return await task
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            # The caller itself is being cancelled; don't swallow that.
            task.cancel()
            raise
        raise cancelled_exc() from None
