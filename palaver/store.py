"""Conversation store: history, usage log, and run-control flags.

The store owns a single immutable ``ConversationState``. Every transition
builds a new state value and swaps it in, so a reader holding an earlier
state never observes a half-applied change.
"""

import logging
from dataclasses import dataclass, replace

from .messages import Message, Usage, strip_cache_markers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationState:
    running: bool = True
    interrupted: bool = False
    messages: tuple[Message, ...] = ()
    usage_log: tuple[Usage, ...] = ()


INITIAL_STATE = ConversationState()


class ConversationStore:
    """Single writer-owned holder of the conversation state."""

    def __init__(self, state: ConversationState = INITIAL_STATE):
        self._state = state

    # -- Selectors -----------------------------------------------------------

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def interrupted(self) -> bool:
        return self._state.interrupted

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._state.messages

    @property
    def usage_log(self) -> tuple[Usage, ...]:
        return self._state.usage_log

    # -- Transitions ---------------------------------------------------------

    def _commit(self, transition: str, state: ConversationState) -> None:
        logger.debug("dispatch: %s", transition)
        self._state = state

    def append_message(self, message: Message) -> None:
        """Append *message*, clearing cache markers on everything before it."""
        prior = tuple(strip_cache_markers(m) for m in self._state.messages)
        self._commit(
            "append-message", replace(self._state, messages=prior + (message,))
        )

    def append_usage(self, usage: Usage) -> None:
        self._commit(
            "append-usage",
            replace(self._state, usage_log=self._state.usage_log + (usage,)),
        )

    def truncate_messages(self, count: int) -> None:
        """Drop every message past index *count* (rollback to a checkpoint)."""
        if count < 0:
            raise ValueError(f"cannot truncate to a negative count: {count}")
        if count >= len(self._state.messages):
            return
        self._commit(
            "truncate-messages",
            replace(self._state, messages=self._state.messages[:count]),
        )

    def set_running(self, running: bool) -> None:
        self._commit("set-running", replace(self._state, running=running))

    def set_interrupted(self, interrupted: bool) -> None:
        self._commit("set-interrupted", replace(self._state, interrupted=interrupted))

    def reset(self) -> None:
        self._commit("reset", INITIAL_STATE)
