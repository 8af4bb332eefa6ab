"""Conversation value types: messages, content blocks, usage records."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, Union


@dataclass(frozen=True)
class TextBlock:
    text: str
    cache_marker: bool = False


@dataclass(frozen=True)
class ToolUseBlock:
    """A model-requested tool invocation."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False
    cache_marker: bool = False


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]
Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class Message:
    role: Role
    content: str | tuple[ContentBlock, ...]

    @property
    def has_blocks(self) -> bool:
        return not isinstance(self.content, str)

    def tool_uses(self) -> list[ToolUseBlock]:
        """Tool invocation blocks in order of appearance."""
        if not self.has_blocks:
            return []
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def text(self) -> str:
        if not self.has_blocks:
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))


def strip_cache_markers(message: Message) -> Message:
    """Return *message* with every cache marker cleared.

    Plain-string messages are returned unchanged.
    """
    if not message.has_blocks:
        return message
    blocks = tuple(
        replace(b, cache_marker=False) if hasattr(b, "cache_marker") else b
        for b in message.content
    )
    return Message(role=message.role, content=blocks)


def user_text(text: str) -> Message:
    """Build an outbound user message whose single text block is the cache boundary."""
    return Message(role="user", content=(TextBlock(text=text, cache_marker=True),))


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: str
    is_error: bool = False

    def to_block(self, cache_marker: bool = True) -> ToolResultBlock:
        return ToolResultBlock(
            tool_use_id=self.tool_use_id,
            content=self.content,
            is_error=self.is_error,
            cache_marker=cache_marker,
        )


def tool_result_message(results: list[ToolResult]) -> Message:
    """Fold one round of tool results into a single user message."""
    return Message(role="user", content=tuple(r.to_block() for r in results))


StopReason = Literal["end_turn", "tool_use", "max_tokens", "stop_sequence"]


@dataclass(frozen=True)
class ModelReply:
    """Final, fully assembled reply of one streaming model call."""

    content: tuple[ContentBlock, ...]
    stop_reason: str
    usage: Usage
    role: Role = "assistant"

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.content)
