"""Model service: streaming LiteLLM calls and message format conversion.

The conversation store keeps Anthropic-style content blocks. LiteLLM speaks
the OpenAI chat format and translates to the provider on the way out, so
this module converts in both directions and maps cache markers onto
``cache_control`` parts, which LiteLLM forwards to Anthropic untouched.
"""

import json
import logging
from typing import Callable, Protocol, Sequence

from .messages import (
    ContentBlock,
    Message,
    ModelReply,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from .report import ModelServiceError, ToolSchemaError

logger = logging.getLogger(__name__)

EPHEMERAL = {"type": "ephemeral"}

_STOP_REASONS = {
    "stop": "end_turn",
    "end_turn": "end_turn",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "tool_use": "tool_use",
    "length": "max_tokens",
    "max_tokens": "max_tokens",
    "stop_sequence": "stop_sequence",
}


class ModelService(Protocol):
    async def invoke(
        self,
        history: Sequence[Message],
        tools: list[dict],
        system_prompt: str | None,
        on_text: Callable[[str], None],
    ) -> ModelReply: ...


# ---------------------------------------------------------------------------
# Outbound conversion
# ---------------------------------------------------------------------------


def _text_part(text: str, cache_marker: bool) -> dict:
    part: dict = {"type": "text", "text": text}
    if cache_marker:
        part["cache_control"] = EPHEMERAL
    return part


def _tool_result_message(block: ToolResultBlock) -> dict:
    text = block.content
    if block.is_error and not text.startswith("error:"):
        text = f"error: {text}"
    return {
        "role": "tool",
        "tool_call_id": block.tool_use_id,
        "content": [_text_part(text, block.cache_marker)],
    }


def _assistant_message(blocks: Sequence[ContentBlock]) -> dict:
    text = "".join(b.text for b in blocks if isinstance(b, TextBlock))
    msg: dict = {"role": "assistant", "content": text or None}
    tool_calls = [
        {
            "id": b.id,
            "type": "function",
            "function": {"name": b.name, "arguments": json.dumps(b.input)},
        }
        for b in blocks
        if isinstance(b, ToolUseBlock)
    ]
    if tool_calls:
        msg["tool_calls"] = tool_calls
    return msg


def to_litellm_messages(
    history: Sequence[Message], system_prompt: str | None = None
) -> list[dict]:
    """Convert store messages into LiteLLM (OpenAI-format) chat messages."""
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    for message in history:
        if not message.has_blocks:
            out.append({"role": message.role, "content": message.content})
            continue
        if message.role == "assistant":
            out.append(_assistant_message(message.content))
            continue
        # Tool results must directly follow the assistant turn that asked for them.
        out.extend(
            _tool_result_message(b)
            for b in message.content
            if isinstance(b, ToolResultBlock)
        )
        parts = [
            _text_part(b.text, b.cache_marker)
            for b in message.content
            if isinstance(b, TextBlock)
        ]
        if parts:
            out.append({"role": "user", "content": parts})
    return out


# ---------------------------------------------------------------------------
# Inbound conversion
# ---------------------------------------------------------------------------


def _count(obj, name: str) -> int:
    return int(getattr(obj, name, 0) or 0)


def usage_from_response(usage) -> Usage:
    """Build a Usage record from a LiteLLM usage object.

    LiteLLM folds cached prompt tokens into prompt_tokens; they are split
    back out so each token is priced once.
    """
    if usage is None:
        return Usage()
    cache_creation = _count(usage, "cache_creation_input_tokens")
    cache_read = _count(usage, "cache_read_input_tokens")
    if not cache_read:
        cache_read = _count(getattr(usage, "prompt_tokens_details", None), "cached_tokens")
    prompt = _count(usage, "prompt_tokens")
    return Usage(
        input_tokens=max(prompt - cache_read - cache_creation, 0),
        output_tokens=_count(usage, "completion_tokens"),
        cache_creation_tokens=cache_creation,
        cache_read_tokens=cache_read,
    )


def reply_from_response(response) -> ModelReply:
    """Convert an assembled LiteLLM ModelResponse into a ModelReply."""
    choice = response.choices[0]
    msg = choice.message
    blocks: list[ContentBlock] = []
    if msg.content:
        blocks.append(TextBlock(text=msg.content))
    for tc in getattr(msg, "tool_calls", None) or []:
        raw = tc.function.arguments or "{}"
        try:
            arguments = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolSchemaError(
                f"tool `{tc.function.name}` ({tc.id}) sent invalid JSON arguments: {e}"
            ) from e
        blocks.append(ToolUseBlock(id=tc.id, name=tc.function.name, input=arguments))
    finish = choice.finish_reason or "stop"
    return ModelReply(
        content=tuple(blocks),
        stop_reason=_STOP_REASONS.get(finish, finish),
        usage=usage_from_response(getattr(response, "usage", None)),
    )


# ---------------------------------------------------------------------------
# LiteLLM service
# ---------------------------------------------------------------------------


class LiteLLMModelService:
    """Streams completions from an Anthropic model through LiteLLM."""

    def __init__(
        self,
        model: str,
        *,
        max_output_tokens: int = 4096,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.api_key = api_key
        self.base_url = base_url

    @property
    def model_str(self) -> str:
        if "/" in self.model:
            return self.model
        return f"anthropic/{self.model}"

    async def invoke(
        self,
        history: Sequence[Message],
        tools: list[dict],
        system_prompt: str | None,
        on_text: Callable[[str], None],
    ) -> ModelReply:
        import litellm

        litellm.suppress_debug_info = True

        messages = to_litellm_messages(history, system_prompt)
        kwargs: dict = dict(
            model=self.model_str,
            messages=messages,
            max_tokens=self.max_output_tokens,
            stream=True,
            stream_options={"include_usage": True},
        )
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.base_url:
            kwargs["api_base"] = self.base_url

        logger.debug(
            "calling %s with %d messages, max_tokens=%d",
            self.model_str,
            len(messages),
            self.max_output_tokens,
        )

        chunks = []
        try:
            stream = await litellm.acompletion(**kwargs)
            async for chunk in stream:
                chunks.append(chunk)
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                text = getattr(delta, "content", None)
                if text:
                    on_text(text)
        except Exception as e:
            raise ModelServiceError(f"model call failed: {e}") from e

        response = litellm.stream_chunk_builder(chunks, messages=messages)
        if response is None:
            raise ModelServiceError("model call returned an empty stream")
        return reply_from_response(response)
