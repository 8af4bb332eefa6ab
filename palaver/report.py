"""Error hierarchy and session cost reporting."""

from dataclasses import dataclass
from typing import Iterable, Mapping

from .messages import Usage


class AgentError(Exception):
    """Raised by the turn loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (bad TOML, wrong types, etc.)."""


class ToolSchemaError(AgentError):
    """Raised when a tool invocation's input does not match the tool's schema."""


class UnknownToolError(AgentError):
    """Raised when the model asks for a tool nobody registered."""


class ModelServiceError(AgentError):
    """Raised when the model service fails for any reason other than cancellation."""


TOKENS_PER_MILLION = 1_000_000


@dataclass(frozen=True)
class ModelPricing:
    """Dollars per million tokens."""

    input: float
    output: float
    cache_write_5m: float
    cache_write_1h: float
    cache_read: float

    @classmethod
    def from_dict(cls, d: Mapping[str, float]) -> "ModelPricing":
        return cls(**{k: float(v) for k, v in d.items()})


def total_usage(usages: Iterable[Usage]) -> Usage:
    """Sum a sequence of usage records field by field."""
    inp = out = cw = cr = 0
    for u in usages:
        inp += u.input_tokens
        out += u.output_tokens
        cw += u.cache_creation_tokens
        cr += u.cache_read_tokens
    return Usage(
        input_tokens=inp,
        output_tokens=out,
        cache_creation_tokens=cw,
        cache_read_tokens=cr,
    )


def session_cost(
    model: str,
    usages: Iterable[Usage],
    pricing_per_model: Mapping[str, ModelPricing],
) -> float | None:
    """Total dollar cost of *usages* under *model*'s pricing, or None if unpriced.

    Cache writes are billed at the 5-minute rate, which is what ephemeral
    cache markers request.
    """
    pricing = pricing_per_model.get(model)
    if pricing is None:
        return None
    total = total_usage(usages)
    return (
        total.input_tokens * pricing.input
        + total.output_tokens * pricing.output
        + total.cache_creation_tokens * pricing.cache_write_5m
        + total.cache_read_tokens * pricing.cache_read
    ) / TOKENS_PER_MILLION


def format_session_cost(
    model: str,
    usages: Iterable[Usage],
    pricing_per_model: Mapping[str, ModelPricing],
) -> str:
    cost = session_cost(model, usages, pricing_per_model)
    if cost is None:
        return "Session cost: unknown"
    return f"Session cost: ${cost:.4f}"
