"""Configuration file loading and merging for palaver.

Two optional TOML files feed the session settings:

- global: ``$XDG_CONFIG_HOME/palaver/config.toml`` (``~/.config`` when unset)
- project: ``<base_dir>/palaver.toml``

Command-line flags win over the project file, which wins over the global
file, which wins over the built-in defaults.
"""

import argparse
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .report import ConfigError, ModelPricing

_UNSET = object()  # argparse default meaning "flag not given"


# --- Schema ---

CONFIG_KEYS: dict[str, type] = {
    "model": str,
    "api_key": str,
    "base_url": str,
    "max_output_tokens": int,
    "system_prompt": str,
    "disable_cost_message": bool,
    "color": bool,
    "quiet": bool,
    "debug": bool,
    "pricing_per_model": dict,
}

_TOML_TYPE_NAMES = {str: "str", int: "int", bool: "bool", dict: "table"}

PRICING_FIELDS = ("input", "output", "cache_write_5m", "cache_write_1h", "cache_read")

DEFAULT_MODEL = "claude-opus-4-6"

DEFAULT_PRICING: dict[str, dict[str, float]] = {
    "claude-opus-4-6": {
        "input": 5,
        "output": 25,
        "cache_write_5m": 6.25,
        "cache_write_1h": 10,
        "cache_read": 0.5,
    },
    "claude-sonnet-4-6": {
        "input": 3,
        "output": 15,
        "cache_write_5m": 3.75,
        "cache_write_1h": 6,
        "cache_read": 0.3,
    },
    "claude-haiku-4-5": {
        "input": 1,
        "output": 5,
        "cache_write_5m": 1.25,
        "cache_write_1h": 2,
        "cache_read": 0.1,
    },
}

# Namespace attribute for each config key whose flag is spelled differently.
_FLAG_DEST = {"disable_cost_message": "no_cost"}

# Value used for any namespace attribute that neither the CLI nor a file set.
_BUILTIN_DEFAULTS: dict[str, Any] = {
    "model": DEFAULT_MODEL,
    "api_key": None,
    "base_url": None,
    "max_output_tokens": 4096,
    "system_prompt": None,
    "no_cost": False,
    "color": False,
    "no_color": False,
    "quiet": False,
    "debug": False,
    "pricing_per_model": DEFAULT_PRICING,
}


def global_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / "palaver"


# --- Validation ---


def _describe(value: Any) -> str:
    return _TOML_TYPE_NAMES.get(type(value), type(value).__name__)


def _check_pricing(pricing: dict, source: str) -> None:
    """Every model entry must carry exactly the five pricing fields as numbers."""
    for model, entry in pricing.items():
        where = f"{source}: pricing_per_model.{model}"
        if not isinstance(entry, dict):
            raise ConfigError(f"{where}: expected table, got {_describe(entry)}")
        missing = [name for name in PRICING_FIELDS if name not in entry]
        if missing:
            raise ConfigError(f"{where}: missing {', '.join(missing)}")
        unknown = sorted(set(entry) - set(PRICING_FIELDS))
        if unknown:
            raise ConfigError(f"{where}: unknown field(s) {', '.join(unknown)}")
        for name, value in entry.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(
                    f"{where}.{name}: expected number, got {_describe(value)}"
                )


def _known_keys(raw: dict, source: str) -> dict:
    """Type-check *raw* and return only the keys palaver understands.

    Unknown keys produce a warning on stderr and are dropped.
    """
    known = {}
    for key, value in raw.items():
        expected = CONFIG_KEYS.get(key)
        if expected is None:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue
        # TOML booleans are Python bools, and bool passes isinstance(..., int).
        wrong_bool = isinstance(value, bool) and expected is not bool
        if wrong_bool or not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_TOML_TYPE_NAMES[expected]}, "
                f"got {_describe(value)}"
            )
        known[key] = value

    if "pricing_per_model" in known:
        _check_pricing(known["pricing_per_model"], source)
    return known


def _read_toml(path: Path) -> dict:
    """Parse one config file; a missing file is an empty config."""
    if not path.is_file():
        return {}
    source = str(path)
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{source}: invalid TOML: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"{source}: cannot read file: {e}") from e
    return _known_keys(raw, source)


# --- Public API ---


def load_config(base_dir: Path, *, write_default: bool = True) -> dict:
    """Return the merged file configuration for a session rooted at *base_dir*.

    Only keys actually present in a file appear in the result. If the
    global file is absent and *write_default* is set, a fully commented
    template is written there first so the operator has something to edit.
    """
    global_path = global_config_dir() / "config.toml"
    if write_default and not global_path.exists():
        try:
            global_path.parent.mkdir(parents=True, exist_ok=True)
            global_path.write_text(generate_config(), encoding="utf-8")
        except OSError as e:
            print(f"warning: could not write {global_path}: {e}", file=sys.stderr)

    merged = _read_toml(global_path)
    # Shallow merge: a project pricing table replaces the global one whole.
    merged.update(_read_toml(Path(base_dir).resolve() / "palaver.toml"))
    return merged


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Fill every flag the CLI left at _UNSET, first from *config*, then from defaults."""

    def unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    for key, value in config.items():
        if key == "color":
            # One boolean drives the --color / --no-color pair, and only when
            # neither flag was given.
            if unset("color") and unset("no_color"):
                args.color, args.no_color = value, not value
            continue
        dest = _FLAG_DEST.get(key, key)
        if unset(dest):
            setattr(args, dest, value)

    for dest, default in _BUILTIN_DEFAULTS.items():
        if unset(dest):
            setattr(args, dest, default)


def pricing_table(raw: Mapping[str, Mapping[str, float]]) -> dict[str, ModelPricing]:
    return {model: ModelPricing.from_dict(entry) for model, entry in raw.items()}


def generate_config(project: bool = False) -> str:
    """Return a config template in which every setting is commented out."""
    where = "<project>/palaver.toml" if project else "~/.config/palaver/config.toml"
    lines = [
        f"# palaver configuration file ({where})",
        "#",
        "# Uncomment a line to override the built-in default. Command-line",
        "# flags still take precedence over anything set here.",
        "",
        f'# model = "{DEFAULT_MODEL}"',
        '# api_key = "sk-ant-..."   # ANTHROPIC_API_KEY is used when unset',
        '# base_url = "https://api.anthropic.com"',
        "# max_output_tokens = 4096",
        '# system_prompt = "You are a coding assistant."',
        "",
        "# disable_cost_message = false",
        "# color = true   # omit to detect from the terminal",
        "# quiet = false",
        "# debug = false",
        "",
        "# Dollars per million tokens. Defining this table replaces the",
        "# built-in prices for every model, not just the ones listed.",
    ]
    for model, entry in DEFAULT_PRICING.items():
        lines.append(f'# [pricing_per_model."{model}"]')
        lines.extend(f"# {name} = {entry[name]}" for name in PRICING_FIELDS)
    lines.append("")
    return "\n".join(lines)


@dataclass(frozen=True)
class Settings:
    """What the turn loop needs to know about the session's model and billing."""

    model: str = DEFAULT_MODEL
    pricing_per_model: Mapping[str, ModelPricing] = field(
        default_factory=lambda: pricing_table(DEFAULT_PRICING)
    )
    disable_cost_message: bool = False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Settings":
        return cls(
            model=args.model,
            pricing_per_model=pricing_table(args.pricing_per_model),
            disable_cost_message=args.no_cost,
        )
