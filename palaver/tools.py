"""Tool definitions, input schemas, and the name -> executor dispatch table."""

import json
import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import fmt
from .edit import insert_after, number_lines, replace_once
from .messages import ToolResult, ToolUseBlock
from .report import ToolSchemaError, UnknownToolError

logger = logging.getLogger(__name__)


class ToolFailed(Exception):
    """An executor could not carry out a well-formed request."""


# ---------------------------------------------------------------------------
# Input schemas
# ---------------------------------------------------------------------------


class _ToolInput(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)


class BashInput(_ToolInput):
    command: str = Field(description="The bash command to execute.")


class CreateFileInput(_ToolInput):
    path: str = Field(description="Path of the file to create. Must not exist yet.")
    content: str = Field(description="Full content of the new file.")


class ViewFileInput(_ToolInput):
    path: str = Field(description="Path to the file or directory to view.")
    start_line: int = Field(
        default=1, description="1-based first line to show. Defaults to 1."
    )
    end_line: int = Field(
        default=-1,
        description="1-based last line to show (inclusive). -1 means end of file.",
    )


class StrReplaceInput(_ToolInput):
    path: str = Field(description="Path to the file to edit.")
    old_str: str = Field(
        description="Exact text to replace. Must occur exactly once in the file."
    )
    new_str: str = Field(description="Replacement text.")


class InsertLinesInput(_ToolInput):
    path: str = Field(description="Path to the file to edit.")
    after_line: int = Field(
        description="Insert after this 1-based line number. 0 inserts at the top."
    )
    content: str = Field(description="Text to insert.")


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def _resolve(path: str, base_dir: str) -> Path:
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return Path(base_dir) / p


def _shell() -> str:
    return shutil.which("bash") or "/bin/sh"


def _run_bash(args: BashInput, base_dir: str) -> str:
    fmt.tool_call("bash", args.command)
    popen_kwargs: dict = dict(
        capture_output=True,
        stdin=subprocess.DEVNULL,
        cwd=base_dir,
        text=True,
        errors="replace",
    )
    if sys.platform != "win32":
        # Keep Ctrl-C aimed at the agent, not the child.
        popen_kwargs["start_new_session"] = True
    try:
        proc = subprocess.run([_shell(), "-c", args.command], **popen_kwargs)
    except OSError as e:
        raise ToolFailed(f"failed to start shell command: {e}") from e
    if proc.returncode != 0:
        detail = proc.stderr or proc.stdout
        msg = f"Command failed with exit code {proc.returncode}: {args.command}"
        raise ToolFailed(f"{msg}\n{detail}" if detail else msg)
    return json.dumps({"stdout": proc.stdout, "stderr": proc.stderr})


def _create_file(args: CreateFileInput, base_dir: str) -> str:
    fmt.tool_call("create_file", args.path)
    resolved = _resolve(args.path, base_dir)
    try:
        with resolved.open("x", encoding="utf-8") as f:
            f.write(args.content)
    except FileExistsError:
        raise ToolFailed(f"File {args.path} already exists")
    except OSError as e:
        raise ToolFailed(f"Failed to create {args.path}: {e}") from e
    return f"File {args.path} created successfully"


def _view_file(args: ViewFileInput, base_dir: str) -> str:
    fmt.tool_call("view_file", args.path)
    resolved = _resolve(args.path, base_dir)
    if not resolved.exists():
        raise ToolFailed(f"Path {args.path} does not exist")

    if resolved.is_dir():
        try:
            children = sorted(resolved.iterdir())
        except OSError as e:
            raise ToolFailed(str(e)) from e
        return "\n".join(c.name + ("/" if c.is_dir() else "") for c in children)

    try:
        text = resolved.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as e:
        raise ToolFailed(f"Failed to read {args.path}: {e}") from e
    try:
        return number_lines(text, args.start_line, args.end_line)
    except ValueError as e:
        raise ToolFailed(str(e)) from e


def _edit_in_place(path: str, base_dir: str, edit: Callable[[str], str]) -> str:
    resolved = _resolve(path, base_dir)
    if not resolved.is_file():
        raise ToolFailed(f"File {path} does not exist")
    try:
        content = resolved.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as e:
        raise ToolFailed(f"Failed to read {path}: {e}") from e
    try:
        new_content = edit(content)
    except ValueError as e:
        raise ToolFailed(f"{path}: {e}") from e
    try:
        resolved.write_text(new_content, encoding="utf-8")
    except OSError as e:
        raise ToolFailed(f"Failed to write {path}: {e}") from e
    return f"File {path} updated successfully"


def _str_replace(args: StrReplaceInput, base_dir: str) -> str:
    fmt.tool_call("str_replace", args.path)
    return _edit_in_place(
        args.path, base_dir, lambda c: replace_once(c, args.old_str, args.new_str)
    )


def _insert_lines(args: InsertLinesInput, base_dir: str) -> str:
    fmt.tool_call("insert_lines", f"{args.path} after line {args.after_line}")
    return _edit_in_place(
        args.path, base_dir, lambda c: insert_after(c, args.after_line, args.content)
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Executor:
    description: str
    input_model: type[_ToolInput]
    run: Callable[[_ToolInput, str], str]

    def schema(self, name: str) -> dict:
        parameters = self.input_model.model_json_schema()
        parameters.pop("title", None)
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": name,
                "description": self.description,
                "parameters": parameters,
            },
        }


EXECUTORS: dict[str, Executor] = {
    "bash": Executor(
        "Execute a bash command and return its stdout and stderr.",
        BashInput,
        _run_bash,
    ),
    "create_file": Executor(
        "Create a new file with the given content. Fails if the file already exists.",
        CreateFileInput,
        _create_file,
    ),
    "view_file": Executor(
        "View a file with line numbers (optionally a start_line..end_line slice), "
        "or list the entries of a directory.",
        ViewFileInput,
        _view_file,
    ),
    "str_replace": Executor(
        "Replace the one occurrence of old_str in a file with new_str. "
        "Fails if old_str is missing or occurs more than once.",
        StrReplaceInput,
        _str_replace,
    ),
    "insert_lines": Executor(
        "Insert text after a given line of a file. after_line=0 inserts at the top.",
        InsertLinesInput,
        _insert_lines,
    ),
}

TOOLS = [executor.schema(name) for name, executor in EXECUTORS.items()]


def dispatch(invocation: ToolUseBlock, base_dir: str = ".") -> ToolResult:
    """Validate and execute one tool invocation.

    Execution failures come back as ``ToolResult(is_error=True)``.

    Raises:
        UnknownToolError: no executor is registered under the invocation's name.
        ToolSchemaError: the input does not match the tool's schema.
    """
    executor = EXECUTORS.get(invocation.name)
    if executor is None:
        raise UnknownToolError(
            f"no executor registered for tool `{invocation.name}`"
        )
    try:
        args = executor.input_model.model_validate(invocation.input)
    except ValidationError as e:
        raise ToolSchemaError(
            f"invalid input for tool `{invocation.name}` ({invocation.id}): {e}"
        ) from e

    logger.debug("dispatching %s (%s)", invocation.name, invocation.id)
    try:
        content = executor.run(args, base_dir)
    except ToolFailed as e:
        fmt.tool_error(invocation.name, str(e).split("\n", 1)[0])
        return ToolResult(tool_use_id=invocation.id, content=str(e), is_error=True)
    return ToolResult(tool_use_id=invocation.id, content=content)
