"""Line- and string-level editing engine behind the file tools.

Every function here is pure: it takes file content and returns new content,
raising ValueError with a model-readable message when the edit cannot be
applied. The caller writes the file only after a successful return, so a
failed edit never touches the disk.
"""

from __future__ import annotations


def replace_once(content: str, old_str: str, new_str: str) -> str:
    """Replace the single occurrence of old_str with new_str.

    Raises ValueError:
      - "not found" if old_str does not occur
      - "matched N times" if old_str occurs more than once
    """
    if not old_str:
        raise ValueError("old_str must not be empty")

    count = content.count(old_str)
    if count == 0:
        raise ValueError("old_str not found")
    if count > 1:
        raise ValueError(
            f"old_str matched {count} times; add surrounding context to make it unique"
        )
    return content.replace(old_str, new_str, 1)


def insert_after(content: str, after_line: int, text: str) -> str:
    """Insert text as new line(s) after line number after_line.

    after_line=0 prepends; after_line equal to the line count appends.
    """
    lines = content.split("\n")
    if content == "":
        lines = []
    line_count = len(lines)
    if after_line < 0 or after_line > line_count:
        raise ValueError(
            f"after_line {after_line} is out of range (0-{line_count})"
        )
    lines[after_line:after_line] = text.split("\n")
    return "\n".join(lines)


def number_lines(content: str, start_line: int = 1, end_line: int = -1) -> str:
    """Render lines start_line..end_line (1-based, inclusive) as ``N\\tline``.

    end_line=-1 means end of file.
    """
    lines = content.split("\n")
    if start_line < 1:
        raise ValueError(f"start_line must be >= 1, got {start_line}")
    if end_line != -1 and end_line < start_line:
        raise ValueError(f"end_line {end_line} is before start_line {start_line}")
    last = len(lines) if end_line == -1 else end_line
    selected = lines[start_line - 1 : last]
    return "\n".join(
        f"{n}\t{line}" for n, line in enumerate(selected, start=start_line)
    )
