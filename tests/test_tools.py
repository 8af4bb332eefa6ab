"""Tests for tools.py: schemas, executors, and dispatch."""

import json

import pytest

from palaver.messages import ToolUseBlock
from palaver.report import ToolSchemaError, UnknownToolError
from palaver.tools import EXECUTORS, TOOLS, dispatch


def _call(name, base_dir, **params):
    return dispatch(ToolUseBlock(id="toolu_1", name=name, input=params), str(base_dir))


# =========================================================================
# Registry and schemas
# =========================================================================


class TestSchemas:
    def test_all_tools_registered(self):
        names = [t["function"]["name"] for t in TOOLS]
        assert names == ["bash", "create_file", "view_file", "str_replace", "insert_lines"]

    def test_function_format(self):
        for tool in TOOLS:
            assert tool["type"] == "function"
            params = tool["function"]["parameters"]
            assert params["type"] == "object"
            assert params["additionalProperties"] is False

    def test_required_fields(self):
        schema = EXECUTORS["view_file"].schema("view_file")
        params = schema["function"]["parameters"]
        assert params["required"] == ["path"]
        assert params["properties"]["end_line"]["default"] == -1


# =========================================================================
# Dispatch errors
# =========================================================================


class TestDispatchErrors:
    def test_unknown_tool(self, tmp_path):
        with pytest.raises(UnknownToolError, match="no executor registered for tool `rm_rf`"):
            _call("rm_rf", tmp_path, path="x")

    def test_missing_field(self, tmp_path):
        with pytest.raises(ToolSchemaError, match="create_file"):
            _call("create_file", tmp_path, path="x")

    def test_extra_field(self, tmp_path):
        with pytest.raises(ToolSchemaError):
            _call("bash", tmp_path, command="true", timeout=5)

    def test_wrong_type(self, tmp_path):
        with pytest.raises(ToolSchemaError):
            _call("insert_lines", tmp_path, path="f", after_line="3", content="x")

    def test_schema_error_runs_nothing(self, tmp_path):
        with pytest.raises(ToolSchemaError):
            _call("create_file", tmp_path, path="new.txt", content=42)
        assert not (tmp_path / "new.txt").exists()


# =========================================================================
# bash
# =========================================================================


class TestBash:
    def test_captures_stdout_and_stderr(self, tmp_path):
        result = _call("bash", tmp_path, command="echo out; echo err >&2")
        assert not result.is_error
        assert result.tool_use_id == "toolu_1"
        assert json.loads(result.content) == {"stdout": "out\n", "stderr": "err\n"}

    def test_runs_in_base_dir(self, tmp_path):
        (tmp_path / "marker.txt").write_text("", encoding="utf-8")
        result = _call("bash", tmp_path, command="ls")
        assert "marker.txt" in json.loads(result.content)["stdout"]

    def test_nonzero_exit_is_error_result(self, tmp_path):
        result = _call("bash", tmp_path, command="echo nope >&2; exit 3")
        assert result.is_error
        assert result.content.startswith("Command failed with exit code 3: echo nope")
        assert "nope" in result.content

    def test_announces_command(self, tmp_path, capsys):
        _call("bash", tmp_path, command="true")
        assert "Executing bash tool: true" in capsys.readouterr().err


# =========================================================================
# create_file
# =========================================================================


class TestCreateFile:
    def test_creates(self, tmp_path):
        result = _call("create_file", tmp_path, path="new.txt", content="hi\n")
        assert result.content == "File new.txt created successfully"
        assert (tmp_path / "new.txt").read_text(encoding="utf-8") == "hi\n"

    def test_refuses_to_overwrite(self, tmp_path):
        (tmp_path / "old.txt").write_text("keep", encoding="utf-8")
        result = _call("create_file", tmp_path, path="old.txt", content="clobber")
        assert result.is_error
        assert result.content == "File old.txt already exists"
        assert (tmp_path / "old.txt").read_text(encoding="utf-8") == "keep"

    def test_missing_parent_is_error(self, tmp_path):
        result = _call("create_file", tmp_path, path="no/such/dir.txt", content="")
        assert result.is_error
        assert "Failed to create" in result.content


# =========================================================================
# view_file
# =========================================================================


class TestViewFile:
    def test_numbered_lines(self, tmp_path):
        (tmp_path / "f.txt").write_text("alpha\nbeta\ngamma", encoding="utf-8")
        result = _call("view_file", tmp_path, path="f.txt")
        assert result.content == "1\talpha\n2\tbeta\n3\tgamma"

    def test_slice(self, tmp_path):
        (tmp_path / "f.txt").write_text("a\nb\nc\nd", encoding="utf-8")
        result = _call("view_file", tmp_path, path="f.txt", start_line=2, end_line=3)
        assert result.content == "2\tb\n3\tc"

    def test_directory_listing(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "file.txt").write_text("", encoding="utf-8")
        result = _call("view_file", tmp_path, path=".")
        assert result.content.split("\n") == ["file.txt", "sub/"]

    def test_missing_path(self, tmp_path):
        result = _call("view_file", tmp_path, path="ghost.txt")
        assert result.is_error
        assert result.content == "Path ghost.txt does not exist"

    def test_bad_range(self, tmp_path):
        (tmp_path / "f.txt").write_text("a\nb", encoding="utf-8")
        result = _call("view_file", tmp_path, path="f.txt", start_line=2, end_line=1)
        assert result.is_error

    def test_absolute_path(self, tmp_path):
        target = tmp_path / "abs.txt"
        target.write_text("x", encoding="utf-8")
        result = _call("view_file", "/", path=str(target))
        assert result.content == "1\tx"


# =========================================================================
# str_replace / insert_lines
# =========================================================================


class TestStrReplace:
    def test_replaces(self, tmp_path):
        f = tmp_path / "f.py"
        f.write_text("x = 1\ny = 2\n", encoding="utf-8")
        result = _call("str_replace", tmp_path, path="f.py", old_str="y = 2", new_str="y = 3")
        assert result.content == "File f.py updated successfully"
        assert f.read_text(encoding="utf-8") == "x = 1\ny = 3\n"

    def test_not_found_leaves_file(self, tmp_path):
        f = tmp_path / "f.py"
        f.write_text("x = 1\n", encoding="utf-8")
        result = _call("str_replace", tmp_path, path="f.py", old_str="zzz", new_str="q")
        assert result.is_error
        assert "not found" in result.content
        assert f.read_text(encoding="utf-8") == "x = 1\n"

    def test_ambiguous_leaves_file(self, tmp_path):
        f = tmp_path / "f.py"
        f.write_text("a\na\n", encoding="utf-8")
        result = _call("str_replace", tmp_path, path="f.py", old_str="a", new_str="b")
        assert result.is_error
        assert "matched 2 times" in result.content
        assert f.read_bytes() == b"a\na\n"

    def test_missing_file(self, tmp_path):
        result = _call("str_replace", tmp_path, path="nope.py", old_str="a", new_str="b")
        assert result.is_error
        assert result.content == "File nope.py does not exist"


class TestInsertLines:
    def test_inserts(self, tmp_path):
        f = tmp_path / "f.txt"
        f.write_text("one\nthree", encoding="utf-8")
        result = _call("insert_lines", tmp_path, path="f.txt", after_line=1, content="two")
        assert not result.is_error
        assert f.read_text(encoding="utf-8") == "one\ntwo\nthree"

    def test_prepend(self, tmp_path):
        f = tmp_path / "f.txt"
        f.write_text("one\ntwo", encoding="utf-8")
        result = _call("insert_lines", tmp_path, path="f.txt", after_line=0, content="zero")
        assert not result.is_error
        assert f.read_text(encoding="utf-8") == "zero\none\ntwo"

    def test_append_after_last_line(self, tmp_path):
        f = tmp_path / "f.txt"
        f.write_text("one\ntwo", encoding="utf-8")
        result = _call("insert_lines", tmp_path, path="f.txt", after_line=2, content="three")
        assert not result.is_error
        assert f.read_text(encoding="utf-8") == "one\ntwo\nthree"

    def test_past_end_leaves_file(self, tmp_path):
        f = tmp_path / "f.txt"
        f.write_text("one", encoding="utf-8")
        result = _call("insert_lines", tmp_path, path="f.txt", after_line=4, content="x")
        assert result.is_error
        assert "out of range (0-1)" in result.content
        assert f.read_bytes() == b"one"

    def test_negative_leaves_file(self, tmp_path):
        f = tmp_path / "f.txt"
        f.write_text("one\ntwo", encoding="utf-8")
        result = _call("insert_lines", tmp_path, path="f.txt", after_line=-1, content="x")
        assert result.is_error
        assert "after_line -1 is out of range (0-2)" in result.content
        assert f.read_bytes() == b"one\ntwo"
