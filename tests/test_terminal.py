"""Tests for the prompt_toolkit line reader, driven through pipe and pty inputs."""

import asyncio
import os
import sys

import pytest
from prompt_toolkit.input import create_input, create_pipe_input
from prompt_toolkit.output import DummyOutput

from palaver.cancel import CancellationController, ExitRequested
from palaver.store import ConversationStore
from palaver.terminal import PromptToolkitReader


class TestPromptToolkitReader:
    @pytest.mark.asyncio
    async def test_reads_line(self, tmp_path):
        history = tmp_path / "sub" / "history"
        with create_pipe_input() as inp:
            reader = PromptToolkitReader(
                lambda: None, history_path=history, input=inp, output=DummyOutput()
            )
            inp.send_text("hello\r")
            assert await reader.question("> ") == "hello"
        assert "hello" in history.read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_ctrl_c_calls_handler(self):
        interrupts = []
        with create_pipe_input() as inp:
            reader = PromptToolkitReader(
                lambda: interrupts.append(1), input=inp, output=DummyOutput()
            )
            inp.send_text("\x03done\r")
            assert await reader.question("> ") == "done"
        assert interrupts == [1]

    @pytest.mark.asyncio
    async def test_ctrl_d_on_empty_line_is_eof(self):
        with create_pipe_input() as inp:
            reader = PromptToolkitReader(lambda: None, input=inp, output=DummyOutput())
            inp.send_text("\x04")
            with pytest.raises(EOFError):
                await reader.question("> ")


async def _wait_for(condition, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.skipif(sys.platform == "win32", reason="needs a pseudo-terminal")
class TestTtyModes:
    """The reader runs on a real pty so raw mode is actually entered and left."""

    @pytest.mark.asyncio
    async def test_ctrl_c_at_exit_confirmation_restores_tty(self):
        import pty
        import termios

        master, slave = pty.openpty()
        stdin = os.fdopen(slave, "r", closefd=False)
        try:
            before = termios.tcgetattr(slave)[3]
            assert before & termios.ICANON and before & termios.ECHO

            store = ConversationStore()
            store.set_interrupted(True)
            terminated = []
            controller = CancellationController(
                store, terminate=lambda: terminated.append(1)
            )
            reader = PromptToolkitReader(
                controller.interrupt, input=create_input(stdin), output=DummyOutput()
            )
            pending = asyncio.ensure_future(controller.read(reader.question("y? ")))

            # Wait until prompt_toolkit has switched the tty to raw mode.
            await _wait_for(lambda: not termios.tcgetattr(slave)[3] & termios.ICANON)
            os.write(master, b"\x03")
            with pytest.raises(ExitRequested):
                await asyncio.wait_for(pending, 5)

            after = termios.tcgetattr(slave)[3]
            assert after & termios.ECHO
            assert after & termios.ICANON
            assert after == before
            assert terminated == []
        finally:
            stdin.close()
            os.close(slave)
            os.close(master)
