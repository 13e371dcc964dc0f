"""Tests for the build command runner."""

import asyncio
import shlex
import sys

import pytest

from builder.src.services.commands import CommandError, run_command
from builder.src.services.log_streamer import LogStreamer

PYTHON = shlex.quote(sys.executable)

@pytest.fixture
def streamer(sender):
    return LogStreamer(sender=sender, flush_bytes=2048, flush_interval=10)

def process_gone(pid: int) -> bool:
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().rsplit(")", 1)[1].split()[0] == "Z"
    except FileNotFoundError:
        return True

async def test_output_reaches_build_log(tmp_path, streamer, sender):
    await run_command("echo compiling && echo done >&2", tmp_path, "b1", streamer)
    await streamer.ensure_flushed("b1")

    assert sender.text("b1") == "compiling\ndone\n"

async def test_very_long_output_line(tmp_path, streamer, sender):
    await run_command(f"{PYTHON} -c \"print('x' * 70000)\"", tmp_path, "b1", streamer)
    await streamer.ensure_flushed("b1")

    assert sender.text("b1") == "x" * 70000 + "\n"

async def test_multibyte_output_split_across_reads(tmp_path, streamer, sender):
    await run_command(
        f"{PYTHON} -c \"print('\\u00e9' * 9000)\"", tmp_path, "b1", streamer,
        env_vars={"PYTHONIOENCODING": "utf-8"},
    )
    await streamer.ensure_flushed("b1")

    assert sender.text("b1") == "é" * 9000 + "\n"

async def test_non_zero_exit(tmp_path, streamer):
    with pytest.raises(CommandError, match="exited with code 3"):
        await run_command("exit 3", tmp_path, "b1", streamer)

async def test_timeout_kills_whole_process_group(tmp_path, streamer):
    with pytest.raises(CommandError, match="timed out"):
        await run_command("sleep 30 & echo $! > child.pid; wait", tmp_path, "b1", streamer, timeout=0.5)

    child = int((tmp_path / "child.pid").read_text())
    for _ in range(50):
        if process_gone(child):
            break
        await asyncio.sleep(0.1)
    assert process_gone(child)
