"""Tests for buffered build log delivery."""

import asyncio

from builder.src.services.log_streamer import LogStreamer

async def test_small_writes_are_buffered(sender):
    streamer = LogStreamer(sender=sender, flush_bytes=2048, flush_interval=10)

    await streamer.write("b1", "hello\n")

    assert sender.sent == []
    assert streamer.pending("b1") == 6

async def test_flushes_at_size_threshold(sender):
    streamer = LogStreamer(sender=sender, flush_bytes=2048, flush_interval=10)

    await streamer.write("b1", "a" * 2000)
    await streamer.write("b1", "b" * 100)

    assert sender.sent == [("b1", "a" * 2000 + "b" * 100)]
    assert streamer.pending("b1") == 0

async def test_flushes_after_interval(sender):
    streamer = LogStreamer(sender=sender, flush_bytes=2048, flush_interval=0.05)

    await streamer.write("b1", "one\n")
    await streamer.write("b1", "two\n")
    await asyncio.sleep(0.2)

    assert sender.sent == [("b1", "one\ntwo\n")]

async def test_builds_are_buffered_separately(sender):
    streamer = LogStreamer(sender=sender, flush_bytes=2048, flush_interval=10)

    await streamer.log("b1", "first")
    await streamer.log("b2", "second")
    await streamer.ensure_flushed("b1")

    assert sender.sent == [("b1", "first\n")]
    assert streamer.pending("b2") == 7

async def test_ensure_flushed_drains_and_forgets(sender):
    streamer = LogStreamer(sender=sender, flush_bytes=2048, flush_interval=10)

    await streamer.log("b1", "done")
    await streamer.ensure_flushed("b1")
    await asyncio.sleep(0)

    assert sender.text("b1") == "done\n"
    assert "b1" not in streamer.tracked()

async def test_ensure_flushed_cancels_timer(sender):
    streamer = LogStreamer(sender=sender, flush_bytes=2048, flush_interval=0.05)

    await streamer.log("b1", "done")
    await streamer.ensure_flushed("b1")
    await asyncio.sleep(0.1)

    assert len(sender.sent) == 1

async def test_send_failure_is_not_raised():
    async def failing(build_id, text):
        raise ConnectionError("control plane down")

    streamer = LogStreamer(sender=failing, flush_bytes=4, flush_interval=10)

    await streamer.write("b1", "too long")
    await streamer.ensure_flushed("b1")

    assert streamer.tracked() == []
