"""Tests for the event channel and the event sources."""

import asyncio
import io
import json
import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from eventmacro.core.config import load_from_dict
from eventmacro.core.errors import IngestionError
from eventmacro.sources import (
    ChannelClosed,
    DirectorySource,
    EventChannel,
    FileSource,
    StdinSource,
    TcpSource,
    build_sources_from_config,
    wildcard_match,
)


async def recv_within(channel: EventChannel, timeout: float = 2.0):
    return await asyncio.wait_for(channel.recv(), timeout)


class TestEventChannel:
    """Bounded channel semantics."""

    @pytest.mark.asyncio
    async def test_fifo(self):
        channel = EventChannel(4)
        await channel.send(1)
        await channel.send(2)
        assert await channel.recv() == 1
        assert await channel.recv() == 2

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self):
        channel = EventChannel(4)
        channel.close()
        with pytest.raises(ChannelClosed):
            await channel.send({"type": "x"})

    @pytest.mark.asyncio
    async def test_recv_drains_then_returns_none(self):
        channel = EventChannel(4)
        await channel.send("a")
        channel.close()

        assert await channel.recv() == "a"
        assert await channel.recv() is None

    @pytest.mark.asyncio
    async def test_send_waits_while_full(self):
        channel = EventChannel(1)
        await channel.send("first")

        pending = asyncio.create_task(channel.send("second"))
        await asyncio.sleep(0.05)
        assert not pending.done()

        assert await channel.recv() == "first"
        await asyncio.wait_for(pending, 1.0)
        assert await channel.recv() == "second"

    @pytest.mark.asyncio
    async def test_close_wakes_blocked_sender(self):
        channel = EventChannel(1)
        await channel.send("first")
        pending = asyncio.create_task(channel.send("second"))
        await asyncio.sleep(0.01)

        channel.close()

        with pytest.raises(ChannelClosed):
            await asyncio.wait_for(pending, 1.0)

    @pytest.mark.asyncio
    async def test_close_wakes_blocked_receiver(self):
        channel = EventChannel(1)
        waiting = asyncio.create_task(channel.recv())
        await asyncio.sleep(0.01)

        channel.close()

        assert await asyncio.wait_for(waiting, 1.0) is None

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            EventChannel(0)


class TestFileSource:
    """Single-file polling."""

    @pytest.mark.asyncio
    async def test_dispatches_once_per_content(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text('{"type": "ping"}')
        source = FileSource(path, poll_ms=10)
        channel = EventChannel(8)

        assert await source.poll_once(channel) is True
        assert await source.poll_once(channel) is False
        assert await source.poll_once(channel) is False

        assert channel.qsize() == 1
        assert await channel.recv() == {"type": "ping"}
        assert path.exists()

    @pytest.mark.asyncio
    async def test_changed_content_dispatches_again(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text('{"type": "a"}')
        source = FileSource(path)
        channel = EventChannel(8)

        await source.poll_once(channel)
        path.write_text('{"type": "bb"}')
        assert await source.poll_once(channel) is True

        assert channel.qsize() == 2

    @pytest.mark.asyncio
    async def test_delete_on_success(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text('{"type": "ping"}')
        source = FileSource(path, delete_on_success=True)
        channel = EventChannel(8)

        assert await source.poll_once(channel) is True
        assert not path.exists()

        path.write_text('{"type": "ping"}')
        assert await source.poll_once(channel) is True
        assert channel.qsize() == 2

    @pytest.mark.asyncio
    async def test_malformed_is_kept_and_retried(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text('{"type": ')
        source = FileSource(path, delete_on_success=True)
        channel = EventChannel(8)

        assert await source.poll_once(channel) is False
        assert path.exists()

        path.write_text('{"type": "fixed"}')
        assert await source.poll_once(channel) is True
        assert await channel.recv() == {"type": "fixed"}

    @pytest.mark.asyncio
    async def test_empty_and_missing_are_ignored(self, tmp_path):
        path = tmp_path / "event.json"
        source = FileSource(path)
        channel = EventChannel(8)

        assert await source.poll_once(channel) is False
        path.write_text("   \n")
        assert await source.poll_once(channel) is False
        assert channel.qsize() == 0

    @pytest.mark.asyncio
    async def test_directory_path_is_not_a_file(self, tmp_path):
        source = FileSource(tmp_path)
        assert await source.poll_once(EventChannel(1)) is False

    def test_poll_floor(self, tmp_path):
        assert FileSource(tmp_path / "x", poll_ms=1).timer.interval == 0.01

    @pytest.mark.asyncio
    async def test_run_until_channel_closed(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text('{"type": "ping", "n": 1}')
        source = FileSource(path, poll_ms=10)
        channel = EventChannel(8)

        task = asyncio.create_task(source.run(channel))
        assert await recv_within(channel) == {"type": "ping", "n": 1}

        channel.close()
        await asyncio.wait_for(task, 1.0)
        assert channel.qsize() == 0


class TestWildcard:

    @pytest.mark.parametrize("name,pattern,expected", [
        ("event.json", "*.json", True),
        ("event.json.tmp", "*.json", False),
        ("evt_001.json", "evt_*.json", True),
        ("other_001.json", "evt_*.json", False),
        ("a.json", "a.json", True),
        ("A.json", "a.json", False),
        ("abcde", "a*c*e", True),
        ("abde", "a*c*e", False),
        ("aXbXc", "a*b*c", True),
        ("ab", "ab*ab", False),
        ("abab", "ab*ab", True),
        ("", "*", True),
        ("anything", "*", True),
        ("x", "**", True),
    ])
    def test_cases(self, name, pattern, expected):
        assert wildcard_match(name, pattern) is expected


class TestDirectorySource:
    """Directory polling."""

    @pytest.mark.asyncio
    async def test_one_file_per_tick_in_name_order(self, tmp_path):
        (tmp_path / "b.json").write_text('{"n": 2}')
        (tmp_path / "a.json").write_text('{"n": 1}')
        source = DirectorySource(tmp_path, pattern="*.json")
        channel = EventChannel(8)

        assert source.scan() == 2
        assert await source.process_next(channel) is True
        assert channel.qsize() == 1
        assert not (tmp_path / "a.json").exists()
        assert (tmp_path / "b.json").exists()

        assert await source.process_next(channel) is True
        assert [await channel.recv(), await channel.recv()] == [{"n": 1}, {"n": 2}]
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_pattern_filters_names(self, tmp_path):
        (tmp_path / "keep.json").write_text('{"n": 1}')
        (tmp_path / "skip.txt").write_text('{"n": 2}')
        source = DirectorySource(tmp_path, pattern="*.json")

        source.scan()
        assert [p.name for p in source.pending] == ["keep.json"]

    @pytest.mark.asyncio
    async def test_rescan_does_not_duplicate(self, tmp_path):
        (tmp_path / "a.json").write_text('{"n": 1}')
        source = DirectorySource(tmp_path)

        assert source.scan() == 1
        assert source.scan() == 0

    @pytest.mark.asyncio
    async def test_malformed_file_stays_on_disk(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{oops")
        source = DirectorySource(tmp_path, pattern="*.json")
        channel = EventChannel(8)

        source.scan()
        assert await source.process_next(channel) is False
        assert bad.exists()
        assert source.pending == []

        # rediscovered on the next scan
        assert source.scan() == 1

    @pytest.mark.asyncio
    async def test_empty_file_stays_on_disk(self, tmp_path):
        empty = tmp_path / "empty.json"
        empty.write_text("  ")
        source = DirectorySource(tmp_path)
        channel = EventChannel(8)

        source.scan()
        assert await source.process_next(channel) is False
        assert empty.exists()
        assert channel.qsize() == 0

    @pytest.mark.asyncio
    async def test_recursive(self, tmp_path):
        nested = tmp_path / "sub" / "deeper"
        nested.mkdir(parents=True)
        (nested / "e.json").write_text('{"n": 1}')

        assert DirectorySource(tmp_path, recursive=False).scan() == 0
        assert DirectorySource(tmp_path, recursive=True).scan() == 1

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        source = DirectorySource(tmp_path / "absent")
        assert source.scan() == 0
        assert await source.process_next(EventChannel(1)) is False

    @pytest.mark.asyncio
    async def test_run_consumes_directory(self, tmp_path):
        for i in range(3):
            (tmp_path / f"e{i}.json").write_text(json.dumps({"n": i}))
        source = DirectorySource(tmp_path, pattern="e*.json", poll_ms=10)
        channel = EventChannel(8)

        task = asyncio.create_task(source.run(channel))
        received = [await recv_within(channel) for _ in range(3)]
        channel.close()
        await asyncio.wait_for(task, 1.0)

        assert received == [{"n": 0}, {"n": 1}, {"n": 2}]


class TestStdinSource:
    """Line-oriented input from an injected stream."""

    @pytest.mark.asyncio
    async def test_reads_until_eof(self):
        stream = io.StringIO('{"type": "a"}\n\nnot json\n  {"type": "b"}  \n')
        source = StdinSource(stream)
        channel = EventChannel(8)

        await asyncio.wait_for(source.run(channel), 2.0)

        assert channel.qsize() == 2
        assert await channel.recv() == {"type": "a"}
        assert await channel.recv() == {"type": "b"}

    @pytest.mark.asyncio
    async def test_last_line_without_newline(self):
        source = StdinSource(io.StringIO('{"type": "tail"}'))
        channel = EventChannel(8)

        await asyncio.wait_for(source.run(channel), 2.0)
        assert await channel.recv() == {"type": "tail"}

    @pytest.mark.asyncio
    async def test_stops_when_channel_closed(self):
        source = StdinSource(io.StringIO('{"n": 1}\n{"n": 2}\n'))
        channel = EventChannel(8)
        channel.close()

        await asyncio.wait_for(source.run(channel), 2.0)
        assert channel.qsize() == 0
        assert not source.reader.is_alive()

    @pytest.mark.asyncio
    async def test_reader_thread_exits_when_closed_mid_stream(self):
        stream = io.StringIO("".join(f'{{"n": {i}}}\n' for i in range(5)))
        source = StdinSource(stream)
        channel = EventChannel(1)
        task = asyncio.create_task(source.run(channel))

        assert await asyncio.wait_for(channel.recv(), 2.0) == {"n": 0}
        channel.close()
        await asyncio.wait_for(task, 2.0)

        assert not source.reader.is_alive()
        assert not [t for t in threading.enumerate() if t.name == "eventmacro-stdin"]


class TestTcpSource:
    """NDJSON over a real loopback socket."""

    async def _start(self, channel, **kwargs):
        source = TcpSource("127.0.0.1", 0, **kwargs)
        task = asyncio.create_task(source.run(channel))
        await asyncio.wait_for(source.started.wait(), 2.0)
        reader, writer = await asyncio.open_connection("127.0.0.1", source.port)
        return source, task, reader, writer

    async def _finish(self, channel, task, writer):
        writer.close()
        channel.close()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_ok_and_error_responses(self):
        channel = EventChannel(8)
        source, task, reader, writer = await self._start(channel)

        writer.write(b'{"type": "one"}\n')
        writer.write(b'{broken\n')
        writer.write(b'{"type": "two"}\n')
        await writer.drain()

        first = await asyncio.wait_for(reader.readline(), 2.0)
        second = await asyncio.wait_for(reader.readline(), 2.0)
        third = await asyncio.wait_for(reader.readline(), 2.0)

        assert first == b"OK\n"
        assert second.startswith(b"ERROR ")
        assert third == b"OK\n"
        assert await channel.recv() == {"type": "one"}
        assert await channel.recv() == {"type": "two"}

        await self._finish(channel, task, writer)

    @pytest.mark.asyncio
    async def test_invalid_utf8_rejected(self):
        channel = EventChannel(8)
        source, task, reader, writer = await self._start(channel)

        writer.write(b'{"type": "caf\xe9"}\n')
        writer.write(b'{"type": "ok"}\n')
        await writer.drain()

        first = await asyncio.wait_for(reader.readline(), 2.0)
        second = await asyncio.wait_for(reader.readline(), 2.0)

        assert first == b"ERROR invalid utf-8\n"
        assert second == b"OK\n"
        assert channel.qsize() == 1
        assert await channel.recv() == {"type": "ok"}

        await self._finish(channel, task, writer)

    @pytest.mark.asyncio
    async def test_over_long_line_rejected_and_connection_kept(self):
        channel = EventChannel(8)
        source, task, reader, writer = await self._start(channel, max_line_bytes=1024)

        writer.write(b'{"pad": "' + b"x" * 4096 + b'"}\n')
        writer.write(b'{"type": "after"}\n')
        await writer.drain()

        assert (await asyncio.wait_for(reader.readline(), 2.0)).startswith(b"ERROR ")
        assert await asyncio.wait_for(reader.readline(), 2.0) == b"OK\n"
        assert await recv_within(channel) == {"type": "after"}

        await self._finish(channel, task, writer)

    @pytest.mark.asyncio
    async def test_no_ack_writes_nothing(self):
        channel = EventChannel(8)
        source, task, reader, writer = await self._start(channel, ack=False)

        writer.write(b'nope\n{"type": "quiet"}\n')
        await writer.drain()

        assert await recv_within(channel) == {"type": "quiet"}
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(reader.readline(), 0.2)

        await self._finish(channel, task, writer)

    @pytest.mark.asyncio
    async def test_concurrent_connections(self):
        channel = EventChannel(8)
        source, task, reader1, writer1 = await self._start(channel)
        reader2, writer2 = await asyncio.open_connection("127.0.0.1", source.port)

        writer2.write(b'{"from": 2}\n')
        await writer2.drain()
        assert await asyncio.wait_for(reader2.readline(), 2.0) == b"OK\n"

        writer1.write(b'{"from": 1}\n')
        await writer1.drain()
        assert await asyncio.wait_for(reader1.readline(), 2.0) == b"OK\n"

        assert [await channel.recv(), await channel.recv()] == [{"from": 2}, {"from": 1}]

        writer2.close()
        await self._finish(channel, task, writer1)

    @pytest.mark.asyncio
    async def test_closing_channel_closes_connections(self):
        channel = EventChannel(8)
        source, task, reader, writer = await self._start(channel)

        channel.close()
        await asyncio.wait_for(task, 2.0)

        assert await asyncio.wait_for(reader.read(), 2.0) == b""
        writer.close()

    @pytest.mark.asyncio
    async def test_bind_failure(self):
        channel = EventChannel(8)
        first = TcpSource("127.0.0.1", 0)
        task = asyncio.create_task(first.run(channel))
        await asyncio.wait_for(first.started.wait(), 2.0)

        second = TcpSource("127.0.0.1", first.port)
        with pytest.raises(IngestionError):
            await second.run(channel)

        channel.close()
        await asyncio.wait_for(task, 2.0)


class TestBuildSources:

    def test_built_in_config_order(self, tmp_path):
        cfg = load_from_dict({"sources": [
            {"type": "tcp", "bind": "127.0.0.1:0", "ack": False},
            {"type": "file", "path": str(tmp_path / "e.json"), "poll_ms": 50},
            {"type": "directory", "path": str(tmp_path), "pattern": "*.json"},
            {"type": "stdin"},
        ]})

        sources = build_sources_from_config(cfg.sources)

        assert [type(s) for s in sources] == [TcpSource, FileSource, DirectorySource, StdinSource]
        assert sources[0].ack is False
        assert sources[1].timer.interval == 0.05
        assert sources[2].pattern == "*.json"
