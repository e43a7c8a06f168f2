"""Tests for device tracking."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from adbwire.adb.devices import DeviceRecord
from adbwire.adb.errors import RemoteFailure
from adbwire.adb.tracker import DeviceTracker

from conftest import FakeADBServer, Reply, fail, framed, free_port, make_client, okay


def ids(snapshot):
    return [d.id for d in snapshot]


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestDeviceTracker:
    """Test snapshot delivery."""

    def test_snapshots_delivered_in_order(self):
        """A slow first snapshot does not let later ones overtake it."""
        client = make_client(free_port())
        received = []

        async def parse(data):
            if data == b"first\tdevice\n":
                await asyncio.sleep(0.05)
            return [DeviceRecord(id=data.split(b"\t")[0].decode(), state="device")]

        async def scenario():
            with patch.object(client, "parse_devices", parse):
                tracker = DeviceTracker(client, received.append).start(read=False)
                for name in (b"first", b"second", b"third"):
                    tracker.submit(name + b"\tdevice\n")
                tracker.finish()
                await tracker.wait_closed()
                return tracker

        tracker = asyncio.run(scenario())

        assert [ids(s) for s in received] == [["first"], ["second"], ["third"]]
        assert tracker.closed

    def test_async_callback(self):
        """Awaitable callbacks are awaited before the next snapshot."""
        client = make_client(free_port())
        events = []

        async def callback(devices):
            events.append(("start", ids(devices)))
            await asyncio.sleep(0.01)
            events.append(("end", ids(devices)))

        async def scenario():
            with patch.object(client, "shell", AsyncMock(return_value=b"")):
                tracker = DeviceTracker(client, callback).start(read=False)
                tracker.submit(b"a\tdevice\n")
                tracker.submit(b"b\tdevice\n")
                tracker.finish()
                await tracker.wait_closed()

        asyncio.run(scenario())

        assert events == [("start", ["a"]), ("end", ["a"]), ("start", ["b"]), ("end", ["b"])]

    def test_tracks_server_stream(self):
        """Every framed snapshot from the server becomes a callback."""
        reply = Reply(
            [
                okay(b"abc\tdevice\n"),
                framed(b"abc\tdevice\ndef\toffline\n"),
                framed(b""),
            ],
            pause=0.01,
        )
        received = []

        async def scenario():
            async with FakeADBServer({"host:track-devices": reply}) as server:
                client = make_client(server.port)
                with patch.object(client, "shell", AsyncMock(return_value=b"")):
                    tracker = client.track_devices(received.append)
                    await tracker.wait_closed()
                return tracker

        tracker = asyncio.run(scenario())

        assert [ids(s) for s in received] == [["abc"], ["abc", "def"], []]
        assert tracker.closed
        assert not tracker.connection.is_open

    def test_server_failure_goes_to_error_callback(self):
        """A FAIL on the tracking command is reported, not raised."""
        received = []
        errors = []

        async def scenario():
            async with FakeADBServer({"host:track-devices": fail("no daemon")}) as server:
                tracker = make_client(server.port).track_devices(received.append, on_error=errors.append)
                await tracker.wait_closed()

        asyncio.run(scenario())

        assert received == []
        assert len(errors) == 1
        assert isinstance(errors[0], RemoteFailure)
        assert str(errors[0]) == "no daemon"

    def test_close_stops_delivery(self):
        """Snapshots queued behind a close are dropped."""
        client = make_client(free_port())
        received = []
        tracker = None

        def callback(devices):
            received.append(devices)
            tracker.close()

        async def scenario():
            nonlocal tracker
            with patch.object(client, "shell", AsyncMock(return_value=b"")):
                tracker = DeviceTracker(client, callback).start(read=False)
                tracker.submit(b"a\tdevice\n")
                tracker.submit(b"b\tdevice\n")
                await tracker.wait_closed()

        asyncio.run(scenario())

        assert [ids(s) for s in received] == [["a"]]
        assert tracker.closed

    def test_close_while_streaming(self):
        """Closing the tracker ends a live tracking connection."""
        reply = Reply([okay(b"abc\tdevice\n")], close=False)
        received = []

        async def scenario():
            async with FakeADBServer({"host:track-devices": reply}) as server:
                client = make_client(server.port)
                with patch.object(client, "shell", AsyncMock(return_value=b"")):
                    async with client.track_devices(received.append) as tracker:
                        await wait_for(lambda: received)
                return tracker

        tracker = asyncio.run(scenario())

        assert [ids(s) for s in received] == [["abc"]]
        assert tracker.closed
        assert not tracker.connection.is_open

    def test_submit_after_close_is_ignored(self):
        client = make_client(free_port())

        async def scenario():
            tracker = DeviceTracker(client, lambda devices: None).start(read=False)
            tracker.close()
            tracker.submit(b"a\tdevice\n")
            await tracker.wait_closed()
            return tracker.pending

        assert asyncio.run(scenario()) == 0

    def test_callback_errors_surface_from_wait_closed(self):
        client = make_client(free_port())

        def callback(devices):
            raise ValueError("bad callback")

        async def scenario():
            with patch.object(client, "shell", AsyncMock(return_value=b"")):
                tracker = DeviceTracker(client, callback).start(read=False)
                tracker.submit(b"a\tdevice\n")
                await tracker.wait_closed()

        with pytest.raises(ValueError, match="bad callback"):
            asyncio.run(scenario())
