"""Tests for SessionHub command handling and fan-out."""

import asyncio
import json

import pytest

from watchparty.peer import Peer
from watchparty.session_clock import SessionClock
from watchparty.session_hub import SessionHub

VIDEO_ID = "dQw4w9WgXcQ"


def types(messages: list[dict]) -> list[str]:
    return [m["type"] for m in messages]


async def connect_all(hub: SessionHub, *peers: Peer) -> None:
    for peer in peers:
        await hub.on_connect(peer)
    for peer in peers:
        peer.drain()


class TestMembership:
    """Tests for connect and disconnect."""

    @pytest.mark.asyncio
    async def test_first_peer_gets_initial_state(self, hub: SessionHub, make_peer) -> None:
        """Test A joining an empty session."""
        a = make_peer()
        await hub.on_connect(a)
        assert a.drain() == [
            {"type": "initial-state", "mediaRef": "", "playing": False, "position": 0.0, "viewerCount": 1},
            {"type": "viewer-count", "viewerCount": 1},
        ]

    @pytest.mark.asyncio
    async def test_second_peer_updates_everyone(self, hub: SessionHub, make_peer) -> None:
        """Test B joining: both see two viewers, B gets initial-state with two."""
        a, b = make_peer(), make_peer()
        await hub.on_connect(a)
        a.drain()
        await hub.on_connect(b)

        assert a.drain() == [{"type": "viewer-count", "viewerCount": 2}]
        b_messages = b.drain()
        assert types(b_messages) == ["initial-state", "viewer-count"]
        assert b_messages[0]["viewerCount"] == 2
        assert b_messages[1]["viewerCount"] == 2

    @pytest.mark.asyncio
    async def test_disconnect_broadcasts_to_remaining(self, hub: SessionHub, make_peer) -> None:
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_disconnect(a)
        assert b.drain() == [{"type": "viewer-count", "viewerCount": 1}]
        assert a.closed

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, hub: SessionHub, make_peer) -> None:
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_disconnect(a)
        b.drain()
        await hub.on_disconnect(a)
        assert b.drain() == []
        assert hub.viewer_count == 1

    @pytest.mark.asyncio
    async def test_connect_twice_is_ignored(self, hub: SessionHub, make_peer) -> None:
        a = make_peer()
        await hub.on_connect(a)
        a.drain()
        await hub.on_connect(a)
        assert a.drain() == []
        assert hub.viewer_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("connects,disconnects", [(1, 0), (3, 1), (5, 5), (8, 3)])
    async def test_viewer_count(self, hub: SessionHub, make_peer, connects: int, disconnects: int) -> None:
        """Test the last broadcast count after N connects and M disconnects is N - M."""
        peers = [make_peer() for _ in range(connects)]
        observer = make_peer()
        await hub.on_connect(observer)
        for peer in peers:
            await hub.on_connect(peer)
        for peer in peers[:disconnects]:
            await hub.on_disconnect(peer)

        counts = [m["viewerCount"] for m in observer.drain() if m["type"] == "viewer-count"]
        assert counts[-1] == 1 + connects - disconnects
        assert hub.viewer_count == 1 + connects - disconnects

    @pytest.mark.asyncio
    async def test_late_joiner_sees_extrapolated_position(self, hub: SessionHub, make_peer, fake_time) -> None:
        """Test a peer joining mid-playback gets the current position."""
        a, b = make_peer(), make_peer()
        await connect_all(hub, a)
        await hub.on_play(a)
        fake_time.advance(12_000)
        await hub.on_connect(b)
        initial = b.drain()[0]
        assert initial["playing"] is True
        assert initial["position"] == pytest.approx(12.0)


class TestTransportCommands:
    """Tests for play, pause and seek."""

    @pytest.mark.asyncio
    async def test_play_goes_to_others_only(self, hub: SessionHub, make_peer) -> None:
        a, b, c = make_peer(), make_peer(), make_peer()
        await connect_all(hub, a, b, c)
        await hub.on_play(a)
        assert a.drain() == []
        assert b.drain() == [{"type": "play", "position": 0.0}]
        assert c.drain() == [{"type": "play", "position": 0.0}]

    @pytest.mark.asyncio
    async def test_play_with_reported_position(self, hub: SessionHub, clock: SessionClock, make_peer, fake_time) -> None:
        """Test the initiator's reported position becomes authoritative."""
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_play(a, reported_position=33.0)
        assert b.drain() == [{"type": "play", "position": 33.0}]
        assert clock.playing is True
        fake_time.advance(2_000)
        assert clock.extrapolated_position(fake_time()) == pytest.approx(35.0)

    @pytest.mark.asyncio
    async def test_pause_after_play(self, hub: SessionHub, clock: SessionClock, make_peer, fake_time) -> None:
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_play(a)
        fake_time.advance(4_000)
        await hub.on_pause(b)
        assert a.drain() == [{"type": "pause", "position": pytest.approx(4.0)}]
        assert b.drain() == [{"type": "play", "position": 0.0}]
        fake_time.advance(10_000)
        assert clock.extrapolated_position(fake_time()) == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_seek(self, hub: SessionHub, clock: SessionClock, make_peer, fake_time) -> None:
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_seek(a, 61.5)
        assert a.drain() == []
        assert b.drain() == [{"type": "seek", "position": 61.5}]
        assert clock.extrapolated_position(fake_time()) == 61.5
        assert clock.playing is False


class TestChangeMedia:
    """Tests for change-media."""

    @pytest.mark.asyncio
    async def test_short_link_goes_to_everyone(self, hub: SessionHub, make_peer) -> None:
        """Test a youtu.be link is canonicalized and confirmed to the sender too."""
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_change_media(a, "https://youtu.be/dQw4w9WgXcQ")
        expected = {"type": "video-changed", "mediaRef": VIDEO_ID, "playing": False, "position": 0}
        assert a.drain() == [expected]
        assert b.drain() == [expected]

    @pytest.mark.asyncio
    async def test_change_media_resets_playback(self, hub: SessionHub, clock: SessionClock, make_peer, fake_time) -> None:
        a = make_peer()
        await connect_all(hub, a)
        await hub.on_play(a, reported_position=80.0)
        fake_time.advance(3_000)
        await hub.on_change_media(a, VIDEO_ID)
        assert clock.media_ref == VIDEO_ID
        assert clock.playing is False
        assert clock.extrapolated_position(fake_time()) == 0.0

    @pytest.mark.asyncio
    async def test_invalid_input_is_rejected(self, hub: SessionHub, clock: SessionClock, make_peer, fake_time) -> None:
        """Test "not a url" changes nothing and only the sender hears about it."""
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_seek(a, 10.0)
        b.drain()
        before = clock.snapshot(fake_time())

        await hub.on_change_media(a, "not a url")

        errors = a.drain()
        assert types(errors) == ["error"]
        assert "not a url" in errors[0]["message"]
        assert b.drain() == []
        assert clock.snapshot(fake_time()) == before


class TestRequestSync:
    """Tests for the drift-correction reply."""

    @pytest.mark.asyncio
    async def test_sync_after_five_seconds(self, hub: SessionHub, make_peer, fake_time) -> None:
        """Test A plays at t=0, B asks at t=5s and hears about 5s."""
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_play(a)
        b.drain()
        fake_time.advance(5_000)
        await hub.on_request_sync(b)

        assert a.drain() == []
        reply = b.drain()
        assert types(reply) == ["sync-state"]
        assert reply[0]["playing"] is True
        assert reply[0]["position"] == pytest.approx(5.0)
        assert reply[0]["serverTime"] == fake_time()

    @pytest.mark.asyncio
    async def test_sync_never_mutates(self, hub: SessionHub, clock: SessionClock, make_peer, fake_time) -> None:
        """Test repeated sync requests leave the clock untouched."""
        a = make_peer()
        await connect_all(hub, a)
        await hub.on_play(a, reported_position=7.0)
        state_before = (clock.media_ref, clock.playing, clock.last_update, clock.extrapolated_position(fake_time()))

        for _ in range(25):
            fake_time.advance(100)
            await hub.on_request_sync(a)

        assert (clock.media_ref, clock.playing, clock.last_update) == state_before[:3]
        assert len(a.drain()) == 25


class TestDispatch:
    """Tests for raw frame dispatch and error isolation."""

    @pytest.mark.asyncio
    async def test_dispatch_routes_commands(self, hub: SessionHub, clock: SessionClock, make_peer) -> None:
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.dispatch(a, json.dumps({"type": "seek", "position": 20}))
        await hub.dispatch(a, json.dumps({"type": "play"}))
        assert types(b.drain()) == ["seek", "play"]
        assert clock.playing is True

    @pytest.mark.asyncio
    async def test_malformed_frame_reports_to_sender_only(self, hub: SessionHub, make_peer) -> None:
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.dispatch(a, "{not json")
        assert types(a.drain()) == ["error"]
        assert b.drain() == []

    @pytest.mark.asyncio
    async def test_session_survives_bad_frames(self, hub: SessionHub, make_peer, fake_time) -> None:
        """Test a bad frame does not prevent later commands."""
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        for frame in ("", "[]", '{"type": "nope"}', '{"type": "seek", "position": "x"}'):
            await hub.dispatch(a, frame)
        await hub.dispatch(a, '{"type": "seek", "position": 3}')
        assert b.drain() == [{"type": "seek", "position": 3.0}]

    @pytest.mark.asyncio
    async def test_disconnected_peer_is_ignored(self, hub: SessionHub, clock: SessionClock, make_peer) -> None:
        """Test commands from a peer that already left are dropped silently."""
        a, b = make_peer(), make_peer()
        await connect_all(hub, a, b)
        await hub.on_disconnect(a)
        b.drain()
        await hub.dispatch(a, '{"type": "play"}')
        await hub.dispatch(a, "garbage")
        assert clock.playing is False
        assert b.drain() == []


class TestSlowPeers:
    """Tests for peers that cannot keep up."""

    @pytest.mark.asyncio
    async def test_full_queue_disconnects_only_that_peer(self, hub: SessionHub, make_peer) -> None:
        slow = make_peer(queue_size=2)
        a, b = make_peer(), make_peer()
        await hub.on_connect(slow)  # fills the slow peer's queue
        await connect_all(hub, a, b)

        assert slow.closed
        assert hub.viewer_count == 2
        assert slow not in hub.registry

        await hub.on_seek(a, 5.0)
        assert b.drain() == [{"type": "seek", "position": 5.0}]

    @pytest.mark.asyncio
    async def test_dropped_peer_triggers_count_broadcast(self, hub: SessionHub, make_peer) -> None:
        a = make_peer()
        await connect_all(hub, a)
        slow = make_peer(queue_size=1)
        await hub.on_connect(slow)

        counts = [m["viewerCount"] for m in a.drain() if m["type"] == "viewer-count"]
        assert counts == [2, 1]

    @pytest.mark.asyncio
    async def test_cancelled_join_is_unregistered(self, hub: SessionHub, make_peer, monkeypatch) -> None:
        """Test a connection cancelled while its join fan-out is in flight leaves no viewer behind."""
        a = make_peer()
        await connect_all(hub, a)
        slow = make_peer(queue_size=2)
        await hub.on_connect(slow)  # fills the slow peer's queue

        stalled = asyncio.Event()
        send = hub._send

        async def stall_first_send(deliveries) -> None:
            if not stalled.is_set():
                stalled.set()
                await asyncio.Event().wait()
            await send(deliveries)

        monkeypatch.setattr(hub, "_send", stall_first_send)

        newcomer = make_peer()

        async def watch() -> None:
            async with hub.connected(newcomer):
                await asyncio.Event().wait()

        task = asyncio.ensure_future(watch())
        await stalled.wait()
        assert newcomer in hub.registry

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert newcomer not in hub.registry
        assert newcomer.closed
        assert slow not in hub.registry
        assert hub.viewer_count == 1

    @pytest.mark.asyncio
    async def test_connected_block_unregisters_on_exit(self, hub: SessionHub, make_peer) -> None:
        a = make_peer()
        async with hub.connected(a):
            assert hub.viewer_count == 1
        assert hub.viewer_count == 0
        assert a.closed


class TestSnapshot:
    """Tests for the status snapshot."""

    @pytest.mark.asyncio
    async def test_snapshot(self, hub: SessionHub, make_peer, fake_time) -> None:
        a = make_peer()
        await connect_all(hub, a)
        await hub.on_play(a)
        fake_time.advance(2_500)
        snapshot, count = await hub.snapshot()
        assert snapshot.playing is True
        assert snapshot.position == pytest.approx(2.5)
        assert count == 1
