"""Session hub: the single writer of the session clock.

Every inbound transport event (connect, disconnect, command frame) goes
through the hub. Each command is handled under one asyncio lock: the handler
mutates the clock and describes what should be sent. Messages are resolved
to concrete peers while still holding the lock, then delivered after it is
released, so a slow peer never holds up the rest of the session.

Fan-out policy: play, pause and seek are relayed to every peer except the
sender (who already applied the change locally) and carry the authoritative
position. video-changed and viewer-count go to everyone.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Optional

from watchparty import protocol
from watchparty.connection_registry import ConnectionRegistry
from watchparty.media_ref import extract_media_ref
from watchparty.peer import Peer
from watchparty.protocol import Command, ProtocolError
from watchparty.session_clock import SessionClock, SessionSnapshot, now_ms


# Delivery targets
SENDER = 'sender'
OTHERS = 'others'
EVERYONE = 'everyone'


@dataclass(frozen=True)
class Outbound:
    """A message and who should receive it, relative to the sender."""

    target: str
    message: dict[str, Any]


Handler = Callable[[Peer, Command, float], list[Outbound]]


class SessionHub:
    """Applies peer commands to a SessionClock and fans out the results."""

    def __init__(
        self,
        clock: SessionClock,
        registry: Optional[ConnectionRegistry] = None,
        now: Callable[[], float] = now_ms,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            clock: Session clock owned by this hub from now on.
            registry: Peer registry, a fresh one if omitted.
            now: Time source in milliseconds since the epoch.
            logger: Logger for session events.
        """
        self._clock = clock
        self._registry = registry if registry is not None else ConnectionRegistry()
        self._now = now
        self._logger = logger or logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self._handlers: dict[str, Handler] = {
            protocol.PLAY: self._handle_play,
            protocol.PAUSE: self._handle_pause,
            protocol.SEEK: self._handle_seek,
            protocol.CHANGE_MEDIA: self._handle_change_media,
            protocol.REQUEST_SYNC: self._handle_request_sync,
        }

    @property
    def viewer_count(self) -> int:
        return self._registry.count

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    # Membership

    async def on_connect(self, peer: Peer) -> None:
        """Register ``peer``, send it the current state and announce the new count."""
        async with self._lock:
            if not self._registry.add(peer):
                return
            count = self._registry.count
            snapshot = self._clock.snapshot(self._now())
            deliveries = [(peer, protocol.initial_state(snapshot, count))]
            deliveries += self._resolve(peer, [Outbound(EVERYONE, protocol.viewer_count(count))])

        self._logger.info(f'{peer} connected, {count} watching')
        await self._send(deliveries)

    async def on_disconnect(self, peer: Peer) -> None:
        """Unregister ``peer`` and announce the new count. Safe to call twice."""
        async with self._lock:
            removed = self._registry.discard(peer)
            if removed:
                count = self._registry.count
                deliveries = self._resolve(peer, [Outbound(EVERYONE, protocol.viewer_count(count))])
        peer.close()

        if not removed:
            return
        self._logger.info(f'{peer} disconnected, {count} watching')
        await self._send(deliveries)

    @asynccontextmanager
    async def connected(self, peer: Peer):
        """Keep ``peer`` in the session for the duration of the block.

        Registration itself is inside the protected region, so a connection
        cancelled while its join messages are going out is still removed.
        """
        try:
            await self.on_connect(peer)
            yield peer
        finally:
            await self.on_disconnect(peer)

    # Commands

    async def dispatch(self, peer: Peer, frame: str | bytes) -> None:
        """Parse one raw inbound frame from ``peer`` and apply it."""
        try:
            command = protocol.parse_command(frame)
        except ProtocolError as e:
            if peer not in self._registry:
                return
            self._logger.warning(f'{peer} sent a malformed command: {e}')
            await self._send([(peer, protocol.error(str(e)))])
            return
        await self._apply(peer, command)

    async def on_play(self, peer: Peer, reported_position: Optional[float] = None) -> None:
        await self._apply(peer, Command(kind=protocol.PLAY, position=reported_position))

    async def on_pause(self, peer: Peer, reported_position: Optional[float] = None) -> None:
        await self._apply(peer, Command(kind=protocol.PAUSE, position=reported_position))

    async def on_seek(self, peer: Peer, position: float) -> None:
        await self._apply(peer, Command(kind=protocol.SEEK, position=position))

    async def on_change_media(self, peer: Peer, raw_input: str) -> None:
        await self._apply(peer, Command(kind=protocol.CHANGE_MEDIA, media_input=raw_input))

    async def on_request_sync(self, peer: Peer) -> None:
        await self._apply(peer, Command(kind=protocol.REQUEST_SYNC))

    async def snapshot(self) -> tuple[SessionSnapshot, int]:
        """Return the extrapolated session state and the viewer count."""
        async with self._lock:
            return self._clock.snapshot(self._now()), self._registry.count

    async def _apply(self, peer: Peer, command: Command) -> None:
        async with self._lock:
            if peer not in self._registry:
                self._logger.debug(f'{peer} is not connected, ignoring {command.kind}')
                return
            handler = self._handlers[command.kind]
            try:
                outbound = handler(peer, command, self._now())
            except ProtocolError as e:
                self._logger.warning(f'{peer} {command.kind} rejected: {e}')
                outbound = [Outbound(SENDER, protocol.error(str(e)))]
            except Exception:
                self._logger.exception(f'{peer} {command.kind} failed')
                outbound = [Outbound(SENDER, protocol.error(f'{command.kind} failed'))]
            deliveries = self._resolve(peer, outbound)

        await self._send(deliveries)

    # Handlers run under the lock. They mutate the clock and describe what to send.

    def _handle_play(self, peer: Peer, command: Command, now: float) -> list[Outbound]:
        if command.position is not None:
            self._clock.apply_seek(now, command.position)
        self._clock.apply_play(now)
        position = self._clock.extrapolated_position(now)
        self._logger.info(f'{peer} play at {position:.2f}s')
        return [Outbound(OTHERS, protocol.transport(protocol.PLAY, position))]

    def _handle_pause(self, peer: Peer, command: Command, now: float) -> list[Outbound]:
        if command.position is not None:
            self._clock.apply_seek(now, command.position)
        self._clock.apply_pause(now)
        position = self._clock.extrapolated_position(now)
        self._logger.info(f'{peer} pause at {position:.2f}s')
        return [Outbound(OTHERS, protocol.transport(protocol.PAUSE, position))]

    def _handle_seek(self, peer: Peer, command: Command, now: float) -> list[Outbound]:
        self._clock.apply_seek(now, command.position)
        self._logger.info(f'{peer} seek to {command.position:.2f}s')
        return [Outbound(OTHERS, protocol.transport(protocol.SEEK, command.position))]

    def _handle_change_media(self, peer: Peer, command: Command, now: float) -> list[Outbound]:
        media_ref = extract_media_ref(command.media_input)
        self._clock.apply_change_media(now, media_ref)
        self._logger.info(f'{peer} changed video to {media_ref}')
        return [Outbound(EVERYONE, protocol.video_changed(media_ref))]

    def _handle_request_sync(self, peer: Peer, command: Command, now: float) -> list[Outbound]:
        return [Outbound(SENDER, protocol.sync_state(self._clock.snapshot(now)))]

    # Fan-out

    def _resolve(self, sender: Peer, outbound: list[Outbound]) -> list[tuple[Peer, dict[str, Any]]]:
        """Expand targets into (peer, message) pairs against the current registry."""
        deliveries = []
        peers = self._registry.peers
        for item in outbound:
            if item.target == SENDER:
                deliveries.append((sender, item.message))
            elif item.target == OTHERS:
                deliveries.extend((p, item.message) for p in peers if p is not sender)
            else:
                deliveries.extend((p, item.message) for p in peers)
        return deliveries

    async def _send(self, deliveries: list[tuple[Peer, dict[str, Any]]]) -> None:
        failed: list[Peer] = []
        for peer, message in deliveries:
            if not peer.deliver(message) and peer not in failed:
                failed.append(peer)

        # A peer that cannot take more messages is treated as gone
        for peer in failed:
            if peer in self._registry:
                self._logger.warning(f'{peer} is not keeping up, dropping connection')
            await self.on_disconnect(peer)
