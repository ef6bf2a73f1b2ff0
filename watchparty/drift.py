"""Client half of the drift-correction protocol.

While the local player is playing, a peer periodically sends request-sync.
The sync-state reply carries the authoritative position and the server
time it was computed at. The one-way latency (receive time minus server
time) is added to the reported position to estimate where playback really
is now, and the local player is re-seeked only when it is off by more than
the tolerance. Smaller corrections are suppressed to avoid visible jitter.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from watchparty import protocol
from watchparty.session_clock import now_ms

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 5.0  # seconds between request-sync while playing
DEFAULT_DRIFT_TOLERANCE = 1.0  # seconds of drift tolerated before re-seeking


class Player(Protocol):
    """The part of a video widget the resync loop needs."""

    def is_playing(self) -> bool: ...

    def current_time(self) -> float: ...

    def seek_to(self, position: float) -> None: ...


def estimate_position(sync_state: dict[str, Any], receive_time: float) -> float:
    """Estimate the authoritative position at ``receive_time`` (ms)."""
    position = float(sync_state['position'])
    if not sync_state.get('playing'):
        return position
    latency = max(0.0, receive_time - float(sync_state['serverTime'])) / 1000
    return position + latency


class DriftCorrector:
    """Decide whether a sync-state reply warrants a local re-seek."""

    def __init__(self, tolerance: float = DEFAULT_DRIFT_TOLERANCE):
        self.tolerance = tolerance

    def correction(
        self,
        sync_state: dict[str, Any],
        local_position: float,
        receive_time: float,
    ) -> Optional[float]:
        """Return the position to seek to, or None if the drift is tolerable."""
        target = estimate_position(sync_state, receive_time)
        if abs(target - local_position) > self.tolerance:
            return target
        return None


class ResyncLoop:
    """Poll the server for its position while the local player is playing.

    Usage:
        loop = ResyncLoop(player, send=connection_send)
        task = asyncio.create_task(loop.run())
        ...
        loop.handle_sync_state(message)  # for every sync-state received
    """

    def __init__(
        self,
        player: Player,
        send: Callable[[dict[str, Any]], Awaitable[None]],
        interval: float = DEFAULT_SYNC_INTERVAL,
        tolerance: float = DEFAULT_DRIFT_TOLERANCE,
        now: Callable[[], float] = now_ms,
    ):
        self._player = player
        self._send = send
        self._interval = interval
        self._corrector = DriftCorrector(tolerance)
        self._now = now
        self._running = False

    async def run(self) -> None:
        """Send request-sync every interval while playing, until stopped or cancelled."""
        self._running = True
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                if self._running and self._player.is_playing():
                    await self._send({'type': protocol.REQUEST_SYNC})
            except asyncio.CancelledError:
                logger.debug('ResyncLoop cancelled')
                break
        self._running = False

    def stop(self) -> None:
        self._running = False

    def handle_sync_state(self, message: dict[str, Any]) -> bool:
        """Apply a sync-state reply. Returns True if the player was re-seeked."""
        target = self._corrector.correction(message, self._player.current_time(), self._now())
        if target is None:
            return False
        logger.info(f'Drifted from server, seeking to {target:.2f}s')
        self._player.seek_to(target)
        return True
