"""Authoritative playback clock for a shared watch session.

The stored position is a checkpoint taken at ``last_update``. While the
session is playing it goes stale immediately, so the only correct way to
read the current position is ``extrapolated_position(now)``.

All timestamps are wall-clock milliseconds since the epoch, the same unit
peers use for ``serverTime`` when estimating latency.
"""

import time
from dataclasses import dataclass
from typing import Optional


def now_ms() -> float:
    """Current wall-clock time in milliseconds."""
    return time.time() * 1000


@dataclass(frozen=True)
class SessionSnapshot:
    """Consistent read of the clock at a single instant."""

    media_ref: str
    playing: bool
    position: float
    server_time: float


class SessionClock:
    """Playback state tuple (media_ref, playing, position, last_update).

    Not thread-safe on its own: the owning SessionHub serializes every call.
    """

    def __init__(self, media_ref: str = '', now: Optional[float] = None):
        self._media_ref = media_ref
        self._playing = False
        self._position = 0.0
        self._last_update = now_ms() if now is None else now

    @property
    def media_ref(self) -> str:
        return self._media_ref

    @property
    def playing(self) -> bool:
        return self._playing

    @property
    def last_update(self) -> float:
        return self._last_update

    def extrapolated_position(self, now: float) -> float:
        """Return the playback position at ``now`` in seconds."""
        if not self._playing:
            return self._position
        # A wall clock stepping backwards must not rewind playback
        elapsed = max(0.0, now - self._last_update)
        return self._position + elapsed / 1000

    def checkpoint(self, now: float) -> None:
        """Fold the time elapsed since the last update into the position."""
        self._position = self.extrapolated_position(now)
        self._last_update = now

    def apply_play(self, now: float) -> None:
        self.checkpoint(now)
        self._playing = True
        self._last_update = now

    def apply_pause(self, now: float) -> None:
        self.checkpoint(now)
        self._playing = False

    def apply_seek(self, now: float, position: float) -> None:
        """Jump to ``position``; the playing flag is left alone."""
        self._position = position
        self._last_update = now

    def apply_change_media(self, now: float, media_ref: str) -> None:
        """Load a new video, paused at the start."""
        self._media_ref = media_ref
        self._playing = False
        self._position = 0.0
        self._last_update = now

    def snapshot(self, now: float) -> SessionSnapshot:
        return SessionSnapshot(
            media_ref=self._media_ref,
            playing=self._playing,
            position=self.extrapolated_position(now),
            server_time=now,
        )

    def __repr__(self) -> str:
        return (
            f'SessionClock(media_ref={self._media_ref!r}, playing={self._playing}, '
            f'position={self._position:.3f}, last_update={self._last_update:.0f})'
        )
