"""JSON message vocabulary spoken over the session WebSocket.

Every frame is a single JSON object with a ``type`` discriminator. Inbound
frames are parsed into a ``Command``; outbound messages are plain dicts
built by the helpers below so that the hub never hand-assembles payloads.

Inbound also accepts the names used by the first browser client:
``changeVideo`` with ``videoId`` and ``time`` in place of ``position``.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Optional

from watchparty.session_clock import SessionSnapshot


# Inbound command kinds
PLAY = 'play'
PAUSE = 'pause'
SEEK = 'seek'
CHANGE_MEDIA = 'change-media'
REQUEST_SYNC = 'request-sync'

# Outbound message kinds
INITIAL_STATE = 'initial-state'
VIEWER_COUNT = 'viewer-count'
VIDEO_CHANGED = 'video-changed'
SYNC_STATE = 'sync-state'
ERROR = 'error'

COMMAND_ALIASES = {
    'changeVideo': CHANGE_MEDIA,
}

MAX_FRAME_LENGTH = 4096


class ProtocolError(ValueError):
    """Raised for a malformed or unsupported inbound frame."""


@dataclass(frozen=True)
class Command:
    """A validated inbound command."""

    kind: str
    position: Optional[float] = None
    media_input: Optional[str] = None


def _parse_position(value: Any) -> float:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f'Position must be a number of seconds, got {value!r}')
    position = float(value)
    if not math.isfinite(position):
        raise ProtocolError(f'Position must be finite, got {value!r}')
    return max(0.0, position)


def _optional_position(data: dict[str, Any]) -> Optional[float]:
    value = data.get('position')
    if value is None:
        value = data.get('time')
    if value is None:
        return None
    return _parse_position(value)


def parse_command(frame: str | bytes) -> Command:
    """Parse one inbound frame into a ``Command``.

    Raises:
        ProtocolError: if the frame is not a JSON object describing a known
            command with a valid payload.
    """
    if isinstance(frame, bytes):
        try:
            frame = frame.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError(f'Frame is not valid UTF-8: {e}') from e

    if len(frame) > MAX_FRAME_LENGTH:
        raise ProtocolError(f'Frame exceeds {MAX_FRAME_LENGTH} characters')

    try:
        data = json.loads(frame)
    except json.JSONDecodeError as e:
        raise ProtocolError(f'Frame is not valid JSON: {e.msg}') from e

    if not isinstance(data, dict):
        raise ProtocolError('Frame must be a JSON object')

    kind = data.get('type')
    if not isinstance(kind, str):
        raise ProtocolError('Frame is missing a string "type"')
    kind = COMMAND_ALIASES.get(kind, kind)

    if kind in (PLAY, PAUSE):
        return Command(kind=kind, position=_optional_position(data))

    if kind == SEEK:
        position = _optional_position(data)
        if position is None:
            raise ProtocolError('seek requires a "position"')
        return Command(kind=kind, position=position)

    if kind == CHANGE_MEDIA:
        media_input = data.get('input', data.get('videoId'))
        if not isinstance(media_input, str):
            raise ProtocolError('change-media requires a string "input"')
        return Command(kind=kind, media_input=media_input)

    if kind == REQUEST_SYNC:
        return Command(kind=kind)

    raise ProtocolError(f'Unknown command type {kind!r}')


def encode(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(',', ':'))


# Outbound builders

def initial_state(snapshot: SessionSnapshot, viewer_count: int) -> dict[str, Any]:
    return {
        'type': INITIAL_STATE,
        'mediaRef': snapshot.media_ref,
        'playing': snapshot.playing,
        'position': snapshot.position,
        'viewerCount': viewer_count,
    }


def viewer_count(count: int) -> dict[str, Any]:
    return {'type': VIEWER_COUNT, 'viewerCount': count}


def transport(kind: str, position: float) -> dict[str, Any]:
    """A play, pause or seek event relayed to the other peers."""
    return {'type': kind, 'position': position}


def video_changed(media_ref: str) -> dict[str, Any]:
    return {
        'type': VIDEO_CHANGED,
        'mediaRef': media_ref,
        'playing': False,
        'position': 0,
    }


def sync_state(snapshot: SessionSnapshot) -> dict[str, Any]:
    return {
        'type': SYNC_STATE,
        'playing': snapshot.playing,
        'position': snapshot.position,
        'serverTime': snapshot.server_time,
    }


def error(message: str) -> dict[str, Any]:
    return {'type': ERROR, 'message': message}
