"""Extract a YouTube video id from whatever a viewer pasted."""

import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

from watchparty.protocol import ProtocolError


VIDEO_ID_PATTERN = re.compile(r'[A-Za-z0-9_-]{11}')

WATCH_HOSTS = {
    'youtube.com',
    'www.youtube.com',
    'm.youtube.com',
    'music.youtube.com',
    'youtube-nocookie.com',
    'www.youtube-nocookie.com',
}
SHORT_LINK_HOSTS = {'youtu.be', 'www.youtu.be'}

# Path prefixes whose next segment is the video id (/embed/<id>, /v/<id>, ...)
ID_PATH_PREFIXES = ('embed', 'v', 'shorts', 'live')


class MediaRefError(ProtocolError):
    """Raised when no video id can be extracted from the input."""


def is_video_id(value: str) -> bool:
    return VIDEO_ID_PATTERN.fullmatch(value) is not None


def _id_from_url(value: str) -> Optional[str]:
    if '://' not in value:
        value = f'https://{value}'
    try:
        parsed = urlparse(value)
        host = (parsed.hostname or '').lower()
    except ValueError:
        return None

    segments = [s for s in parsed.path.split('/') if s]

    if host in SHORT_LINK_HOSTS:
        return segments[0] if len(segments) == 1 else None

    if host not in WATCH_HOSTS:
        return None

    if segments == ['watch']:
        ids = parse_qs(parsed.query).get('v', [])
        return ids[0] if len(ids) == 1 else None

    if len(segments) == 2 and segments[0] in ID_PATH_PREFIXES:
        return segments[1]

    return None


def extract_media_ref(raw: str) -> str:
    """Return the canonical 11-character video id contained in ``raw``.

    ``raw`` may be a bare id, a watch-page URL (``?v=<id>``), a short link
    (``youtu.be/<id>``) or an embed-style path (``/embed/<id>``). The scheme
    may be omitted.

    Raises:
        MediaRefError: if ``raw`` does not yield exactly one video id.
    """
    if not isinstance(raw, str):
        raise MediaRefError('Media reference must be a string')

    candidate = raw.strip()
    if not candidate:
        raise MediaRefError('Media reference is empty')

    if is_video_id(candidate):
        return candidate

    video_id = _id_from_url(candidate)
    if video_id is None or not is_video_id(video_id):
        raise MediaRefError(f'Not a recognized video URL or id: {raw!r}')
    return video_id
