import os
import logging
from typing import Callable, Optional

from quart import Quart

from watchparty.media_ref import MediaRefError, extract_media_ref
from watchparty.peer import DEFAULT_QUEUE_SIZE
from watchparty.session_clock import SessionClock, now_ms
from watchparty.session_hub import SessionHub
from watchparty.web import WebRouteState, register_routes
from watchparty.web.helpers import parse_allowed_origins

logger = logging.getLogger(__name__)

# Constants
DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 3001
# A joining peer is sent initial-state and viewer-count before its sender starts
MIN_QUEUE_SIZE = 4
MAX_QUEUE_SIZE = 10000
STATE_EXTENSION = 'watchparty'
LOG_HANDLER_NAME = 'watchparty'


def _env_int(name: str, default: int, min_val: int, max_val: int) -> int:
    """Read an integer environment variable, clamped to [min_val, max_val].

    Unparseable values fall back to ``default`` with a warning.
    """
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        val = int(raw)
    except ValueError:
        logger.warning(f'Invalid {name}={raw!r}, using default {default}')
        return default
    clamped = min(max(val, min_val), max_val)
    if clamped != val:
        logger.warning(f'{name}={val} outside {min_val}..{max_val}, using {clamped}')
    return clamped


class Config:
    """Application configuration loaded from environment variables."""

    def __init__(self):
        # Log levels for each component
        self.log_level_api = os.environ.get('WATCHPARTY_LOG_LEVEL_API', 'INFO').upper()
        self.log_level_session = os.environ.get('WATCHPARTY_LOG_LEVEL_SESSION', 'INFO').upper()
        self.log_level_ws = os.environ.get('WATCHPARTY_LOG_LEVEL_WS', 'WARN').upper()

        self.host = os.environ.get('WATCHPARTY_HOST', DEFAULT_HOST)
        self.port = _env_int('PORT', DEFAULT_PORT, 1, 65535)
        self.allowed_origins = parse_allowed_origins(os.environ.get('WATCHPARTY_ALLOWED_ORIGINS', '*'))
        self.initial_media = os.environ.get('WATCHPARTY_INITIAL_MEDIA', '')
        self.peer_queue_size = _env_int('WATCHPARTY_PEER_QUEUE_SIZE', DEFAULT_QUEUE_SIZE, MIN_QUEUE_SIZE, MAX_QUEUE_SIZE)


class LoggerManager:
    """Manages application loggers."""

    def __init__(self, config: Config):
        self.config = config
        self._setup_loggers()

    def _setup_loggers(self) -> None:
        """Initialize and configure loggers."""
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s [%(name)s] %(levelname)s: %(message)s'))
        handler.setLevel(logging.DEBUG)
        handler.set_name(LOG_HANDLER_NAME)

        # Root logger stays at WARNING to keep third-party noise down
        logging.basicConfig(level=logging.WARNING)

        self.api = logging.getLogger('hypercorn')
        self.session = logging.getLogger('session')
        self.ws = logging.getLogger('ws')

        # Own handler per logger, no propagation, so the root level does not filter them.
        # create_app may run more than once per process (tests), so add the handler once.
        for logger_, level in [
            (self.api, self.config.log_level_api),
            (self.session, self.config.log_level_session),
            (self.ws, self.config.log_level_ws),
        ]:
            if not any(h.get_name() == LOG_HANDLER_NAME for h in logger_.handlers):
                logger_.addHandler(handler)
            logger_.setLevel(level)
            logger_.propagate = False


def _initial_media_ref(config: Config, log: logging.Logger) -> str:
    """Validate the configured initial video, falling back to none."""
    if not config.initial_media:
        return ''
    try:
        return extract_media_ref(config.initial_media)
    except MediaRefError as e:
        log.warning(f'Ignoring WATCHPARTY_INITIAL_MEDIA: {e}')
        return ''


def get_state(app: Quart) -> WebRouteState:
    """Return the session state attached to an app built by create_app."""
    return app.extensions[STATE_EXTENSION]


def create_app(config: Optional[Config] = None, now: Callable[[], float] = now_ms) -> Quart:
    """Create and configure the Quart application.

    Args:
        config: Configuration, read from the environment if omitted.
        now: Time source in milliseconds since the epoch.
    """
    config = config or Config()
    loggers = LoggerManager(config)
    app = Quart(__name__)

    media_ref = _initial_media_ref(config, loggers.session)
    clock = SessionClock(media_ref=media_ref, now=now())
    hub = SessionHub(clock, now=now, logger=loggers.session)

    state = WebRouteState(hub=hub)
    app.extensions[STATE_EXTENSION] = state

    register_routes(app, config, loggers, state)

    loggers.session.info(f'Session ready, initial video: {media_ref or "(none)"}')
    return app
