from typing import Optional

UNKNOWN_ADDRESS = 'unknown'


def get_client_address(conn) -> str:
    """Viewer address for a request or WebSocket handshake.

    Behind a proxy this is the first ``X-Forwarded-For`` hop.
    """
    hops = [hop.strip() for hop in conn.headers.get('X-Forwarded-For', '').split(',') if hop.strip()]
    if hops:
        return hops[0]
    return conn.remote_addr or UNKNOWN_ADDRESS


def _normalize_origin(origin: str) -> str:
    return origin.strip().rstrip('/').lower()


def parse_allowed_origins(raw: str) -> tuple[str, ...]:
    """Parse a comma-separated origin list. ``*`` allows any origin."""
    origins = tuple(_normalize_origin(o) for o in raw.split(',') if o.strip())
    if '*' in origins:
        return ('*',)
    return origins


def is_origin_allowed(origin: Optional[str], allowed_origins: tuple[str, ...]) -> bool:
    """Check a browser Origin header against the allowed list.

    Requests without an Origin header come from non-browser clients and are
    always allowed; the origin policy only protects browsers.
    """
    if '*' in allowed_origins or not origin:
        return True
    return _normalize_origin(origin) in allowed_origins


def cors_allow_origin(origin: Optional[str], allowed_origins: tuple[str, ...]) -> Optional[str]:
    """Value for Access-Control-Allow-Origin, or None to omit the header."""
    if '*' in allowed_origins:
        return '*'
    if origin and is_origin_allowed(origin, allowed_origins):
        return origin
    return None
