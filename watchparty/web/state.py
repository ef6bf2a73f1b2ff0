from dataclasses import dataclass

from watchparty.session_hub import SessionHub


@dataclass
class WebRouteState:
    """Session state shared by the route registration modules."""

    hub: SessionHub
