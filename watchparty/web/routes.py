from watchparty.web.api_routes import register_api_routes
from watchparty.web.state import WebRouteState
from watchparty.web.ws_routes import register_ws_routes


def register_routes(app, config, loggers, state: WebRouteState) -> None:
    """Register all web routes by concern area."""
    register_api_routes(app, config, loggers, state)
    register_ws_routes(app, config, loggers, state)
