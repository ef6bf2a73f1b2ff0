from watchparty.web.routes import register_routes
from watchparty.web.state import WebRouteState

__all__ = ['register_routes', 'WebRouteState']
