from quart import Response, jsonify, request

from watchparty.web.helpers import cors_allow_origin, get_client_address
from watchparty.web.state import WebRouteState


def register_api_routes(app, config, loggers, state: WebRouteState) -> None:
    """Register HTTP endpoints used by load balancers and dashboards."""

    @app.after_request
    async def add_cors_headers(response: Response) -> Response:
        """Let browser pages on allowed origins read the HTTP endpoints."""
        allow_origin = cors_allow_origin(request.headers.get('Origin'), config.allowed_origins)
        if allow_origin is not None:
            response.headers['Access-Control-Allow-Origin'] = allow_origin
            response.headers['Access-Control-Allow-Methods'] = 'GET, OPTIONS'
            response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
            if allow_origin != '*':
                response.headers['Vary'] = 'Origin'
        return response

    @app.route('/health', methods=['GET'])
    async def health_route():
        """Lightweight health check endpoint."""
        return 'OK', 200

    @app.route('/session', methods=['GET'])
    async def session_route():
        """Current session state, extrapolated to now."""
        client_ip = get_client_address(request)
        loggers.api.debug(f'[{client_ip}] session /session')

        snapshot, viewer_count = await state.hub.snapshot()
        response = jsonify({
            'mediaRef': snapshot.media_ref,
            'playing': snapshot.playing,
            'position': snapshot.position,
            'serverTime': snapshot.server_time,
            'viewerCount': viewer_count,
            'uniqueAddresses': len(state.hub.registry.addresses),
        })
        response.headers['Cache-Control'] = 'no-cache'
        return response
