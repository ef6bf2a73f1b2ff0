import asyncio

from quart import abort, websocket

from watchparty.peer import Peer
from watchparty.protocol import encode
from watchparty.web.helpers import get_client_address, is_origin_allowed
from watchparty.web.state import WebRouteState


def register_ws_routes(app, config, loggers, state: WebRouteState) -> None:
    """Register the session WebSocket endpoint."""

    async def _receive(peer: Peer) -> None:
        """Feed inbound frames to the hub until the socket closes."""
        while True:
            frame = await websocket.receive()
            await state.hub.dispatch(peer, frame)

    async def _send(peer: Peer) -> None:
        """Drain the peer's outbound queue onto the socket.

        Returns when the hub closes the peer or when a send fails.
        """
        while True:
            message = await peer.next_message()
            if message is None:
                return
            try:
                await websocket.send(encode(message))
            except Exception as e:
                loggers.ws.warning(f'{peer} send failed: {e}')
                return

    @app.websocket('/ws')
    async def session_socket():
        """One viewer connection.

        A receiver task feeds commands to the hub and a sender task drains
        the peer's queue. Whichever finishes first ends the connection.
        """
        client_ip = get_client_address(websocket)
        origin = websocket.headers.get('Origin')
        if not is_origin_allowed(origin, config.allowed_origins):
            loggers.ws.warning(f'[{client_ip}] rejected WebSocket from origin {origin}')
            abort(403)

        await websocket.accept()
        peer = Peer(address=client_ip, queue_size=config.peer_queue_size)
        loggers.ws.info(f'{peer} WebSocket connected')

        try:
            async with state.hub.connected(peer):
                receiver = asyncio.ensure_future(_receive(peer))
                sender = asyncio.ensure_future(_send(peer))
                try:
                    done, _ = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
                    for task in done:
                        if not task.cancelled() and task.exception() is not None:
                            loggers.ws.error(f'{peer} connection task failed: {task.exception()!r}')
                finally:
                    receiver.cancel()
                    sender.cancel()
        finally:
            loggers.ws.info(f'{peer} WebSocket disconnected')
