import asyncio
import itertools
from typing import Any, Optional


DEFAULT_QUEUE_SIZE = 64


class Peer:
    """One connected viewer.

    The hub never writes to the transport directly. It drops messages into
    the peer's bounded outbound queue with ``deliver`` and the transport
    drains it with ``next_message``. A full queue means the peer is not
    keeping up and gets disconnected.
    """

    _ids = itertools.count(1)

    def __init__(self, address: str = 'unknown', queue_size: int = DEFAULT_QUEUE_SIZE):
        self.id = next(Peer._ids)
        self.address = address
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: dict[str, Any]) -> bool:
        """Queue ``message`` without blocking. Returns False if it was not queued."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def next_message(self) -> Optional[dict[str, Any]]:
        """Wait for the next outbound message; None once the peer is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def drain(self) -> list[dict[str, Any]]:
        """Remove and return every queued message without waiting."""
        messages = []
        while True:
            try:
                message = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if message is not None:
                messages.append(message)
        return messages

    def close(self) -> None:
        """Discard pending messages and wake up the transport's sender."""
        if self._closed:
            return
        self._closed = True
        self.drain()
        self._queue.put_nowait(None)

    def __repr__(self) -> str:
        return f'Peer(id={self.id}, address={self.address!r})'

    def __str__(self) -> str:
        return f'[{self.address}#{self.id}]'
