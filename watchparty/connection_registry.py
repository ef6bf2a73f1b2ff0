from watchparty.peer import Peer


class ConnectionRegistry:
    """Set of live peers for one session.

    Every WebSocket connection counts as one viewer, so two tabs from the
    same address are two viewers. Connections per address are tracked
    alongside for the status endpoint.

    Not locked: the SessionHub serializes all membership changes.
    """

    def __init__(self):
        self._peers: set[Peer] = set()
        self._addresses: dict[str, int] = {}  # address -> connection count

    def add(self, peer: Peer) -> bool:
        """Register a peer. Returns False if it was already registered."""
        if peer in self._peers:
            return False
        self._peers.add(peer)
        self._addresses[peer.address] = self._addresses.get(peer.address, 0) + 1
        return True

    def discard(self, peer: Peer) -> bool:
        """Unregister a peer. Returns False if it was not registered."""
        if peer not in self._peers:
            return False
        self._peers.discard(peer)
        self._addresses[peer.address] -= 1
        if self._addresses[peer.address] <= 0:
            del self._addresses[peer.address]
        return True

    def __contains__(self, peer: Peer) -> bool:
        return peer in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    @property
    def count(self) -> int:
        """Return the number of live connections."""
        return len(self._peers)

    @property
    def peers(self) -> list[Peer]:
        """Return a snapshot of the live peers."""
        return list(self._peers)

    @property
    def addresses(self) -> dict[str, int]:
        """Return a snapshot of connected addresses (address -> connection count)."""
        return self._addresses.copy()
