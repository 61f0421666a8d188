"""
Remote Gateway - Connection Registry
======================================
Process-wide table of live realtime (WebSocket) connections.

The registry is mutated from the uvicorn event loop as connections come
and go, and read from host threads through GatewayServer.get_status().
A plain threading.Lock serializes every access; no method awaits or does
I/O while holding it.
"""

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


@dataclass
class ConnectionRecord:
    """
    One live realtime connection.

    Attributes:
        connection_id: Server-assigned identifier (uuid4 hex).
        remote:        Client address as "host:port".
        connected_at:  When the transport handshake completed (UTC).
        authenticated: Flips from False to True once, on a valid token.
        socket:        The live WebSocket, kept for future fan-out.
    """
    connection_id: str
    remote: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    authenticated: bool = False
    socket: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.connection_id,
            "remote": self.remote,
            "connectedAt": self.connected_at.isoformat(),
            "authenticated": self.authenticated,
        }


class ConnectionRegistry:
    """Thread-safe in-memory map of connection id -> ConnectionRecord."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, ConnectionRecord] = {}

    def register(self, record: ConnectionRecord) -> None:
        """
        Add a connection.

        Raises:
            KeyError: If the id is already registered.
        """
        with self._lock:
            if record.connection_id in self._records:
                raise KeyError(f"Connection '{record.connection_id}' already registered")
            self._records[record.connection_id] = record

    def unregister(self, connection_id: str) -> ConnectionRecord | None:
        """Remove a connection. Returns the removed record, or None."""
        with self._lock:
            return self._records.pop(connection_id, None)

    def get(self, connection_id: str) -> ConnectionRecord | None:
        with self._lock:
            return self._records.get(connection_id)

    def mark_authenticated(self, connection_id: str) -> bool:
        """
        Flip a connection's authenticated flag.

        Returns:
            True only on the first transition; False if the connection is
            unknown or already authenticated.
        """
        with self._lock:
            record = self._records.get(connection_id)
            if record is None or record.authenticated:
                return False
            record.authenticated = True
            return True

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def snapshot(self) -> list[ConnectionRecord]:
        """Copies of all current records, oldest first."""
        with self._lock:
            records = [replace(r) for r in self._records.values()]
        return sorted(records, key=lambda r: r.connected_at)

    def authenticated_sockets(self) -> list[Any]:
        """Live sockets of authenticated connections (broadcast targets)."""
        with self._lock:
            return [
                r.socket for r in self._records.values()
                if r.authenticated and r.socket is not None
            ]
