"""
Remote Gateway - Realtime Channel
===================================
WebSocket endpoint for remote clients. Every connection runs its own
receive loop driving a small state machine:

    connected --authenticate(ok)--> authenticated
        |                               |
        +--auth failure / timeout / ----+--revoked--> disconnected
           premature message                         (record unregistered)

Until the client authenticates, the only message honoured is
"authenticate"; anything else gets an "auth_error" and the connection is
closed. A connection that stays unauthenticated longer than the grace
period is closed the same way. When the gateway's credential changes,
authenticated connections are revoked with an "auth_error" too.

Message format (both directions):
    {
        "type": "authenticate",
        "data": "<token>",
        "timestamp": "2026-02-08T12:00:00+00:00"   # added on outbound
    }

Message types (client -> server):
    - "authenticate" : data is the bearer token from /api/login
    - "ping"         : keepalive, answered with "pong"

Message types (server -> client):
    - "connected"     : data.id is the server-assigned connection id
    - "authenticated" : handshake succeeded
    - "auth_error"    : handshake failed or session revoked; the server
                        closes the socket
    - "error"         : malformed or unsupported message
    - "pong"          : keepalive reply
"""

import asyncio
import concurrent.futures
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from gateway.auth import TokenService
from gateway.errors import AuthInvalid
from gateway.registry import ConnectionRecord, ConnectionRegistry


logger = logging.getLogger(__name__)

# Close code for policy violations (RFC 6455)
POLICY_VIOLATION = 1008


class RealtimeChannel:
    """
    Accepts WebSocket connections and tracks them in the registry.

    Attributes:
        tokens:             Verifies the token sent in the handshake.
        registry:           Table of live connections.
        auth_grace_seconds: How long an unauthenticated connection may stay open.
    """

    def __init__(
        self,
        tokens: TokenService,
        registry: ConnectionRegistry,
        auth_grace_seconds: float = 10.0,
    ):
        self.tokens = tokens
        self.registry = registry
        self.auth_grace_seconds = auth_grace_seconds
        # Event loop serving the connections; set on the first accept
        self._loop: asyncio.AbstractEventLoop | None = None

    async def handle(self, websocket: WebSocket) -> None:
        """
        Serve one connection from accept to disconnect.

        The ConnectionRecord is always unregistered on the way out,
        whatever ended the connection.
        """
        self._loop = asyncio.get_running_loop()
        await websocket.accept()

        client = websocket.client
        record = ConnectionRecord(
            connection_id=uuid.uuid4().hex,
            remote=f"{client.host}:{client.port}" if client else "unknown",
            socket=websocket,
        )
        self.registry.register(record)
        logger.info("Client connected: %s (%s)", record.connection_id, record.remote)

        try:
            await self._send(websocket, "connected", {"id": record.connection_id})
            await self._receive_loop(websocket, record)
        except WebSocketDisconnect:
            pass
        except Exception:
            logger.exception("Realtime connection %s failed", record.connection_id)
        finally:
            self.registry.unregister(record.connection_id)
            logger.info("Client disconnected: %s", record.connection_id)

    async def broadcast(self, message: dict[str, Any]) -> int:
        """
        Send a message to every authenticated client.

        A timestamp is added unless the message carries one; the
        caller's dict is left untouched. Clients whose send fails are skipped;
        their own receive loop unregisters them.

        Returns:
            Number of clients the message was delivered to.
        """
        payload = json.dumps({"timestamp": _now(), **message}, ensure_ascii=False)

        delivered = 0
        for ws in self.registry.authenticated_sockets():
            try:
                await ws.send_text(payload)
                delivered += 1
            except Exception:
                logger.debug("Broadcast to a closed socket skipped")
        return delivered

    async def revoke_sessions(self, reason: str = "Session revoked") -> int:
        """
        Send "auth_error" to every authenticated client and close it.

        Used after the credential changes: those clients were admitted
        with a token that no longer verifies, so they must log in again.
        Unauthenticated connections are left to their own handshake.

        Returns:
            Number of connections closed.
        """
        closed = 0
        for record in self.registry.snapshot():
            if not record.authenticated or record.socket is None:
                continue
            try:
                await self._reject(record.socket, record, reason)
                closed += 1
            except Exception:
                logger.debug("Revoking %s: socket already closed", record.connection_id)
        return closed

    def revoke_sessions_threadsafe(self, reason: str = "Session revoked", timeout: float = 5.0) -> int:
        """
        Run revoke_sessions() on the serving event loop from another thread.

        Returns 0 when no loop is serving connections. Must not be called
        from the serving loop itself.
        """
        loop = self._loop
        if loop is None or loop.is_closed() or not loop.is_running():
            return 0
        future = asyncio.run_coroutine_threadsafe(self.revoke_sessions(reason), loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning("Revoking realtime sessions timed out after %.0fs", timeout)
            return 0

    # -- State machine ---------------------------------------------------------

    async def _receive_loop(self, websocket: WebSocket, record: ConnectionRecord) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.auth_grace_seconds
        authenticated = False

        while True:
            if authenticated:
                raw = await self._receive(websocket)
            else:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    raw = await asyncio.wait_for(self._receive(websocket), remaining)
                except asyncio.TimeoutError:
                    await self._reject(websocket, record, "Authentication timed out")
                    return

            message = _parse(raw)
            if message is None:
                await self._send(websocket, "error", "Malformed message")
                continue

            msg_type = message.get("type")

            if not authenticated:
                if msg_type != "authenticate":
                    await self._reject(websocket, record, "Authentication required")
                    return
                if not await self._authenticate(websocket, record, message.get("data")):
                    return
                authenticated = True
                continue

            await self._dispatch(websocket, record, msg_type, message.get("data"))

    async def _authenticate(self, websocket: WebSocket, record: ConnectionRecord, token: Any) -> bool:
        if not isinstance(token, str) or not token:
            await self._reject(websocket, record, "Authentication failed")
            return False

        try:
            self.tokens.verify(token)
        except AuthInvalid:
            await self._reject(websocket, record, "Authentication failed")
            return False

        self.registry.mark_authenticated(record.connection_id)
        await self._send(websocket, "authenticated", "Authentication successful")
        logger.info("Client authenticated: %s", record.connection_id)
        return True

    async def _dispatch(
        self, websocket: WebSocket, record: ConnectionRecord, msg_type: Any, data: Any
    ) -> None:
        """Handle a message from an authenticated client."""
        if msg_type == "ping":
            await self._send(websocket, "pong", data)
        elif msg_type == "authenticate":
            await self._send(websocket, "error", "Already authenticated")
        else:
            await self._send(websocket, "error", f"Unsupported message type: {msg_type}")

    async def _reject(self, websocket: WebSocket, record: ConnectionRecord, reason: str) -> None:
        logger.info("Closing connection %s: %s", record.connection_id, reason)
        await self._send(websocket, "auth_error", reason)
        await websocket.close(code=POLICY_VIOLATION)

    # -- Transport helpers -----------------------------------------------------

    @staticmethod
    async def _receive(websocket: WebSocket) -> str | bytes:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    @staticmethod
    async def _send(websocket: WebSocket, msg_type: str, data: Any) -> None:
        payload = {"type": msg_type, "data": data, "timestamp": _now()}
        await websocket.send_text(json.dumps(payload, ensure_ascii=False))


def _parse(raw: str | bytes) -> dict | None:
    """Decode a JSON object frame; None if it is not one."""
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return message if isinstance(message, dict) else None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
