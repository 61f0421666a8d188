"""Tests for the realtime channel handshake and connection tracking."""

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from gateway.accessor import DataAccessor
from gateway.context import GatewayContext
from gateway.main import create_app
from gateway.registry import ConnectionRecord
from gateway.websocket import POLICY_VIOLATION
from tests.conftest import BCRYPT_ROUNDS, PASSWORD


def expect_close(ws, code=POLICY_VIOLATION):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        ws.receive_json()
    assert exc_info.value.code == code


def test_connect_assigns_id_and_registers(client, context):
    with client.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        connection_id = hello["data"]["id"]

        record = context.registry.get(connection_id)
        assert record is not None
        assert record.authenticated is False
        assert client.get("/api/status").json()["connectedClients"] == 1

    assert context.registry.count() == 0


def test_authenticate_with_valid_token(client, context, token):
    with client.websocket_connect("/ws") as ws:
        connection_id = ws.receive_json()["data"]["id"]
        ws.send_json({"type": "authenticate", "data": token})

        reply = ws.receive_json()
        assert reply["type"] == "authenticated"
        assert "timestamp" in reply
        assert context.registry.get(connection_id).authenticated is True

        ws.send_json({"type": "ping", "data": 1})
        pong = ws.receive_json()
        assert (pong["type"], pong["data"]) == ("pong", 1)

        ws.send_json({"type": "authenticate", "data": token})
        assert ws.receive_json()["type"] == "error"

    assert context.registry.count() == 0


@pytest.mark.parametrize("bad_token", ["", "garbage", None, 42])
def test_bad_token_closes_connection(client, context, bad_token):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "authenticate", "data": bad_token})

        assert ws.receive_json()["type"] == "auth_error"
        expect_close(ws)

    assert context.registry.count() == 0


def test_token_from_before_rotation_rejected(client, context, token):
    context.credentials.rotate_signing_secret()
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "authenticate", "data": token})
        assert ws.receive_json()["type"] == "auth_error"
        expect_close(ws)


def test_message_before_authentication_never_reaches_accessor():
    accessor = MagicMock(spec=DataAccessor)
    context = GatewayContext.create(accessor=accessor, bcrypt_rounds=BCRYPT_ROUNDS)
    context.credentials.set_password(PASSWORD)

    with TestClient(create_app(context)) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "get_projects", "data": None})

            reply = ws.receive_json()
            assert reply == {**reply, "type": "auth_error", "data": "Authentication required"}
            expect_close(ws)

    assert accessor.mock_calls == []
    assert context.registry.count() == 0


def test_malformed_frames_are_ignored_before_auth(client, token):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_text("{not json")
        assert ws.receive_json()["type"] == "error"
        ws.send_text("[1, 2]")
        assert ws.receive_json()["type"] == "error"

        ws.send_json({"type": "authenticate", "data": token})
        assert ws.receive_json()["type"] == "authenticated"


def test_unsupported_message_after_auth(client, token):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "authenticate", "data": token})
        ws.receive_json()

        ws.send_json({"type": "collaborate", "data": {}})
        reply = ws.receive_json()
        assert reply["type"] == "error"
        assert "collaborate" in reply["data"]


def test_unauthenticated_connection_times_out(accessor):
    context = GatewayContext.create(
        accessor=accessor, bcrypt_rounds=BCRYPT_ROUNDS, auth_grace_seconds=0.2
    )
    context.credentials.set_password(PASSWORD)

    with TestClient(create_app(context)) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            reply = ws.receive_json()
            assert reply["type"] == "auth_error"
            assert reply["data"] == "Authentication timed out"
            expect_close(ws)

    assert context.registry.count() == 0


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, payload):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


def test_broadcast_reaches_only_authenticated_clients(context):
    anonymous, trusted, dead = FakeSocket(), FakeSocket(), FakeSocket(fail=True)
    for name, sock in (("a", anonymous), ("t", trusted), ("d", dead)):
        context.registry.register(ConnectionRecord(connection_id=name, remote="x", socket=sock))
    context.registry.mark_authenticated("t")
    context.registry.mark_authenticated("d")

    delivered = asyncio.run(context.channel.broadcast({"type": "project_saved", "data": "novel"}))

    assert delivered == 1
    assert anonymous.sent == []
    assert '"project_saved"' in trusted.sent[0]
    assert '"timestamp"' in trusted.sent[0]


def test_broadcast_leaves_message_untouched(context):
    trusted = FakeSocket()
    context.registry.register(ConnectionRecord(connection_id="t", remote="x", socket=trusted))
    context.registry.mark_authenticated("t")
    message = {"type": "project_saved", "data": "novel"}

    asyncio.run(context.channel.broadcast(message))

    assert message == {"type": "project_saved", "data": "novel"}
    assert '"timestamp"' in trusted.sent[0]


def test_revoking_sessions_closes_authenticated_clients(client, context, token):
    with client.websocket_connect("/ws") as trusted, client.websocket_connect("/ws") as anonymous:
        trusted.receive_json()
        anonymous_id = anonymous.receive_json()["data"]["id"]
        trusted.send_json({"type": "authenticate", "data": token})
        assert trusted.receive_json()["type"] == "authenticated"

        context.credentials.rotate_signing_secret()
        assert context.channel.revoke_sessions_threadsafe() == 1

        reply = trusted.receive_json()
        assert (reply["type"], reply["data"]) == ("auth_error", "Session revoked")
        expect_close(trusted)

        # still in its grace period, and must now use a fresh token
        assert context.registry.get(anonymous_id) is not None
        anonymous.send_json({"type": "authenticate", "data": token})
        assert anonymous.receive_json()["type"] == "auth_error"
        expect_close(anonymous)

    assert context.registry.count() == 0


def test_revoking_without_a_serving_loop_is_a_no_op(context):
    assert context.channel.revoke_sessions_threadsafe() == 0
