"""
Remote Gateway - Server Context
=================================
The single object handed to every route and connection handler.

It owns the credential store, token service, connection registry and
realtime channel, and holds a reference to the host's data accessor.
Nothing here is a module-level global: two gateways in one process each
get their own context.
"""

from dataclasses import dataclass, field

from gateway import __version__
from gateway.accessor import DataAccessor
from gateway.auth import CredentialStore, TokenService
from gateway.registry import ConnectionRegistry
from gateway.websocket import RealtimeChannel


@dataclass
class GatewayContext:
    credentials: CredentialStore
    tokens: TokenService
    registry: ConnectionRegistry
    channel: RealtimeChannel
    accessor: DataAccessor | None = None
    version: str = field(default=__version__)

    @classmethod
    def create(
        cls,
        accessor: DataAccessor | None = None,
        require_password: bool = True,
        bcrypt_rounds: int = 10,
        auth_grace_seconds: float = 10.0,
    ) -> "GatewayContext":
        """Build a context with fresh credentials and an empty registry."""
        credentials = CredentialStore(require_password=require_password, rounds=bcrypt_rounds)
        tokens = TokenService(credentials)
        registry = ConnectionRegistry()
        channel = RealtimeChannel(tokens, registry, auth_grace_seconds=auth_grace_seconds)
        return cls(
            credentials=credentials,
            tokens=tokens,
            registry=registry,
            channel=channel,
            accessor=accessor,
        )
