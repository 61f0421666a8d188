"""
Remote Gateway - Package
==========================
Network gateway that re-exposes a desktop writing application to other
devices on the same LAN.

This package provides:
- FastAPI web application serving the remote UI and a REST API
- WebSocket endpoint with a token handshake for realtime clients
- Single shared password authentication with bcrypt and JWT tokens
- A lifecycle manager the host process uses to start/stop the gateway

Architecture:
    server.py    -> GatewayServer: start / stop / set_config / get_status
    main.py      -> FastAPI app creation, middleware, static file serving
    routes.py    -> REST API endpoint handlers
    auth.py      -> Password hashing, JWT tokens, route protection
    websocket.py -> Realtime channel (per-connection handshake state machine)
    registry.py  -> Table of live realtime connections
    accessor.py  -> Data accessor contract implemented by the host
    bootstrap.py -> Remote UI document (title, login overlay, API shim)
    config.py    -> Read/write config.yaml and .env files
    context.py   -> Per-gateway state shared by all handlers
    errors.py    -> Exception hierarchy
"""

__version__ = "1.0.0"
