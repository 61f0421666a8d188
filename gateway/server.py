"""
Remote Gateway - Lifecycle Manager
====================================
The host process's only handle on the gateway.

The gateway runs uvicorn in a daemon thread so the host's own thread
(a desktop UI loop, a CLI, a test) stays responsive. The listening socket
is bound synchronously inside start(), so a port that is already taken
is reported to the caller immediately as a failure result instead of
surfacing later inside the server thread.

Result shapes:
    start()      -> {"success": True, "port": 3000, "ips": {...}}
                    {"success": False, "error": "Port 3000 is unavailable: ..."}
    stop()       -> {"success": True}
    set_config() -> same shape as start() when the port moves,
                    otherwise {"success": True, "port": ...}
    get_status() -> {"running", "port", "connectedClients", "localAddresses"}

Usage:
    gateway = GatewayServer(accessor=my_accessor)
    result = gateway.start(3000, "secret123")
    ...
    gateway.stop()
"""

import ipaddress
import logging
import os
import platform
import socket
import threading
import time
from importlib import metadata
from typing import Any

import psutil
import uvicorn

from gateway.accessor import DataAccessor
from gateway.config import DEFAULTS
from gateway.context import GatewayContext
from gateway.errors import GatewayError, StartupFailure, ValidationError
from gateway.main import create_app


logger = logging.getLogger(__name__)

# Seconds to wait for uvicorn to finish startup / shutdown
STARTUP_TIMEOUT = 10.0
SHUTDOWN_TIMEOUT = 10.0

# Distributions reported by get_server_versions()
VERSIONED_PACKAGES = [
    "fastapi", "uvicorn", "bcrypt", "python-jose", "jinja2", "psutil",
]


class GatewayServer:
    """
    Controls the gateway's lifecycle.

    Attributes:
        context: Gateway state shared with every request handler.
        host:    Address the server binds to.
        port:    Configured (or, once running, actual) port.
    """

    def __init__(
        self,
        accessor: DataAccessor | None = None,
        settings: dict | None = None,
        bcrypt_rounds: int = DEFAULTS["auth"]["bcrypt_rounds"],
        project_dir: str | None = None,
    ):
        """
        Args:
            accessor:      Host data accessor; may also be set later.
            settings:      The 'web' section of the configuration.
            bcrypt_rounds: Cost factor for password hashing.
            project_dir:   Root directory holding web/.
        """
        web = dict(DEFAULTS["web"])
        web.update(settings or {})
        self.settings = web
        self.host: str = web["host"]
        self.port: int = web["port"]
        self.project_dir = project_dir

        self.context = GatewayContext.create(
            accessor=accessor,
            require_password=web["require_password"],
            bcrypt_rounds=bcrypt_rounds,
            auth_grace_seconds=web["auth_grace_seconds"],
        )

        # Thread management
        self._lock = threading.RLock()
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        """True while the server thread is alive and accepting connections."""
        return (
            self._server is not None
            and self._thread is not None
            and self._thread.is_alive()
            and self._server.started
            and not self._server.should_exit
        )

    def set_data_accessor(self, accessor: DataAccessor | None) -> None:
        """Attach or replace the host data accessor (takes effect immediately)."""
        self.context.accessor = accessor

    def start(self, port: int | None = None, password: str | None = None) -> dict[str, Any]:
        """
        Start serving on `port`.

        A non-empty password replaces the stored one. Either way a new
        signing secret is generated, so tokens never survive a restart.

        Returns:
            A result dict; failures (port in use, missing password) are
            reported there and never raised.
        """
        with self._lock:
            if self.is_running:
                return {"success": False, "error": "Gateway is already running"}

            try:
                self._apply_password(password)
                sock = self._bind(self.port if port is None else port)
                self.port = sock.getsockname()[1]
                self._launch(sock)
            except GatewayError as e:
                logger.error("Failed to start gateway: %s", e.message)
                return {"success": False, "error": e.message}

            logger.info("Remote gateway listening on %s:%d", self.host, self.port)
            return {"success": True, "port": self.port, "ips": get_local_ips()}

    def stop(self) -> dict[str, Any]:
        """
        Stop the server and wait for the thread to exit.

        Open realtime connections are closed by uvicorn's shutdown and
        unregister themselves.
        """
        with self._lock:
            server, thread = self._server, self._thread
            if server is None or thread is None:
                return {"success": True}

            server.should_exit = True
            thread.join(timeout=SHUTDOWN_TIMEOUT)
            if thread.is_alive():
                logger.warning("Gateway thread did not exit within %.0fs", SHUTDOWN_TIMEOUT)

            self._server = None
            self._thread = None
            logger.info("Remote gateway stopped")
            return {"success": True}

    def set_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """
        Apply a new {port, password} configuration.

        Any reconfiguration installs a new Credential, logging out every
        remote client, including open realtime connections. If the server
        is running and the port changed, it is moved to the new port.

        The new port is bound before the running server is stopped; if it
        is unavailable the call fails and nothing changes.
        """
        with self._lock:
            new_port = config.get("port") or DEFAULTS["web"]["port"]
            password = config.get("password")
            move = self.is_running and new_port != self.port

            sock = None
            if move:
                try:
                    sock = self._bind(new_port)
                except StartupFailure as e:
                    logger.error("Gateway stays on port %d: %s", self.port, e.message)
                    return {"success": False, "error": e.message}

            try:
                if password:
                    self.context.credentials.set_password(password)
                else:
                    self.context.credentials.rotate_signing_secret()
            except ValidationError as e:
                if sock is not None:
                    sock.close()
                return {"success": False, "error": e.message}

            if not move:
                self.port = new_port
                if self.is_running:
                    closed = self.context.channel.revoke_sessions_threadsafe()
                    logger.info("Reconfigured; %d realtime session(s) revoked", closed)
                return {"success": True, "port": self.port}

            # Stopping closes every realtime connection
            self.stop()
            try:
                self.port = sock.getsockname()[1]
                self._launch(sock)
            except GatewayError as e:
                logger.error("Failed to restart gateway: %s", e.message)
                return {"success": False, "error": e.message}

            logger.info("Remote gateway moved to %s:%d", self.host, self.port)
            return {"success": True, "port": self.port, "ips": get_local_ips()}

    def get_status(self) -> dict[str, Any]:
        """Current server status, computed on demand."""
        return {
            "running": self.is_running,
            "port": self.port,
            "connectedClients": self.context.registry.count(),
            "localAddresses": get_local_ips(),
        }

    # -- Internal helpers ------------------------------------------------------

    def _apply_password(self, password: str | None) -> None:
        credentials = self.context.credentials
        if password:
            credentials.set_password(password)
        elif credentials.require_password and not credentials.is_configured:
            raise ValidationError("A password is required to start the gateway")
        else:
            credentials.rotate_signing_secret()

    def _bind(self, port: int) -> socket.socket:
        """Bind and listen now, so 'address in use' surfaces here."""
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if os.name != "nt":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, port))
            sock.listen(128)
        except OSError as e:
            sock.close()
            raise StartupFailure(f"Port {port} is unavailable: {e.strerror or e}")
        return sock

    def _launch(self, sock: socket.socket) -> None:
        """Run uvicorn on `sock` in a daemon thread and wait for startup."""
        app = create_app(self.context, self.settings, self.project_dir)
        config = uvicorn.Config(
            app,
            log_level="info",
            timeout_graceful_shutdown=5,
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(
            target=server.run,
            kwargs={"sockets": [sock]},
            daemon=True,
            name="remote-gateway",
        )
        thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT
        while not server.started:
            if not thread.is_alive() or time.monotonic() > deadline:
                server.should_exit = True
                thread.join(timeout=SHUTDOWN_TIMEOUT)
                sock.close()
                raise StartupFailure("Server failed to start")
            time.sleep(0.05)

        self._server = server
        self._thread = thread


def get_local_ips() -> dict[str, list[str]]:
    """
    Non-loopback addresses of this machine, for showing remote users
    where to connect.
    """
    ips: dict[str, list[str]] = {"ipv4": [], "ipv6": []}
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            address = addr.address.split("%", 1)[0]
            try:
                if ipaddress.ip_address(address).is_loopback:
                    continue
            except ValueError:
                continue
            key = "ipv4" if addr.family == socket.AF_INET else "ipv6"
            if address not in ips[key]:
                ips[key].append(address)
    return ips


def get_server_versions() -> dict[str, str]:
    """Versions of the gateway's libraries and the Python runtime."""
    versions = {}
    for name in VERSIONED_PACKAGES:
        try:
            versions[name] = metadata.version(name)
        except metadata.PackageNotFoundError:
            versions[name] = "Unknown"
    versions["python"] = platform.python_version()
    return versions
