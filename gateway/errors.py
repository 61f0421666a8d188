"""
Remote Gateway - Error Types
==============================
Exception hierarchy shared by the credential store, token service, HTTP
routes and lifecycle manager.

HTTP-facing errors carry the status code they map to. The app-level
exception handler in main.py turns any GatewayError into the standard
JSON envelope:

    {"error": "<message>"}
"""


class GatewayError(Exception):
    """Base class for all gateway errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class AuthMissing(GatewayError):
    """No bearer token was presented."""

    status_code = 401


class AuthInvalid(GatewayError):
    """Token signature or format is wrong, or it was signed by an old secret."""

    status_code = 403


class AuthExpired(AuthInvalid):
    """Token signature is valid but its expiry has passed."""


class ValidationError(GatewayError):
    """A required field is missing or empty (e.g. an empty password)."""

    status_code = 400


class AccessorFailure(GatewayError):
    """The host's data accessor rejected or failed an operation."""

    status_code = 500


class StartupFailure(GatewayError):
    """The server could not start (port already bound, bad config, ...)."""
