"""
Remote Gateway - Authentication Module
=========================================
Single shared password authentication for remote devices.

Security model:
- One shared password (no user accounts), stored only as a bcrypt hash
- One random signing secret, generated in memory at startup
- JWT tokens (HS256) issued on successful login, valid for 24 hours
- All API routes except /api/login and /api/status require a valid token

The password hash and signing secret live together in one immutable
Credential value. Reconfiguring the gateway swaps in a whole new
Credential, so every token signed under the old secret stops verifying
immediately (forced logout). Nothing is written to disk: the host
process re-supplies the password on every start.
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import bcrypt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from gateway.errors import AuthExpired, AuthInvalid, AuthMissing, ValidationError


logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = 24
TOKEN_SUBJECT = "remote_user"

# Size of the HMAC signing secret in bytes (512 bits)
SECRET_BYTES = 64

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_BYTES = 72

# Security scheme for FastAPI dependency injection
security = HTTPBearer(auto_error=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_signing_secret() -> bytes:
    """Return a fresh cryptographically secure signing secret."""
    return secrets.token_bytes(SECRET_BYTES)


@dataclass(frozen=True)
class Credential:
    """
    The gateway's password hash and token signing secret.

    Attributes:
        password_hash:  bcrypt hash of the shared password, or None if unset.
        signing_secret: HMAC key used to sign session tokens.
    """
    password_hash: bytes | None
    signing_secret: bytes


@dataclass(frozen=True)
class Claims:
    """Verified contents of a session token."""
    subject: str
    issued_at: datetime
    expires_at: datetime


class CredentialStore:
    """
    Holds the current Credential and swaps it atomically.

    Readers grab the `credential` reference once and use that snapshot,
    so a concurrent rotation is observed either entirely or not at all.
    bcrypt work happens outside the lock; only the swap is serialized.

    Attributes:
        require_password: If False and no password is set, any non-empty
                          password is accepted ("open mode").
        rounds:           bcrypt cost factor.
    """

    def __init__(self, require_password: bool = True, rounds: int = 10):
        self.require_password = require_password
        self.rounds = rounds
        self._lock = threading.Lock()
        self._credential = Credential(
            password_hash=None,
            signing_secret=generate_signing_secret(),
        )

    @property
    def credential(self) -> Credential:
        """The current Credential (an immutable snapshot)."""
        return self._credential

    @property
    def is_configured(self) -> bool:
        """True if a password hash is set."""
        return self._credential.password_hash is not None

    def set_password(self, password: str | None) -> None:
        """
        Hash and install a new shared password.

        A fresh signing secret is generated along with the hash, so all
        tokens issued under the previous Credential become invalid.

        Args:
            password: Plaintext password. May be empty only when
                      require_password is False, which clears the hash.

        Raises:
            ValidationError: If the password is empty while required,
                             or longer than bcrypt can handle.
        """
        if not password:
            if self.require_password:
                raise ValidationError("Password must not be empty.")
            password_hash = None
        else:
            encoded = password.encode("utf-8")
            if len(encoded) > BCRYPT_MAX_BYTES:
                raise ValidationError(
                    f"Password must be at most {BCRYPT_MAX_BYTES} bytes."
                )
            password_hash = bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds))

        new_credential = Credential(
            password_hash=password_hash,
            signing_secret=generate_signing_secret(),
        )
        with self._lock:
            self._credential = new_credential
        logger.info("Gateway credential replaced; outstanding tokens revoked")

    def verify_password(self, password: str | None) -> bool:
        """
        Check a plaintext password against the stored hash.

        Never raises: a mismatch, an unset hash, a malformed hash or an
        over-long password all simply return False.
        """
        if not password:
            return False

        password_hash = self._credential.password_hash
        if password_hash is None:
            return not self.require_password

        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash)
        except ValueError:
            return False

    def rotate_signing_secret(self) -> None:
        """Replace the signing secret, keeping the password hash."""
        with self._lock:
            self._credential = Credential(
                password_hash=self._credential.password_hash,
                signing_secret=generate_signing_secret(),
            )
        logger.info("Signing secret rotated; outstanding tokens revoked")


class TokenService:
    """
    Issues and verifies stateless session tokens.

    There is no session table: validity is decided entirely by the
    signature (against the current signing secret) and the expiry claim.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        clock: Callable[[], datetime] = _utcnow,
        lifetime: timedelta = timedelta(hours=JWT_EXPIRATION_HOURS),
    ):
        self.credentials = credentials
        self.clock = clock
        self.lifetime = lifetime

    def issue(self, subject: str = TOKEN_SUBJECT) -> str:
        """
        Sign a new token for `subject`.

        Callers are responsible for checking the password first.
        """
        now = self.clock()
        payload = {
            "sub": subject,
            "iat": int(now.timestamp()),
            "exp": int((now + self.lifetime).timestamp()),
        }
        return jwt.encode(
            payload, self.credentials.credential.signing_secret, algorithm=JWT_ALGORITHM
        )

    def verify(self, token: str) -> Claims:
        """
        Verify a token's signature and expiry.

        Returns:
            The decoded Claims.

        Raises:
            AuthExpired: The signature is valid but the token has expired.
            AuthInvalid: Bad signature, old secret, or malformed token.
        """
        secret = self.credentials.credential.signing_secret
        try:
            payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
        except ExpiredSignatureError:
            raise AuthExpired("Access token has expired")
        except JWTError:
            raise AuthInvalid("Invalid access token")

        try:
            return Claims(
                subject=payload["sub"],
                issued_at=datetime.fromtimestamp(payload["iat"], timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], timezone.utc),
            )
        except (KeyError, TypeError, ValueError):
            raise AuthInvalid("Invalid access token")


def require_auth(tokens: TokenService):
    """
    Create a FastAPI dependency that enforces bearer-token authentication.

    Usage in routes:
        router = APIRouter(dependencies=[Depends(require_auth(tokens))])

    A missing token raises AuthMissing (401), a bad or expired one raises
    AuthInvalid (403). On success the verified Claims are attached to
    `request.state.claims`.

    Args:
        tokens: The TokenService used for verification.

    Returns:
        A FastAPI dependency function.
    """
    async def _verify(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> Claims:
        if credentials is None or not credentials.credentials:
            raise AuthMissing("Access token required")

        claims = tokens.verify(credentials.credentials)
        request.state.claims = claims
        return claims

    return _verify
