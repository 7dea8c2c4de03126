"""Session tokens, password hashing, and request principal resolution."""

from __future__ import annotations

import base64
import hmac
import json
import os
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from joserfc import jws
from joserfc.errors import JoseError
from joserfc.jwk import OctKey

from human_farm_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from human_farm_service.services.user_store import UserStore

SESSION_PURPOSE = "session"
VERIFY_EMAIL_PURPOSE = "verify_email"

_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1
_SCRYPT_LENGTH = 32
_SALT_BYTES = 16


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request."""

    user_id: str
    user_type: str
    email: str | None
    email_verified: bool

    @property
    def is_agent(self) -> bool:
        return self.user_type == "agent"

    @property
    def is_human(self) -> bool:
        return self.user_type == "human"


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _scrypt(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=_SCRYPT_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)


def hash_password(password: str) -> str:
    """Derive a salted scrypt hash encoded as ``scrypt$<salt>$<hash>``."""
    salt = os.urandom(_SALT_BYTES)
    derived = _scrypt(salt).derive(password.encode())
    return f"scrypt${_b64encode(salt)}${_b64encode(derived)}"


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against a hash produced by hash_password."""
    parts = encoded.split("$")
    if len(parts) != 3 or parts[0] != "scrypt":
        return False
    try:
        _scrypt(_b64decode(parts[1])).verify(password.encode(), _b64decode(parts[2]))
    except InvalidKey:
        return False
    return True


class Authenticator:
    """
    Issues and verifies HS256 tokens and resolves callers to principals.

    Two credentials are accepted on requests: an ``Authorization: Bearer``
    session token, or an agent API key in ``X-API-Key``. The admin secret is
    a separate bearer credential used only by admin and watcher endpoints.
    """

    def __init__(
        self,
        user_store: UserStore,
        jwt_secret: str,
        token_ttl_seconds: int,
        verification_ttl_seconds: int,
        admin_secret: str | None,
    ) -> None:
        self._user_store = user_store
        self._key = OctKey.import_key(jwt_secret.encode())
        self._token_ttl_seconds = token_ttl_seconds
        self._verification_ttl_seconds = verification_ttl_seconds
        self._admin_secret = admin_secret

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _sign(self, payload: dict[str, Any]) -> str:
        protected = {"alg": "HS256", "typ": "JWT"}
        payload_bytes = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
        return jws.serialize_compact(protected, payload_bytes, self._key, algorithms=["HS256"])

    def issue_session_token(self, user: dict[str, Any]) -> str:
        """Issue a session token for a user row."""
        return self._sign(
            {
                "sub": user["id"],
                "type": user["type"],
                "email": user["email"],
                "purpose": SESSION_PURPOSE,
                "exp": int(time.time()) + self._token_ttl_seconds,
            }
        )

    def issue_verification_token(self, user: dict[str, Any]) -> str:
        """Issue a single-purpose token that confirms ownership of an email address."""
        return self._sign(
            {
                "sub": user["id"],
                "email": user["email"],
                "purpose": VERIFY_EMAIL_PURPOSE,
                "exp": int(time.time()) + self._verification_ttl_seconds,
            }
        )

    def decode_token(self, token: str, purpose: str) -> dict[str, Any]:
        """
        Verify a token's signature, expiry, and purpose and return its claims.

        Raises:
            ServiceError: INVALID_TOKEN (401)
        """
        try:
            obj = jws.deserialize_compact(token, self._key, algorithms=["HS256"])
            payload = json.loads(obj.payload)
        except (JoseError, ValueError) as exc:
            raise ServiceError("INVALID_TOKEN", "Invalid or expired token", 401, {}) from exc

        if not isinstance(payload, dict):
            raise ServiceError("INVALID_TOKEN", "Invalid or expired token", 401, {})
        if payload.get("purpose") != purpose or not isinstance(payload.get("sub"), str):
            raise ServiceError("INVALID_TOKEN", "Invalid or expired token", 401, {})
        expires_at = payload.get("exp")
        if not isinstance(expires_at, int) or expires_at <= int(time.time()):
            raise ServiceError("INVALID_TOKEN", "Invalid or expired token", 401, {})
        return payload

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def _principal_for(self, user_id: str) -> Principal | None:
        user = self._user_store.get_user(user_id)
        if user is None:
            return None
        return Principal(
            user_id=user["id"],
            user_type=user["type"],
            email=user["email"],
            email_verified=user["email_verified"],
        )

    def authenticate(self, bearer_token: str | None, api_key: str | None) -> Principal | None:
        """
        Resolve the request credentials to a principal.

        An API key takes precedence over a bearer token. Returns None when
        neither credential is supplied.
        """
        if api_key is not None:
            agent = self._user_store.get_agent_by_api_key(api_key)
            if agent is None:
                raise ServiceError("INVALID_API_KEY", "Invalid API key", 401, {})
            principal = self._principal_for(agent["user_id"])
            if principal is None:
                raise ServiceError("INVALID_API_KEY", "Invalid API key", 401, {})
            return principal

        if bearer_token is None:
            return None

        claims = self.decode_token(bearer_token, SESSION_PURPOSE)
        principal = self._principal_for(claims["sub"])
        if principal is None:
            raise ServiceError("INVALID_TOKEN", "Invalid or expired token", 401, {})
        return principal

    def require_principal(self, bearer_token: str | None, api_key: str | None) -> Principal:
        """Like authenticate, but missing credentials are a 401."""
        principal = self.authenticate(bearer_token, api_key)
        if principal is None:
            raise ServiceError("UNAUTHORIZED", "Authentication required", 401, {})
        return principal

    def is_admin(self, bearer_token: str | None) -> bool:
        """Check a bearer credential against the configured admin secret."""
        if self._admin_secret is None or bearer_token is None:
            return False
        return hmac.compare_digest(bearer_token.encode(), self._admin_secret.encode())
