"""Session authentication using HMAC-signed bearer tokens.

The identity provider issues a token after sign-in; this module only verifies
it and extracts the owner identity every registry call is scoped by.

Token Format:
    {owner_id}:{expiry_timestamp}:{hmac_signature}
    Example: "u_42:1735689600:a1b2c3d4e5f67890a1b2c3d4e5f67890"

Security Model:
    1. Tokens are signed with SESSION_SECRET (HMAC-SHA256)
    2. Expiry is part of the signed payload
    3. Signatures are compared in constant time
    4. Without a secret every token is rejected
"""

from __future__ import annotations

import hashlib
import hmac
import time

from .errors import Unauthenticated

SIGNATURE_LENGTH: int = 32
"""Hex characters of the HMAC digest kept in the token."""


class SessionAuthenticator:
    """Issues and verifies session tokens.

    Attributes:
        lifetime: Token validity period in seconds.
    """

    def __init__(self, secret: str, lifetime: int) -> None:
        self._secret = secret
        self.lifetime = lifetime

    def is_configured(self) -> bool:
        return bool(self._secret)

    def _sign(self, owner_id: str, expires: int) -> str:
        payload = f"session:{owner_id}:{expires}"
        return hmac.new(
            self._secret.encode(),
            payload.encode(),
            hashlib.sha256
        ).hexdigest()[:SIGNATURE_LENGTH]

    def issue(self, owner_id: str, now: float | None = None) -> str:
        """Generate a signed token for an owner.

        Raises:
            ValueError: No secret configured, or owner id contains ':'.
        """
        if not self._secret:
            raise ValueError("SESSION_SECRET is not configured")
        if not owner_id or ":" in owner_id:
            raise ValueError("Owner id must be non-empty and must not contain ':'")
        expires = int(now if now is not None else time.time()) + self.lifetime
        return f"{owner_id}:{expires}:{self._sign(owner_id, expires)}"

    def verify(self, token: str, now: float | None = None) -> str | None:
        """Verify a token's signature and expiry.

        Returns:
            The owner id, or None if the token is invalid or expired.
        """
        if not self._secret or not token:
            return None
        try:
            owner_id, expires_str, signature = token.split(":")
            expires = int(expires_str)
        except ValueError:
            return None

        if (now if now is not None else time.time()) > expires:
            return None

        if not hmac.compare_digest(signature, self._sign(owner_id, expires)):
            return None
        return owner_id

    def authenticate(self, authorization: str | None) -> str:
        """Resolve an Authorization header to an owner id.

        Supports both "Bearer <token>" and a raw token.

        Raises:
            Unauthenticated: Missing, malformed, expired or forged token.
        """
        if not authorization:
            raise Unauthenticated("Authentication required. Please sign in again.")

        token = authorization
        if authorization.startswith("Bearer "):
            token = authorization[7:]

        owner_id = self.verify(token.strip())
        if owner_id is None:
            raise Unauthenticated("Invalid or expired session. Please sign in again.")
        return owner_id
