"""
auth/tokens.py -- Stateless signed-token mint/verify and opaque token helpers.

Security design decisions:
  JWT: python-jose with HS256. Output is the standard three dot-joined
       base64url segments (header, payload, signature) without padding.
       Claims: sub, email, role, iat, exp, jti. The jti is a fresh uuid4 so
       two tokens minted in the same second for the same subject still differ.

  Per-kind secrets: access tokens are signed with SECRET_KEY, refresh tokens
       with SECRET_KEY + REFRESH_SECRET_SUFFIX. A refresh token therefore
       never validates as an access token and vice versa, without relying on
       a claim the holder could argue about.

  Verification: signature first (jose refuses to hand back claims from a
       token whose HMAC does not match), expiry second, against the injected
       clock rather than jose's own time source. Every decoding failure is
       downgraded to None -- route layers turn None into 401.

  Reset tokens: secrets.token_urlsafe(32) (256 bits). Only an HMAC-SHA256
       fingerprint keyed by SECRET_KEY is stored, so a leaked table cannot be
       replayed without also knowing the key.

The service holds only immutable configuration, so it is safe to share across
concurrent requests.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid

from jose import JWTError, jwt

from auth.models import Role, TokenKind, TokenPair, TokenPayload
from core.clock import Clock, system_clock

_ALGORITHM = "HS256"
REFRESH_SECRET_SUFFIX = "_refresh"

# Expiry is checked against the injected clock below, not by jose.
_DECODE_OPTIONS = {
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "verify_aud": False,
}


class TokenService:
    """Mint and verify access/refresh tokens.

    Usage:
        tokens = TokenService(settings.secret_key, access_ttl=900, refresh_ttl=604800)
        pair = tokens.issue_pair(user.id, user.email, user.role)
        payload = tokens.verify(pair.access_token, TokenKind.access)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: int = 900,
        refresh_ttl: int = 604800,
        clock: Clock = system_clock,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a signing secret.")
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    def _secret_for(self, kind: TokenKind) -> str:
        if kind is TokenKind.refresh:
            return self._secret_key + REFRESH_SECRET_SUFFIX
        return self._secret_key

    def ttl_for(self, kind: TokenKind) -> int:
        return self.refresh_ttl if kind is TokenKind.refresh else self.access_ttl

    # ------------------------------------------------------------------
    # Mint
    # ------------------------------------------------------------------

    def mint(self, subject: str, email: str, role: Role | str, kind: TokenKind) -> str:
        """Sign a new token of the given kind. exp is always iat + the kind's TTL."""
        issued_at = int(self._clock())
        payload = TokenPayload(
            sub=subject,
            email=email,
            role=Role(role),
            iat=issued_at,
            exp=issued_at + self.ttl_for(kind),
            jti=str(uuid.uuid4()),
        )
        return jwt.encode(payload.to_claims(), self._secret_for(kind), algorithm=_ALGORITHM)

    def issue_pair(self, subject: str, email: str, role: Role | str) -> TokenPair:
        """Mint an access + refresh pair. expires_in reports the access lifetime."""
        return TokenPair(
            access_token=self.mint(subject, email, role, TokenKind.access),
            refresh_token=self.mint(subject, email, role, TokenKind.refresh),
            expires_in=self.access_ttl,
        )

    # ------------------------------------------------------------------
    # Verify / decode
    # ------------------------------------------------------------------

    def verify(self, token: str, kind: TokenKind) -> TokenPayload | None:
        """Return the payload if token is authentic for kind and unexpired, else None."""
        if not token or token.count(".") != 2:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret_for(kind),
                algorithms=[_ALGORITHM],
                options=_DECODE_OPTIONS,
            )
            payload = TokenPayload.from_claims(claims)
        except (JWTError, KeyError, TypeError, ValueError):
            return None
        if payload.exp < self._clock():
            return None
        return payload

    def decode(self, token: str) -> TokenPayload | None:
        """Extract the payload WITHOUT checking signature or expiry.

        Introspection only (e.g. logging which subject presented a rejected
        token). Never base an authorization decision on the result.
        """
        if not token or token.count(".") != 2:
            return None
        try:
            return TokenPayload.from_claims(jwt.get_unverified_claims(token))
        except (JWTError, KeyError, TypeError, ValueError):
            return None

    # ------------------------------------------------------------------
    # Opaque tokens (password reset)
    # ------------------------------------------------------------------

    def fingerprint(self, raw_token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw_token) as hex.

        Deterministic, so the store can look a token up by fingerprint in O(1).
        """
        return hmac.new(
            self._secret_key.encode(),
            raw_token.encode(),
            hashlib.sha256,
        ).hexdigest()


def generate_reset_token() -> str:
    """Return a new single-use password reset token (256 bits of entropy)."""
    return secrets.token_urlsafe(32)
