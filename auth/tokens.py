"""
auth/tokens.py -- Session token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with JWT_SECRET and carry
       sub, userId, email, optional google_id, iat and exp. The userId /
       email / google_id claim names are the wire format existing mobile
       clients already decode.

  Stateless: tokens are never persisted. A token is valid until exp, and
       there is no server-side revocation.

  Binary validity: verify() returns Ok(SessionClaims) or Err(TokenInvalidError).
       An expired token with a good signature is as invalid as a forged one.

  Signing key: passed to the constructor by the app lifespan, which reads it
       from the frozen Settings object. An empty key is rejected at
       construction so a misconfigured process never starts serving.

Layer rule: no imports from api/ or balances/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from auth.errors import TokenInvalidError, TokenIssuanceError
from auth.models import SessionClaims
from auth.results import Err, Ok, Result

logger = logging.getLogger("cryptify.auth.tokens")

ALGORITHM = "HS256"
DEFAULT_EXPIRE_SECONDS = 7 * 24 * 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionTokenIssuer:
    """Creates and validates signed, time-bounded bearer tokens.

    Args:
        secret_key:     HS256 signing key.
        expire_seconds: Token lifetime. Defaults to 7 days.
        clock:          Returns the current UTC time. Tests pass a fixed clock
                        to mint tokens that are already expired.
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("A signing secret is required to issue session tokens.")
        if expire_seconds <= 0:
            raise ValueError("expire_seconds must be positive.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    def issue(self, claims: SessionClaims | Mapping[str, Any]) -> Result[str, TokenIssuanceError]:
        """Sign a token for the given identity.

        claims may be a SessionClaims or a mapping with user_id, email and an
        optional google_id. Any issued_at / expires_at on the input is ignored;
        the issuer stamps both from its clock.
        """
        if isinstance(claims, Mapping):
            user_id = claims.get("user_id")
            email = claims.get("email")
            google_id = claims.get("google_id")
        else:
            user_id, email, google_id = claims.user_id, claims.email, claims.google_id

        if not user_id or not email:
            return Err(TokenIssuanceError("Token claims require user_id and email"))

        now = self._clock()
        payload: dict[str, Any] = {
            "sub": str(user_id),
            "userId": str(user_id),
            "email": email,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.expire_seconds)).timestamp()),
        }
        if google_id:
            payload["google_id"] = google_id

        try:
            token = jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
        except (JWTError, TypeError, ValueError) as exc:
            logger.error("Token generation failed: %s", type(exc).__name__)
            return Err(TokenIssuanceError("Token generation failed"))
        return Ok(token)

    def verify(self, token: str) -> Result[SessionClaims, TokenInvalidError]:
        """Check signature and expiry; return the claims on success."""
        if not token:
            return Err(TokenInvalidError("Token is empty"))
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except JWTError as exc:
            # ExpiredSignatureError and JWTClaimsError are JWTError subclasses.
            logger.debug("Token verification failed: %s", exc)
            return Err(TokenInvalidError("Token verification failed"))

        user_id = payload.get("userId")
        email = payload.get("email")
        iat = payload.get("iat")
        exp = payload.get("exp")
        if not user_id or not email or exp is None:
            return Err(TokenInvalidError("Token is missing required claims"))

        return Ok(
            SessionClaims(
                user_id=str(user_id),
                email=email,
                google_id=payload.get("google_id"),
                issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if iat is not None else None,
                expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
            )
        )
