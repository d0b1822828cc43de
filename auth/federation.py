"""
auth/federation.py -- Google ID token verification.

Clients sign in with Google on the device and send the resulting ID token.
This module proves the token is genuine before the service trusts any claim
in it:

  1. Fetch Google's published JSON Web Key Set (httpx, bounded timeout).
  2. Verify the RS256 signature against the key named by the token's kid
     (authlib.jose).
  3. Require iss to be Google, aud to equal our GOOGLE_CLIENT_ID, and exp to
     be in the future.

Security notes:
  The audience check is what stops a token minted for some other Google
  client from logging in here. Never skip it.

  email_verified is extracted but NOT enforced here -- AuthService owns that
  policy so the unverified case gets its own response.

Failure policy:
  verify_token() never raises. Every failure comes back as
  Err(FederationVerificationError). transient=True marks network / key set
  failures so the caller can tell "Google is unreachable" from "this token is
  bad".

Layer rule: no imports from api/ or balances/.
"""

from __future__ import annotations

import logging

import httpx
from authlib.jose import JsonWebKey, JsonWebToken, KeySet
from authlib.jose.errors import JoseError

from auth.errors import FederationVerificationError
from auth.models import VerifiedExternalIdentity
from auth.results import Err, Ok, Result

logger = logging.getLogger("cryptify.auth.federation")

GOOGLE_ISSUERS = ["accounts.google.com", "https://accounts.google.com"]


def _as_bool(value) -> bool:
    # Older Google tokens serialize email_verified as the string "true".
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class GoogleIdentityVerifier:
    """Validates Google ID tokens for one registered OAuth client id.

    Args:
        client_id:   Our Google OAuth client id; the required audience.
        certs_url:   JWKS endpoint.
        timeout:     Seconds allowed for the key set request.
        http_client: Optional pre-built AsyncClient (tests inject one backed by
                     httpx.MockTransport). When omitted, the verifier owns a
                     client and aclose() releases it.
    """

    def __init__(
        self,
        client_id: str,
        certs_url: str,
        timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not client_id:
            raise ValueError("GOOGLE_CLIENT_ID is required for Google sign-in.")
        self.client_id = client_id
        self.certs_url = certs_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._jwt = JsonWebToken(["RS256"])
        self._claims_options = {
            "iss": {"essential": True, "values": GOOGLE_ISSUERS},
            "aud": {"essential": True, "value": client_id},
            "sub": {"essential": True},
            "exp": {"essential": True},
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _fetch_key_set(self) -> KeySet:
        resp = await self._http.get(self.certs_url)
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict) or not payload.get("keys"):
            raise ValueError("Key set response has no keys")
        return JsonWebKey.import_key_set(payload)

    async def verify_token(self, id_token: str) -> Result[VerifiedExternalIdentity, FederationVerificationError]:
        """Verify a Google ID token and return the identity it asserts."""
        try:
            key_set = await self._fetch_key_set()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Google key set unavailable: %s", exc)
            return Err(FederationVerificationError("Google key set unavailable", transient=True))

        try:
            claims = self._jwt.decode(id_token, key_set, claims_options=self._claims_options)
            claims.validate()
        except (JoseError, ValueError) as exc:
            # ValueError: malformed token segments or a kid missing from the key set.
            logger.error("Google token verification failed: %s", exc)
            return Err(FederationVerificationError("Invalid Google token"))

        email = claims.get("email")
        if not email or not isinstance(email, str):
            logger.error("Google token verification failed: no email claim")
            return Err(FederationVerificationError("Invalid Google token"))

        return Ok(
            VerifiedExternalIdentity(
                email=email,
                email_verified=_as_bool(claims.get("email_verified", False)),
                google_id=str(claims["sub"]),
                name=claims.get("name"),
                picture=claims.get("picture"),
            )
        )
