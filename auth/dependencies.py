"""
auth/dependencies.py -- FastAPI Depends() helper for bearer session tokens.

Reads "Authorization: Bearer <token>" and verifies it with the process-wide
SessionTokenIssuer stored on app.state by the lifespan.

  No token           -> 401 "Access token is required"
  Invalid / expired  -> 403 "Invalid or expired token"

Verification is stateless: nothing is looked up in the database, so a token
stays usable until it expires.

Layer rule: auth/dependencies.py may import from fastapi (for Request) because
this module is part of the FastAPI dependency injection system. No imports
from api/ or balances/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthenticationError, AuthFlowError
from auth.models import SessionClaims
from auth.results import Err
from auth.tokens import SessionTokenIssuer


class ForbiddenError(AuthFlowError):
    """A token was presented but cannot be accepted."""

    status_code = 403


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_session(request: Request) -> SessionClaims:
    """Require a valid session token. Use as a FastAPI dependency:

        @router.get("/protected")
        async def route(claims: SessionClaims = Depends(require_session)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationError("Access token is required")

    issuer: SessionTokenIssuer = request.app.state.token_issuer
    verified = issuer.verify(token)
    if isinstance(verified, Err):
        raise ForbiddenError("Invalid or expired token")
    return verified.value
