"""
auth/errors.py -- Error taxonomy for the credential-and-session pipeline.

Two families:

  Leaf errors (HashingError, TokenIssuanceError, TokenInvalidError,
  FederationVerificationError) describe what went wrong inside one component.
  They travel inside Err(...) values (auth/results.py) and are never shown to
  clients.

  Flow errors (AuthFlowError subclasses) are raised by AuthService at the
  point a flow stops. Each carries the HTTP status, the public message and the
  FlowStep where the flow failed. api/main.py turns them into the
  {"status": ..., "message": ...} envelope; nothing else about the cause
  leaves the process.

Layer rule: no imports from api/ or balances/.
"""

from __future__ import annotations

from enum import Enum


class FlowStep(str, Enum):
    """States of the register / login / federated-login state machines."""

    VALIDATE = "validate"
    CHECK_UNIQUENESS = "check_uniqueness"
    HASH_CREDENTIALS = "hash_credentials"
    PERSIST = "persist"
    LOOKUP = "lookup"
    VERIFY_PASSWORD = "verify_password"
    VERIFY_EXTERNAL_TOKEN = "verify_external_token"
    CHECK_EMAIL_VERIFIED = "check_email_verified"
    ISSUE_TOKEN = "issue_token"


# ---------------------------------------------------------------------------
# Leaf component errors
# ---------------------------------------------------------------------------


class HashingError(Exception):
    """bcrypt failed to hash, or the stored digest is malformed."""


class TokenIssuanceError(Exception):
    """The session token could not be signed."""


class TokenInvalidError(Exception):
    """Signature mismatch, malformed token, missing claims, or expired."""


class FederationVerificationError(Exception):
    """The Google ID token could not be verified.

    transient is True when the failure came from the network or the key set
    endpoint rather than from the token itself.
    """

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


# ---------------------------------------------------------------------------
# Flow errors
# ---------------------------------------------------------------------------


class AuthFlowError(Exception):
    """Base class for failures reported to the client."""

    status_code: int = 500

    def __init__(self, message: str, step: FlowStep | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.step = step

    def to_body(self) -> dict:
        return {"status": self.status_code, "message": self.message}


class ValidationError(AuthFlowError):
    """Missing or malformed input."""

    status_code = 400


class ConflictError(AuthFlowError):
    """Email or phone number already registered."""

    status_code = 409


class AuthenticationError(AuthFlowError):
    """Bad credentials, unverifiable external token, or unverified email."""

    status_code = 401


class NotFoundError(AuthFlowError):
    """The requested record does not exist.

    is_new_user marks the federated-login case where the Google identity is
    valid but no local account exists; the client should send the user to
    registration.
    """

    status_code = 404

    def __init__(self, message: str, step: FlowStep | None = None, is_new_user: bool = False) -> None:
        super().__init__(message, step)
        self.is_new_user = is_new_user

    def to_body(self) -> dict:
        body = super().to_body()
        if self.is_new_user:
            body["isNewUser"] = True
        return body


class ProcessingError(AuthFlowError):
    """Hashing, persistence, or token failure downstream of valid input."""

    status_code = 500
