"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the token issuer and the service do the work. Every piece of
external data -- database rows, JWT payloads, Google ID token claims -- is
mapped onto one of these types at the boundary where it enters.

Layer rule: no imports from api/ or balances/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass(frozen=True)
class NewUser:
    """A validated registration, already hashed, ready for UserStore.insert().

    The store assigns id and created_at. Plaintext password and PIN never
    reach this type -- only their bcrypt digests.
    """

    email: str
    phone_number: str
    first_name: str
    last_name: str
    date_of_birth: date
    password_hash: str
    transaction_pin_hash: str


@dataclass(frozen=True)
class User:
    """A persisted user account.

    email and phone_number are each unique across all records. The record is
    created once by registration and never updated by this service.
    """

    id: str
    email: str
    phone_number: str
    first_name: str
    last_name: str
    date_of_birth: date | None
    password_hash: str
    transaction_pin_hash: str
    created_at: datetime | None = None

    def profile(self) -> dict[str, str]:
        """Denormalized profile view returned by both login flows."""
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phoneNumber": self.phone_number,
        }


@dataclass(frozen=True)
class SessionClaims:
    """Identity claims carried by a session token.

    issued_at / expires_at are None on claims built for issuance -- the
    issuer stamps both. Claims returned by verify() always have them.
    """

    user_id: str
    email: str
    google_id: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class VerifiedExternalIdentity:
    """Claims extracted from a Google ID token whose signature, issuer and
    audience have been checked. Lives for one request only."""

    email: str
    email_verified: bool
    google_id: str
    name: str | None = None
    picture: str | None = None
