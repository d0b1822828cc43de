"""
auth/service.py -- Registration, password login and Google login.

AuthService is the only place that decides what a failure means for the
client. Its collaborators are injected at construction (built once by the app
lifespan from the frozen Settings) so tests can substitute any of them:

  store     UserStore            -- account reads/writes, one transaction primitive
  hasher    CredentialHasher     -- Result-returning bcrypt
  issuer    SessionTokenIssuer   -- Result-returning JWT signing
  verifier  GoogleIdentityVerifier -- Result-returning ID token verification

Each flow walks a fixed sequence of FlowStep states. The first failing step
raises an AuthFlowError subclass tagged with that step; the HTTP layer only
maps the error to a response.

Register runs in two phases:
  1. Durable account creation -- uniqueness probe, hashing and insert inside
     one transaction. Any failure rolls everything back.
  2. Session materialization -- token issuance after COMMIT. If signing fails
     the client gets a 500 but the account stays; the user can log in later.

Enumeration resistance:
  Unknown email and wrong password raise the same AuthenticationError with the
  same message, and both paths cost one bcrypt comparison.

Layer rule: no imports from api/ or balances/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    AuthenticationError,
    AuthFlowError,
    ConflictError,
    FlowStep,
    NotFoundError,
    ProcessingError,
    ValidationError,
)
from auth.federation import GoogleIdentityVerifier
from auth.hashing import CredentialHasher
from auth.models import NewUser, SessionClaims, User
from auth.results import Err
from auth.store import UserQueries, UserStore
from auth.tokens import SessionTokenIssuer

logger = logging.getLogger("cryptify.auth.service")

MIN_DATE_OF_BIRTH = date(1900, 1, 1)

MSG_REGISTER_FIELDS = "All fields (email, phone, fname, lname, password, trx_pin) are required"
MSG_DATE_FORMAT = "Invalid date format. Use YYYY-MM-DD"
MSG_DATE_RANGE = "Invalid date of birth"
MSG_LOGIN_FIELDS = "Email and password are required"
MSG_INVALID_CREDENTIALS = "Invalid email or password"
MSG_CREDENTIALS_ERROR = "Error processing credentials"
MSG_CREATE_ERROR = "Error creating user account"
MSG_TOKEN_ERROR = "Error generating access token"
MSG_TRANSACTION_ERROR = "Database transaction failed"
MSG_UNEXPECTED = "An unexpected error occurred"
MSG_GOOGLE_TOKEN_REQUIRED = "Google ID token is required"
MSG_GOOGLE_INVALID = "Invalid Google token"
MSG_GOOGLE_FAILED = "Authentication failed"
MSG_GOOGLE_UNVERIFIED = "Email not verified with Google"
MSG_SIGN_UP_FIRST = "Please sign up first"
MSG_EMAIL_REQUIRED = "Email is required"

# Errors that mean "the database could not be reached or refused the query".
_STORE_ERRORS = (SQLAlchemyError, OSError)


@dataclass(frozen=True)
class RegistrationResult:
    user_id: str
    token: str


@dataclass(frozen=True)
class LoginResult:
    user: User
    token: str


def parse_date_of_birth(value: str | None) -> date:
    """Parse an ISO date (or ISO datetime) and enforce [1900-01-01, today].

    Raises:
        ValidationError: unparseable value, or a date outside the range.
    """
    if not value or not isinstance(value, str):
        raise ValidationError(MSG_DATE_FORMAT, FlowStep.VALIDATE)
    raw = value.strip()
    try:
        parsed = date.fromisoformat(raw)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        except ValueError:
            raise ValidationError(MSG_DATE_FORMAT, FlowStep.VALIDATE) from None

    today = datetime.now(timezone.utc).date()
    if parsed > today or parsed < MIN_DATE_OF_BIRTH:
        raise ValidationError(MSG_DATE_RANGE, FlowStep.VALIDATE)
    return parsed


def _conflict_for(existing: User, email: str) -> ConflictError:
    field = "email" if existing.email == email else "phone number"
    return ConflictError(f"User with this {field} already exists", FlowStep.CHECK_UNIQUENESS)


class AuthService:
    """Coordinates the register, login and Google login flows."""

    def __init__(
        self,
        store: UserStore,
        hasher: CredentialHasher,
        issuer: SessionTokenIssuer,
        verifier: GoogleIdentityVerifier,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.verifier = verifier

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    async def register(
        self,
        *,
        email: str | None,
        phone: str | None,
        fname: str | None,
        lname: str | None,
        password: str | None,
        trx_pin: str | None,
        date_of_birth: str | None,
    ) -> RegistrationResult:
        """Create an account and return its id plus a fresh session token.

        validate -> check_uniqueness -> hash_credentials -> persist -> issue_token
        """
        if not all((email, phone, fname, lname, password, trx_pin)):
            raise ValidationError(MSG_REGISTER_FIELDS, FlowStep.VALIDATE)
        dob = parse_date_of_birth(date_of_birth)

        async def create_account(queries: UserQueries) -> User:
            existing = await queries.find_by_email_or_phone(email, phone)
            if existing is not None:
                raise _conflict_for(existing, email)

            password_hash = await self.hasher.hash(password)
            pin_hash = await self.hasher.hash(trx_pin)
            if isinstance(password_hash, Err) or isinstance(pin_hash, Err):
                logger.error("Error hashing credentials during registration")
                raise ProcessingError(MSG_CREDENTIALS_ERROR, FlowStep.HASH_CREDENTIALS)

            new_user = NewUser(
                email=email,
                phone_number=phone,
                first_name=fname,
                last_name=lname,
                date_of_birth=dob,
                password_hash=password_hash.value,
                transaction_pin_hash=pin_hash.value,
            )
            try:
                return await queries.insert(new_user)
            except IntegrityError:
                raise
            except _STORE_ERRORS as exc:
                logger.error("Database error during user creation: %s", exc)
                raise ProcessingError(MSG_CREATE_ERROR, FlowStep.PERSIST) from exc

        # Phase 1: durable account creation
        try:
            user = await self.store.transaction(create_account)
        except AuthFlowError as exc:
            logger.warning("Registration failed at %s: %s", exc.step.value if exc.step else "-", exc.message)
            raise
        except IntegrityError as exc:
            # Lost a race with a concurrent registration; the constraint fired.
            raise await self._conflict_after_race(email, phone) from exc
        except _STORE_ERRORS as exc:
            logger.exception("Registration transaction error")
            raise ProcessingError(MSG_TRANSACTION_ERROR, FlowStep.PERSIST) from exc

        logger.info("New user created successfully: %s", user.id)

        # Phase 2: session materialization
        token = self._issue(SessionClaims(user_id=user.id, email=user.email))
        return RegistrationResult(user_id=user.id, token=token)

    async def _conflict_after_race(self, email: str, phone: str) -> AuthFlowError:
        """Name the colliding field after a unique-constraint violation."""
        try:
            existing = await self.store.find_by_email_or_phone(email, phone)
        except _STORE_ERRORS:
            logger.exception("Re-probe after unique violation failed")
            return ProcessingError(MSG_CREATE_ERROR, FlowStep.PERSIST)
        if existing is None:
            logger.error("Unique violation without a conflicting row")
            return ProcessingError(MSG_CREATE_ERROR, FlowStep.PERSIST)
        conflict = _conflict_for(existing, email)
        logger.warning("Registration conflict detected by constraint: %s", conflict.message)
        return conflict

    # ------------------------------------------------------------------
    # Password login
    # ------------------------------------------------------------------

    async def login(self, *, email: str | None, password: str | None) -> LoginResult:
        """validate -> lookup -> verify_password -> issue_token"""
        if not email or not password:
            raise ValidationError(MSG_LOGIN_FIELDS, FlowStep.VALIDATE)

        user = await self._lookup(email, MSG_UNEXPECTED)
        if user is None:
            await self.hasher.compare_dummy(password)
            raise AuthenticationError(MSG_INVALID_CREDENTIALS, FlowStep.LOOKUP)

        matched = await self.hasher.compare(password, user.password_hash)
        if isinstance(matched, Err):
            logger.error("Error verifying password for user %s", user.id)
            raise ProcessingError(MSG_CREDENTIALS_ERROR, FlowStep.VERIFY_PASSWORD)
        if not matched.value:
            raise AuthenticationError(MSG_INVALID_CREDENTIALS, FlowStep.VERIFY_PASSWORD)

        token = self._issue(SessionClaims(user_id=user.id, email=user.email))
        logger.info("User logged in successfully: %s", user.id)
        return LoginResult(user=user, token=token)

    # ------------------------------------------------------------------
    # Google login
    # ------------------------------------------------------------------

    async def google_login(self, *, id_token: str | None) -> LoginResult:
        """validate -> verify_external_token -> check_email_verified -> lookup -> issue_token

        Never creates an account: a valid Google identity without a local
        account is answered with NotFoundError(is_new_user=True).
        """
        if not id_token:
            raise ValidationError(MSG_GOOGLE_TOKEN_REQUIRED, FlowStep.VALIDATE)

        verified = await self.verifier.verify_token(id_token)
        if isinstance(verified, Err):
            if verified.error.transient:
                raise ProcessingError(MSG_GOOGLE_FAILED, FlowStep.VERIFY_EXTERNAL_TOKEN)
            raise AuthenticationError(MSG_GOOGLE_INVALID, FlowStep.VERIFY_EXTERNAL_TOKEN)
        identity = verified.value

        if not identity.email_verified:
            raise AuthenticationError(MSG_GOOGLE_UNVERIFIED, FlowStep.CHECK_EMAIL_VERIFIED)

        user = await self._lookup(identity.email, MSG_GOOGLE_FAILED)
        if user is None:
            raise NotFoundError(MSG_SIGN_UP_FIRST, FlowStep.LOOKUP, is_new_user=True)

        token = self._issue(SessionClaims(user_id=user.id, email=user.email, google_id=identity.google_id))
        logger.info("Google login successful for user: %s", user.id)
        return LoginResult(user=user, token=token)

    # ------------------------------------------------------------------
    # Existence probe
    # ------------------------------------------------------------------

    async def user_exists(self, email: str | None) -> bool:
        if not email:
            raise ValidationError(MSG_EMAIL_REQUIRED, FlowStep.VALIDATE)
        return await self._lookup(email, MSG_UNEXPECTED) is not None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _lookup(self, email: str, failure_message: str) -> User | None:
        try:
            return await self.store.find_by_email(email)
        except _STORE_ERRORS as exc:
            logger.exception("User lookup failed")
            raise ProcessingError(failure_message, FlowStep.LOOKUP) from exc

    def _issue(self, claims: SessionClaims) -> str:
        issued = self.issuer.issue(claims)
        if isinstance(issued, Err):
            logger.error("Error generating token for user %s: %s", claims.user_id, issued.error)
            raise ProcessingError(MSG_TOKEN_ERROR, FlowStep.ISSUE_TOKEN)
        return issued.value
