"""
tests/test_service.py -- Unit tests for auth/service.py.

AuthService runs against in-memory fakes so each failure can be injected at
exactly one FlowStep. The real SessionTokenIssuer is used wherever signing is
not the thing under test.

Covers:
  - Register: field validation, date of birth rules, conflict naming,
    hashing / persistence failures roll back, race on the unique constraint,
    token failure after commit leaves the account in place
  - Login: unknown email and wrong password are indistinguishable, and both
    spend one bcrypt comparison
  - Google login: transient vs. rejected verification, unverified email never
    reaches the store, unknown account -> isNewUser, google_id in the token
  - user_exists()
"""

from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.errors import (
    AuthenticationError,
    ConflictError,
    FederationVerificationError,
    FlowStep,
    HashingError,
    NotFoundError,
    ProcessingError,
    TokenIssuanceError,
    ValidationError,
)
from auth.models import NewUser, User, VerifiedExternalIdentity
from auth.results import Err, Ok
from auth.service import (
    MSG_CREATE_ERROR,
    MSG_DATE_FORMAT,
    MSG_DATE_RANGE,
    MSG_GOOGLE_FAILED,
    MSG_GOOGLE_INVALID,
    MSG_GOOGLE_UNVERIFIED,
    MSG_INVALID_CREDENTIALS,
    MSG_REGISTER_FIELDS,
    MSG_SIGN_UP_FIRST,
    MSG_TOKEN_ERROR,
    MSG_UNEXPECTED,
    AuthService,
    parse_date_of_birth,
)
from auth.tokens import SessionTokenIssuer

SECRET = "service-test-signing-secret-0123456789"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def _db_error(cls=OperationalError):
    return cls("INSERT INTO users ...", {}, Exception("simulated"))


class FakeQueries:
    def __init__(self, store: "FakeStore") -> None:
        self.store = store
        self.added: list[User] = []

    async def find_by_email_or_phone(self, email, phone):
        if self.store.hide_from_probe:
            return None
        return self.store._match(email, phone)

    async def find_by_email(self, email):
        return self.store._by_email(email)

    async def insert(self, new_user: NewUser) -> User:
        if self.store.insert_error is not None:
            raise self.store.insert_error
        # UNIQUE(email), UNIQUE(phone_number)
        if any(u.email == new_user.email or u.phone_number == new_user.phone_number for u in self.store.users):
            raise _db_error(IntegrityError)
        self.store.next_id += 1
        user = User(
            id=f"user-{self.store.next_id}",
            email=new_user.email,
            phone_number=new_user.phone_number,
            first_name=new_user.first_name,
            last_name=new_user.last_name,
            date_of_birth=new_user.date_of_birth,
            password_hash=new_user.password_hash,
            transaction_pin_hash=new_user.transaction_pin_hash,
        )
        self.store.users.append(user)
        self.added.append(user)
        return user


class FakeStore:
    """List-backed UserStore. transaction() drops its own rows on failure."""

    def __init__(self) -> None:
        self.users: list[User] = []
        self.next_id = 0
        self.hide_from_probe = False
        self.insert_error: Exception | None = None
        self.lookup_error: Exception | None = None
        self.lookups: list[str] = []

    def _match(self, email, phone):
        for user in self.users:
            if user.email == email:
                return user
        for user in self.users:
            if user.phone_number == phone:
                return user
        return None

    def _by_email(self, email):
        return next((u for u in self.users if u.email == email), None)

    async def find_by_email(self, email):
        self.lookups.append(email)
        if self.lookup_error is not None:
            raise self.lookup_error
        return self._by_email(email)

    async def find_by_email_or_phone(self, email, phone):
        return self._match(email, phone)

    async def transaction(self, work):
        queries = FakeQueries(self)
        try:
            return await work(queries)
        except BaseException:
            self.users = [u for u in self.users if u not in queries.added]
            raise


class FakeHasher:
    def __init__(self) -> None:
        self.fail_hash = False
        self.fail_compare = False
        self.dummy_calls = 0
        self.compare_calls = 0

    async def hash(self, secret):
        # Yield like the real worker-thread hop, so concurrent flows interleave.
        await asyncio.sleep(0)
        if self.fail_hash:
            return Err(HashingError("boom"))
        return Ok(f"hashed:{secret}")

    async def compare(self, secret, digest):
        self.compare_calls += 1
        if self.fail_compare:
            return Err(HashingError("bad digest"))
        return Ok(digest == f"hashed:{secret}")

    async def compare_dummy(self, secret):
        self.dummy_calls += 1


class FailingIssuer:
    def issue(self, claims):
        return Err(TokenIssuanceError("signing failed"))


class FakeVerifier:
    def __init__(self, result=None) -> None:
        self.result = result
        self.calls: list[str] = []

    async def verify_token(self, id_token):
        self.calls.append(id_token)
        return self.result


def _identity(email: str = "a@x.com", verified: bool = True) -> VerifiedExternalIdentity:
    return VerifiedExternalIdentity(email=email, email_verified=verified, google_id="g-123")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def hasher() -> FakeHasher:
    return FakeHasher()


@pytest.fixture
def issuer() -> SessionTokenIssuer:
    return SessionTokenIssuer(SECRET)


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier(Ok(_identity()))


@pytest.fixture
def service(store, hasher, issuer, verifier) -> AuthService:
    return AuthService(store=store, hasher=hasher, issuer=issuer, verifier=verifier)


def _registration(**overrides) -> dict:
    body = {
        "email": "a@x.com",
        "phone": "555-0100",
        "fname": "Ada",
        "lname": "Byron",
        "password": "p1",
        "trx_pin": "1234",
        "date_of_birth": "1990-01-15",
    }
    body.update(overrides)
    return body


# ---------------------------------------------------------------------------
# Date of birth
# ---------------------------------------------------------------------------


class TestParseDateOfBirth:
    def test_iso_date(self):
        assert parse_date_of_birth("1990-01-15") == date(1990, 1, 15)

    def test_iso_datetime(self):
        assert parse_date_of_birth("1990-01-15T00:00:00Z") == date(1990, 1, 15)

    def test_lower_bound_inclusive(self):
        assert parse_date_of_birth("1900-01-01") == date(1900, 1, 1)

    @pytest.mark.parametrize("value", ["not-a-date", "15/01/1990", "", None])
    def test_unparseable(self, value):
        with pytest.raises(ValidationError) as excinfo:
            parse_date_of_birth(value)
        assert excinfo.value.message == MSG_DATE_FORMAT

    @pytest.mark.parametrize("value", ["1899-12-31", "2999-01-01"])
    def test_out_of_range(self, value):
        with pytest.raises(ValidationError) as excinfo:
            parse_date_of_birth(value)
        assert excinfo.value.message == MSG_DATE_RANGE

    def test_tomorrow_rejected(self):
        tomorrow = (date.today() + timedelta(days=2)).isoformat()
        with pytest.raises(ValidationError):
            parse_date_of_birth(tomorrow)


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


class TestRegister:
    async def test_success(self, service, store, issuer):
        result = await service.register(**_registration())
        assert result.user_id == "user-1"
        stored = store.users[0]
        assert stored.password_hash == "hashed:p1"
        assert stored.transaction_pin_hash == "hashed:1234"
        assert stored.date_of_birth == date(1990, 1, 15)

        claims = issuer.verify(result.token).value
        assert claims.user_id == "user-1"
        assert claims.email == "a@x.com"

    @pytest.mark.parametrize("field", ["email", "phone", "fname", "lname", "password", "trx_pin"])
    async def test_missing_field(self, service, store, field):
        with pytest.raises(ValidationError) as excinfo:
            await service.register(**_registration(**{field: None}))
        assert excinfo.value.message == MSG_REGISTER_FIELDS
        assert excinfo.value.step is FlowStep.VALIDATE
        assert store.users == []

    async def test_bad_date(self, service, store):
        with pytest.raises(ValidationError) as excinfo:
            await service.register(**_registration(date_of_birth="not-a-date"))
        assert excinfo.value.status_code == 400
        assert store.users == []

    async def test_duplicate_email(self, service, store):
        await service.register(**_registration())
        with pytest.raises(ConflictError) as excinfo:
            await service.register(**_registration(phone="555-0199"))
        assert excinfo.value.message == "User with this email already exists"
        assert excinfo.value.status_code == 409
        assert len(store.users) == 1

    async def test_duplicate_phone(self, service, store):
        await service.register(**_registration())
        with pytest.raises(ConflictError) as excinfo:
            await service.register(**_registration(email="b@x.com"))
        assert excinfo.value.message == "User with this phone number already exists"

    async def test_email_named_when_both_collide(self, service, store):
        await service.register(**_registration(email="first@x.com", phone="111"))
        await service.register(**_registration(email="second@x.com", phone="222"))
        with pytest.raises(ConflictError) as excinfo:
            await service.register(**_registration(email="second@x.com", phone="111"))
        assert "email" in excinfo.value.message

    async def test_hash_failure_persists_nothing(self, service, store, hasher):
        hasher.fail_hash = True
        with pytest.raises(ProcessingError) as excinfo:
            await service.register(**_registration())
        assert excinfo.value.message == "Error processing credentials"
        assert excinfo.value.step is FlowStep.HASH_CREDENTIALS
        assert store.users == []

    async def test_insert_failure(self, service, store):
        store.insert_error = _db_error()
        with pytest.raises(ProcessingError) as excinfo:
            await service.register(**_registration())
        assert excinfo.value.message == MSG_CREATE_ERROR
        assert excinfo.value.step is FlowStep.PERSIST
        assert store.users == []

    async def test_race_on_unique_constraint_reported_as_conflict(self, service, store):
        store.users.append(
            User(
                id="user-0",
                email="a@x.com",
                phone_number="999",
                first_name="Other",
                last_name="Racer",
                date_of_birth=None,
                password_hash="hashed:x",
                transaction_pin_hash="hashed:y",
            )
        )
        # The probe misses the row; the constraint catches it on insert.
        store.hide_from_probe = True
        store.insert_error = _db_error(IntegrityError)
        with pytest.raises(ConflictError) as excinfo:
            await service.register(**_registration())
        assert excinfo.value.message == "User with this email already exists"
        assert len(store.users) == 1

    async def test_concurrent_duplicates_one_wins(self, service, store):
        results = await asyncio.gather(
            service.register(**_registration()),
            service.register(**_registration()),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], ConflictError)
        assert "email" in losers[0].message
        assert [u.id for u in store.users] == [winners[0].user_id]

    async def test_race_without_visible_row(self, service, store):
        store.insert_error = _db_error(IntegrityError)
        with pytest.raises(ProcessingError) as excinfo:
            await service.register(**_registration())
        assert excinfo.value.message == MSG_CREATE_ERROR

    async def test_token_failure_keeps_account(self, store, hasher, verifier):
        service = AuthService(store=store, hasher=hasher, issuer=FailingIssuer(), verifier=verifier)
        with pytest.raises(ProcessingError) as excinfo:
            await service.register(**_registration())
        assert excinfo.value.message == MSG_TOKEN_ERROR
        assert excinfo.value.step is FlowStep.ISSUE_TOKEN
        assert len(store.users) == 1


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    @pytest.fixture(autouse=True)
    def _account(self, store):
        store.users.append(
            User(
                id="user-1",
                email="a@x.com",
                phone_number="555-0100",
                first_name="Ada",
                last_name="Byron",
                date_of_birth=date(1990, 1, 15),
                password_hash="hashed:p1",
                transaction_pin_hash="hashed:1234",
            )
        )

    async def test_success(self, service, issuer):
        result = await service.login(email="a@x.com", password="p1")
        assert result.user.email == "a@x.com"
        assert result.user.profile() == {
            "firstName": "Ada",
            "lastName": "Byron",
            "email": "a@x.com",
            "phoneNumber": "555-0100",
        }
        assert issuer.verify(result.token).value.user_id == result.user.id

    @pytest.mark.parametrize("email,password", [(None, "p1"), ("a@x.com", None), ("", "")])
    async def test_missing_fields(self, service, email, password):
        with pytest.raises(ValidationError) as excinfo:
            await service.login(email=email, password=password)
        assert excinfo.value.message == "Email and password are required"

    async def test_unknown_email_and_wrong_password_indistinguishable(self, service, hasher):
        with pytest.raises(AuthenticationError) as unknown:
            await service.login(email="nobody@x.com", password="p1")
        with pytest.raises(AuthenticationError) as wrong:
            await service.login(email="a@x.com", password="wrong")
        assert unknown.value.message == wrong.value.message == MSG_INVALID_CREDENTIALS
        assert unknown.value.status_code == wrong.value.status_code == 401
        # Both paths spend one comparison.
        assert hasher.dummy_calls == 1
        assert hasher.compare_calls == 1

    async def test_corrupt_digest(self, service, hasher):
        hasher.fail_compare = True
        with pytest.raises(ProcessingError) as excinfo:
            await service.login(email="a@x.com", password="p1")
        assert excinfo.value.step is FlowStep.VERIFY_PASSWORD

    async def test_lookup_failure(self, service, store):
        store.lookup_error = _db_error()
        with pytest.raises(ProcessingError) as excinfo:
            await service.login(email="a@x.com", password="p1")
        assert excinfo.value.message == MSG_UNEXPECTED
        assert excinfo.value.step is FlowStep.LOOKUP


# ---------------------------------------------------------------------------
# Google login
# ---------------------------------------------------------------------------


class TestGoogleLogin:
    async def test_success_carries_google_id(self, service, issuer):
        await service.register(**_registration())
        result = await service.google_login(id_token="google-token")
        assert result.user.email == "a@x.com"
        claims = issuer.verify(result.token).value
        assert claims.google_id == "g-123"
        assert claims.user_id == result.user.id

    async def test_missing_token(self, service, verifier):
        with pytest.raises(ValidationError) as excinfo:
            await service.google_login(id_token=None)
        assert excinfo.value.message == "Google ID token is required"
        assert verifier.calls == []

    async def test_rejected_token(self, service, verifier):
        verifier.result = Err(FederationVerificationError("bad signature"))
        with pytest.raises(AuthenticationError) as excinfo:
            await service.google_login(id_token="forged")
        assert excinfo.value.message == MSG_GOOGLE_INVALID
        assert excinfo.value.step is FlowStep.VERIFY_EXTERNAL_TOKEN

    async def test_transient_failure(self, service, verifier):
        verifier.result = Err(FederationVerificationError("unreachable", transient=True))
        with pytest.raises(ProcessingError) as excinfo:
            await service.google_login(id_token="token")
        assert excinfo.value.message == MSG_GOOGLE_FAILED

    async def test_unverified_email_never_looked_up(self, service, store, verifier):
        verifier.result = Ok(_identity(verified=False))
        with pytest.raises(AuthenticationError) as excinfo:
            await service.google_login(id_token="token")
        assert excinfo.value.message == MSG_GOOGLE_UNVERIFIED
        assert excinfo.value.step is FlowStep.CHECK_EMAIL_VERIFIED
        assert store.lookups == []

    async def test_unknown_account_is_new_user(self, service, store):
        with pytest.raises(NotFoundError) as excinfo:
            await service.google_login(id_token="token")
        assert excinfo.value.message == MSG_SIGN_UP_FIRST
        assert excinfo.value.is_new_user is True
        assert excinfo.value.to_body() == {"status": 404, "message": MSG_SIGN_UP_FIRST, "isNewUser": True}
        # Never auto-registers.
        assert store.users == []

    async def test_lookup_failure(self, service, store):
        store.lookup_error = _db_error()
        with pytest.raises(ProcessingError) as excinfo:
            await service.google_login(id_token="token")
        assert excinfo.value.message == MSG_GOOGLE_FAILED


# ---------------------------------------------------------------------------
# user_exists
# ---------------------------------------------------------------------------


class TestUserExists:
    async def test_exists(self, service):
        await service.register(**_registration())
        assert await service.user_exists("a@x.com") is True
        assert await service.user_exists("b@x.com") is False

    async def test_email_required(self, service):
        with pytest.raises(ValidationError) as excinfo:
            await service.user_exists("")
        assert excinfo.value.message == "Email is required"
