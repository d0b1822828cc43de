"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route and service
code never touches SQL directly.

Two access paths share the same query code (UserQueries):

  Sequential -- UserStore.find_by_email() etc. check out a pooled connection
      for the single statement and return it immediately.

  Transactional -- UserStore.transaction(work) opens BEGIN on one connection
      and awaits work(queries) with a UserQueries bound to it. COMMIT on normal
      return; ROLLBACK and re-raise on any exception. Registration runs its
      uniqueness probe and its insert through this path so the check and the
      write see the same transaction.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) and UNIQUE(phone_number) are the last line of defense when two
  registrations race past the probe. The resulting IntegrityError propagates
  to the caller, which answers it exactly like a probe hit.

Email comparison is exact (case-sensitive), the same comparison the column's
unique constraint applies.

Layer rule: no imports from api/ or balances/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy import Column, Date, DateTime, MetaData, String, Table, Text, or_, select, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from auth.models import NewUser, User

logger = logging.getLogger("cryptify.auth.store")

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID4, assigned on insert
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("phone_number", String(32), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),  # bcrypt digest
    Column("date_of_birth", Date),
    Column("transaction_pin", Text, nullable=False),  # bcrypt digest of the PIN
    Column("created_at", DateTime(timezone=True), nullable=False),
)


# ---------------------------------------------------------------------------
# Query set bound to one connection
# ---------------------------------------------------------------------------


class UserQueries:
    """The account queries, executed on a caller-supplied connection.

    Handed to transaction() work functions; never instantiated by services
    directly.
    """

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def find_by_email_or_phone(self, email: str, phone: str) -> User | None:
        """Return a user whose email OR phone number matches, else None.

        When one row matches the email and another matches the phone, the email
        row is returned so callers report the email collision first.
        """
        result = await self._conn.execute(
            _users.select().where(or_(_users.c.email == email, _users.c.phone_number == phone))
        )
        rows = result.fetchall()
        if not rows:
            return None
        for row in rows:
            if row.email == email:
                return _row_to_user(row)
        return _row_to_user(rows[0])

    async def find_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        result = await self._conn.execute(_users.select().where(_users.c.email == email))
        row = result.fetchone()
        return _row_to_user(row) if row is not None else None

    async def insert(self, new_user: NewUser) -> User:
        """Insert a new user and return the stored record.

        Raises sqlalchemy.exc.IntegrityError if the email or phone number is
        already taken.
        """
        user_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc)
        await self._conn.execute(
            _users.insert().values(
                id=user_id,
                first_name=new_user.first_name,
                last_name=new_user.last_name,
                email=new_user.email,
                phone_number=new_user.phone_number,
                password_hash=new_user.password_hash,
                date_of_birth=new_user.date_of_birth,
                transaction_pin=new_user.transaction_pin_hash,
                created_at=created_at,
            )
        )
        return User(
            id=user_id,
            email=new_user.email,
            phone_number=new_user.phone_number,
            first_name=new_user.first_name,
            last_name=new_user.last_name,
            date_of_birth=new_user.date_of_birth,
            password_hash=new_user.password_hash,
            transaction_pin_hash=new_user.transaction_pin_hash,
            created_at=created_at,
        )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records over the shared AsyncEngine.

    Usage:
        store = UserStore(engine)
        await store.create_schema()
        user = await store.find_by_email("a@x.com")

        async def work(q: UserQueries) -> User:
            if await q.find_by_email_or_phone(email, phone):
                raise ConflictError(...)
            return await q.insert(new_user)

        created = await store.transaction(work)
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def create_schema(self) -> None:
        """CREATE TABLE IF NOT EXISTS for the users table. Safe on every startup."""
        async with self.engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)

    async def ping(self) -> datetime | str:
        """Return the database server's current timestamp.

        SQLite hands back the value as text, PostgreSQL as a datetime.
        """
        async with self.engine.connect() as conn:
            result = await conn.execute(text("SELECT CURRENT_TIMESTAMP"))
            return result.scalar_one()

    async def find_by_email_or_phone(self, email: str, phone: str) -> User | None:
        async with self.engine.connect() as conn:
            return await UserQueries(conn).find_by_email_or_phone(email, phone)

    async def find_by_email(self, email: str) -> User | None:
        async with self.engine.connect() as conn:
            return await UserQueries(conn).find_by_email(email)

    async def insert(self, new_user: NewUser) -> User:
        """Insert outside any caller transaction (autocommitted on its own)."""
        async with self.engine.begin() as conn:
            return await UserQueries(conn).insert(new_user)

    async def transaction(self, work: Callable[[UserQueries], Awaitable[T]]) -> T:
        """Run work(queries) atomically.

        engine.begin() commits when the block exits normally and rolls back
        when it exits with an exception, which is then re-raised unchanged.
        A failure during COMMIT itself (e.g. a deferred unique violation) also
        propagates from here.
        """
        async with self.engine.begin() as conn:
            return await work(UserQueries(conn))


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=str(row.id),
        email=row.email,
        phone_number=row.phone_number,
        first_name=row.first_name,
        last_name=row.last_name,
        date_of_birth=row.date_of_birth,
        password_hash=row.password_hash,
        transaction_pin_hash=row.transaction_pin,
        created_at=row.created_at,
    )
