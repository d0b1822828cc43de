"""
balances/store.py -- Read access to per-user crypto balances.

Uses SQLAlchemy Core over the shared AsyncEngine. Balances are written by
other services; this one only reads them.

Pattern: Repository. BalanceStore returns plain {crypto: amount} mappings --
there is no domain behaviour to model beyond that.

Amounts are NUMERIC in the database and leave this module as decimal strings
(e.g. "0.015"), never floats, so no precision is lost on the way to JSON.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Column, Integer, MetaData, Numeric, String, Table, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncEngine

_metadata = MetaData()

_user_balances = Table(
    "user_balances",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("crypto", String(20), nullable=False),  # ticker, e.g. "BTC"
    Column("balance", Numeric(36, 18), nullable=False, server_default="0"),
    UniqueConstraint("user_id", "crypto", name="uq_user_balances_user_crypto"),
)


def _format_amount(value) -> str:
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    normalized = amount.normalize()
    # normalize() turns 100 into 1E+2; fixed-point format undoes that.
    return format(normalized, "f")


class BalanceStore:
    """Repository for the user_balances table.

    Usage:
        store = BalanceStore(engine)
        balances = await store.get_balances(user_id)   # {"BTC": "0.5", ...}
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)

    async def get_balances(self, user_id: str) -> dict[str, str]:
        """Return {crypto: amount} for the user. Empty dict when none exist."""
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(_user_balances.c.crypto, _user_balances.c.balance)
                .where(_user_balances.c.user_id == user_id)
                .order_by(_user_balances.c.crypto)
            )
            rows = result.fetchall()
        return {row.crypto: _format_amount(row.balance) for row in rows}

    async def set_balance(self, user_id: str, crypto: str, amount: Decimal | str) -> None:
        """Insert a balance row. Used to seed local and test databases."""
        async with self.engine.begin() as conn:
            await conn.execute(
                _user_balances.insert().values(user_id=user_id, crypto=crypto, balance=Decimal(str(amount)))
            )
