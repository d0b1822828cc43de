"""
core/database.py -- Async SQLAlchemy engine factory.

One AsyncEngine per process, created by the app lifespan and shared by every
store. The engine owns the connection pool -- the only shared resource
between concurrent requests.

Pool policy (PostgreSQL / asyncpg):
  pool_size=20, max_overflow=0  -- hard cap of 20 concurrent connections.
  pool_timeout=5                -- wait at most 5s for a free connection.
  pool_recycle=30               -- connections older than 30s are replaced
                                   on checkout, so idle ones never linger.
  pool_pre_ping=True            -- dead connections are detected on checkout.

SQLite (aiosqlite) is accepted for local development and the test suite.
It keeps SQLAlchemy's default pool for the dialect; pool sizing arguments do
not apply.

Layer rule: core/ may not import from api/, auth/, or balances/.
"""

from __future__ import annotations

import logging

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.config import Settings

logger = logging.getLogger("cryptify.database")


def _log_connect(dbapi_conn, connection_record) -> None:
    logger.info("Database connection opened")


def _log_close(dbapi_conn, connection_record) -> None:
    logger.info("Database connection closed")


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the process-wide AsyncEngine from validated Settings.

    The password never reaches the logs: only the backend name and host are
    reported.
    """
    url = make_url(settings.sqlalchemy_url)
    kwargs: dict = {"pool_pre_ping": True}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"timeout": settings.database_connect_timeout}
    else:
        connect_args: dict = {"timeout": settings.database_connect_timeout}
        if settings.database_ssl:
            # Encrypted transport without certificate verification.
            connect_args["ssl"] = "require"
        connect_args["server_settings"] = {"application_name": "cryptify_app_server"}
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=0,
            pool_timeout=settings.database_connect_timeout,
            pool_recycle=settings.database_idle_timeout,
            connect_args=connect_args,
        )

    engine = create_async_engine(url, **kwargs)
    event.listen(engine.sync_engine, "connect", _log_connect)
    event.listen(engine.sync_engine, "close", _log_close)
    logger.info("Database engine created (backend=%s, host=%s)", url.get_backend_name(), url.host or "local")
    return engine
