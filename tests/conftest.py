"""
tests/conftest.py -- Shared test fixtures for Cryptify.

This module provides:
  - make_settings():   a valid Settings pointing at a SQLite file under tmp
  - GoogleSigner:      an RSA key pair standing in for Google's signing keys,
                       plus the JWKS endpoint served through httpx.MockTransport
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api_client:        TestClient over the real app with isolated stores
  - secured_client:    same, with BALANCE_REQUIRES_AUTH and DEBUG on

Design: each test module gets its own SQLite file (aiosqlite) so modules do not
share accounts. The async engine is created inside the patched lifespan, which
runs on the TestClient's event loop -- the same loop every request uses.

Required environment variables are set before any application import so
get_settings() can build a valid Settings if anything reaches for it.
"""

from __future__ import annotations

import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

# CRITICAL: set before any api/core import.
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-0123456789")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client.apps.googleusercontent.com")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FILE", "")

import httpx
import pytest
from authlib.jose import JsonWebKey, JsonWebToken
from fastapi.testclient import TestClient

from api.main import app, init_state
from auth.federation import GoogleIdentityVerifier
from auth.hashing import CredentialHasher
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
TEST_CLIENT_ID = "test-client.apps.googleusercontent.com"
TEST_CERTS_URL = "https://google.test/oauth2/v3/certs"

# Low bcrypt cost keeps the suite fast; production uses 10 rounds.
FAST_ROUNDS = 4


def make_settings(db_path: Path, **overrides) -> Settings:
    """Return Settings for an isolated SQLite database file."""
    values = {
        "database_url": f"sqlite+aiosqlite:///{db_path}",
        "jwt_secret": TEST_SECRET,
        "google_client_id": TEST_CLIENT_ID,
        "google_certs_url": TEST_CERTS_URL,
        "log_file": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings_factory():
    """make_settings() as a fixture, for modules that build their own engine."""
    return make_settings


# ---------------------------------------------------------------------------
# Fake Google identity provider
# ---------------------------------------------------------------------------


class GoogleSigner:
    """Mints RS256 ID tokens and serves the matching JWKS.

    status_code / fail_network let a test make the key set endpoint misbehave.
    """

    def __init__(self, kid: str = "test-kid") -> None:
        self.kid = kid
        self.key = JsonWebKey.generate_key("RSA", 2048, is_private=True)
        public = self.key.as_dict(is_private=False)
        public.update({"kid": kid, "alg": "RS256", "use": "sig"})
        self.jwks = {"keys": [public]}
        self.status_code = 200
        self.fail_network = False
        self.requests = 0

    def token(self, key=None, **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": "https://accounts.google.com",
            "aud": TEST_CLIENT_ID,
            "sub": "google-sub-123",
            "email": "a@x.com",
            "email_verified": True,
            "name": "A B",
            "picture": "https://example.test/a.png",
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        header = {"alg": "RS256", "kid": self.kid}
        signing_key = key if key is not None else self.key
        encoded = JsonWebToken(["RS256"]).encode(header, claims, signing_key)
        return encoded.decode("ascii")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.fail_network:
            raise httpx.ConnectError("connection refused", request=request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "unavailable"})
        return httpx.Response(200, json=self.jwks)

    def verifier(self) -> tuple[GoogleIdentityVerifier, httpx.AsyncClient]:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return GoogleIdentityVerifier(TEST_CLIENT_ID, TEST_CERTS_URL, http_client=http), http


@pytest.fixture(scope="session")
def google() -> GoogleSigner:
    """One RSA key pair per session; key generation is slow."""
    return GoogleSigner()


@pytest.fixture()
def reset_google(google: GoogleSigner) -> Generator[GoogleSigner, None, None]:
    """The shared signer, restored to a healthy key set endpoint afterwards."""
    yield google
    google.status_code = 200
    google.fail_network = False


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, google: GoogleSigner):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        verifier, http = google.verifier()
        engine = await init_state(app, settings, verifier=verifier, hasher=CredentialHasher(rounds=FAST_ROUNDS))
        yield
        await http.aclose()
        await engine.dispose()

    return test_lifespan


def _client(tmp_path_factory, google: GoogleSigner, **overrides) -> Generator[TestClient, None, None]:
    db_path = tmp_path_factory.mktemp("db") / "cryptify_test.db"
    settings = make_settings(db_path, **overrides)
    app.router.lifespan_context = _patch_lifespan(settings, google)

    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="module")
def api_client(tmp_path_factory, google: GoogleSigner) -> Generator[TestClient, None, None]:
    """Yield a TestClient bound to a fresh database for this test module."""
    yield from _client(tmp_path_factory, google)


@pytest.fixture(scope="module")
def secured_client(tmp_path_factory, google: GoogleSigner) -> Generator[TestClient, None, None]:
    """Like api_client, with BALANCE_REQUIRES_AUTH and DEBUG switched on."""
    yield from _client(tmp_path_factory, google, balance_requires_auth=True, debug=True)
