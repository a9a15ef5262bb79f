"""
Pytest configuration and fixtures for yoink tests.

Services run against a real SQLite file in a temporary directory. Time and ids
are deterministic: a FakeClock starting at 2024-01-01 UTC and sequential ids.
WebAuthn verification is replaced by FakeVerifier, since no authenticator is
available under test.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from yoink import globals
from yoink.config import AUTH_COOKIE_NAME, YoinkConfig
from yoink.db.sql import DB
from yoink.errors import ErrorCode, PasskeyError
from yoink.memberships import SignupResult
from yoink.sansio import AuthenticationResult, RegistrationResult
from yoink.util.clock import FakeClock
from yoink.util.ids import SequentialIdGenerator

TEST_SECRET = "test-challenge-secret-with-at-least-32-bytes"


class FakeVerifier:
    """Ceremony verifier that trusts whatever the test hands it.

    Responses are plain dicts; ``response["id"]`` names the credential. The
    challenge is still checked against what the client echoes back, so the
    challenge binding is exercised for real.
    """

    def __init__(self):
        self.sign_count = 0
        self.fail = False

    def reg_generate_options(self, user_id, user_name, challenge, credential_ids=None):
        return {
            "challenge": challenge.decode(),
            "user": {"id": user_id, "name": user_name},
            "excludeCredentials": [{"id": c} for c in credential_ids or []],
        }

    def reg_verify(self, response, expected_challenge):
        if self.fail or response.get("challenge") != expected_challenge.decode():
            raise PasskeyError(ErrorCode.VERIFICATION_FAILED, "Bad attestation")
        return RegistrationResult(
            credential_id=response["id"],
            public_key=b"public-key-" + response["id"].encode(),
            sign_count=0,
            transports=["internal"],
        )

    def auth_generate_options(self, challenge, credential_ids=None):
        return {
            "challenge": challenge.decode(),
            "allowCredentials": [{"id": c} for c in credential_ids or []],
        }

    def credential_id(self, response):
        return response["id"]

    def auth_verify(self, response, expected_challenge, public_key, sign_count):
        if self.fail or response.get("challenge") != expected_challenge.decode():
            raise PasskeyError(ErrorCode.VERIFICATION_FAILED, "Bad assertion")
        return AuthenticationResult(new_sign_count=self.sign_count, user_verified=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ids() -> SequentialIdGenerator:
    return SequentialIdGenerator()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def config(tmp_path) -> YoinkConfig:
    return YoinkConfig(
        rp_id="localhost",
        challenge_secret=TEST_SECRET,
        db_url=f"sqlite+aiosqlite:///{tmp_path}/test.sqlite",
        bcrypt_rounds=4,
    )


@pytest_asyncio.fixture(scope="function")
async def db(config: YoinkConfig) -> AsyncGenerator[DB, None]:
    """Create a fresh database in a temporary file."""
    database = DB(config.db_url)
    await database.init_db()
    yield database
    await database.close()


@pytest_asyncio.fixture(scope="function")
async def services(
    config: YoinkConfig,
    db: DB,
    verifier: FakeVerifier,
    clock: FakeClock,
    ids: SequentialIdGenerator,
) -> AsyncGenerator[None, None]:
    """Wire up the global service instances against the test database."""
    await globals.init(config, database=db, verifier=verifier, clock=clock, ids=ids)
    yield
    await globals.tokens.instance.wait_background()
    for manager in (
        globals.settings,
        globals.db,
        globals.passkeys,
        globals.sessions,
        globals.tokens,
        globals.memberships,
        globals.captures,
        globals.tasks,
        globals.processing,
    ):
        manager.instance = None


@pytest_asyncio.fixture(scope="function")
async def alice(services) -> SignupResult:
    """A signed-up user with one passkey."""
    result = await globals.memberships.instance.signup("alice@example.com")
    challenge = globals.passkeys.instance.challenges.generate_registration_challenge(
        result.user.id
    )
    await globals.passkeys.instance.verify_registration(
        result.user.id, challenge, {"id": "alice-key", "challenge": challenge}
    )
    return result


@pytest_asyncio.fixture(scope="function")
async def bob(services) -> SignupResult:
    """A second user, in a workspace of their own."""
    return await globals.memberships.instance.signup("bob@example.com")


@pytest_asyncio.fixture(scope="function")
async def alice_session(alice: SignupResult) -> str:
    """Session id of a fresh login for alice."""
    session = await globals.sessions.instance.create_session(alice.user.id)
    return session.id


@pytest_asyncio.fixture(scope="function")
async def client(services) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Create an async test client for the FastAPI app.

    The ASGI transport does not run the lifespan; the services fixture has
    already initialized globals. The https base URL lets secure cookies through.
    """
    from yoink.fastapi.mainapp import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="https://localhost",
    ) as client:
        yield client


def auth_headers(session_id: str) -> dict[str, str]:
    """Return headers with auth cookie set."""
    return {"Cookie": f"{AUTH_COOKIE_NAME}={session_id}"}


def bearer(raw_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {raw_token}"}
