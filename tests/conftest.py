"""
Pytest configuration and fixtures for testing.

This file provides reusable test fixtures for:
- A controllable wall clock
- In-memory storage scopes
- A scripted stand-in for the auth backend (httpx.MockTransport)
- Verification sessions and the FastAPI test client
"""

import pytest
import httpx
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

from otpverify.core.deps import get_registry, get_verification_api
from otpverify.core.expiry_clock import ExpiryClock
from otpverify.core.identity import IdentityResolver
from otpverify.core.registry import SessionRegistry
from otpverify.core.storage import MemoryStore, PENDING_EMAIL_KEY, StorageScopes
from otpverify.core.verification import VerificationSession
from otpverify.services.verification_api import VerificationAPI
from main import app

AUTH_BASE_URL = "http://auth.test"
VERIFY_PATH = "/api/auth/verify-otp"
RESEND_PATH = "/api/auth/resend-otp"


class FakeClock:
    """Wall clock that only moves when told to"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class MockAuthBackend:
    """
    Scripted auth backend.

    Queue httpx.Response objects (or exceptions to raise) per endpoint; an
    empty queue answers 200. Every request is recorded.
    """

    def __init__(self):
        self.requests = []
        self.queues = {VERIFY_PATH: [], RESEND_PATH: []}

    def queue_verify(self, *responses):
        self.queues[VERIFY_PATH].extend(responses)

    def queue_resend(self, *responses):
        self.queues[RESEND_PATH].extend(responses)

    def calls(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.queues.get(request.url.path, [])
        if not queue:
            return httpx.Response(200, json={"msg": "ok"})
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scopes():
    """Fresh durable and ephemeral scopes"""
    return StorageScopes(durable=MemoryStore(), ephemeral=MemoryStore())


@pytest.fixture
def backend():
    return MockAuthBackend()


@pytest.fixture
def api(backend):
    return VerificationAPI(base_url=AUTH_BASE_URL, transport=backend.transport)


@pytest.fixture
def make_session(api, scopes, clock):
    """
    Factory for opened verification sessions sharing the same scopes.

    Calling it twice simulates a page reload.
    """
    def _make(query_params=None, timeout=None, session_api=None):
        session = VerificationSession(
            api=session_api or api,
            resolver=IdentityResolver(scopes, query_params),
            clock=ExpiryClock(scopes.durable, now=clock),
            timeout=timeout,
        )
        session.open()
        return session

    return _make


@pytest.fixture
def pending_email(scopes):
    """Registration left the email in the durable scope"""
    email = "jane.doe@example.com"
    scopes.durable.set(PENDING_EMAIL_KEY, email)
    return email


@pytest.fixture
def registry(clock):
    return SessionRegistry(durable_store_factory=lambda namespace: MemoryStore(), now=clock)


@pytest.fixture
def client(registry, backend):
    """
    FastAPI test client with the registry and auth backend overridden.
    """
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_verification_api] = lambda: VerificationAPI(
        base_url=AUTH_BASE_URL, transport=backend.transport
    )

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def fill_code():
    """Type a full code digit by digit"""
    def _fill(session, code: str = "123456"):
        for index, digit in enumerate(code):
            session.enter_digit(index, digit)

    return _fill
