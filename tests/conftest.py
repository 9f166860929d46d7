import json
import os
import time
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "registrar_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("PAYMONGO_WEBHOOK_SECRET", "whsk_test_secret")

WEBHOOK_SECRET = os.environ["PAYMONGO_WEBHOOK_SECRET"]


@pytest_asyncio.fixture
async def db():
    """Beanie bound to an in-memory Mongo (or MONGODB_TEST_URI when set), emptied per test."""
    from registrar.db.init import init_db

    name = os.environ["MONGODB_DB_NAME"]
    uri = os.environ.get("MONGODB_TEST_URI")
    if uri:
        from motor.motor_asyncio import AsyncIOMotorClient
        client = AsyncIOMotorClient(uri)
    else:
        from mongomock_motor import AsyncMongoMockClient
        client = AsyncMongoMockClient()
    await client.drop_database(name)
    database = client[name]
    await init_db(database)
    yield database
    await client.drop_database(name)


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from registrar.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def make_user(db):
    from registrar.models.user import User, UserRole

    counter = {"n": 0}

    async def _make(role: UserRole = UserRole.STUDENT, **kwargs) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            google_sub=kwargs.pop("google_sub", f"google-sub-{n}"),
            email=kwargs.pop("email", f"user{n}@university.edu.ph"),
            name=kwargs.pop("name", f"User {n}"),
            role=role,
            student_number=kwargs.pop("student_number", f"2024-{n:05d}" if role == UserRole.STUDENT else None),
            **kwargs,
        )
        await user.insert()
        return user

    return _make


@pytest_asyncio.fixture
async def student(make_user):
    return await make_user()


@pytest_asyncio.fixture
async def cashier(make_user):
    from registrar.models.user import UserRole
    return await make_user(UserRole.CASHIER)


@pytest_asyncio.fixture
async def staff(make_user):
    from registrar.models.user import UserRole
    return await make_user(UserRole.REGISTRAR_STAFF)


@pytest.fixture
def make_request(db):
    """Insert a document request directly, bypassing the daily limit."""
    from registrar.services import document_requests as requests_service

    async def _make(student, processing_type="regular", quantity=1, now: datetime | None = None):
        return await requests_service.create_request(
            student,
            "transcript",
            processing_type,
            quantity,
            "Employment",
            now=now,
        )

    return _make


@pytest.fixture
def auth_headers():
    """Session cookie header for a user, as set by /v1/auth/google."""
    return _session_headers


@pytest.fixture
def paid_event():
    return _paid_event


@pytest.fixture
def signed_webhook():
    return _signed_webhook


def _session_headers(user) -> dict[str, str]:
    from registrar.core.security import create_session_cookie
    from registrar.deps import SESSION_COOKIE_NAME
    from registrar.services.users import session_payload_for_user

    cookie = create_session_cookie(session_payload_for_user(user))
    return {"Cookie": f"{SESSION_COOKIE_NAME}={cookie}"}


def _paid_event(event_id: str, checkout_id: str, event_type: str = "payment.paid", **attributes) -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "data": {"id": checkout_id, "attributes": {"checkout_id": checkout_id, **attributes}},
    }


def _signed_webhook(body: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    from registrar.core.security import compute_paymongo_signature

    raw = json.dumps(body).encode("utf-8")
    timestamp = str(int(time.time()))
    signature = compute_paymongo_signature(raw, timestamp, secret)
    return raw, {
        "Paymongo-Signature": f"t={timestamp},te={signature},li=",
        "Content-Type": "application/json",
    }
