"""
Shared test fixtures for the SignDoc backend test suite.

Each test gets its own in-memory SQLite database (aiosqlite, one shared
connection via StaticPool), with ``get_db`` and ``get_sessionmaker``
overridden so the API and the service layer both talk to it.
"""

import os
import uuid

import factory
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ---- Environment overrides MUST come before any app imports ----
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests"
os.environ["ENVIRONMENT"] = "test"
os.environ["PUBLIC_BASE_URL"] = "https://sign.example.test"
os.environ["LOG_JSON"] = "false"

from signdoc.auth.schemas import Caller  # noqa: E402
from signdoc.auth.service import create_access_token  # noqa: E402
from signdoc.database import Base, get_db, get_sessionmaker  # noqa: E402
from signdoc.documents.schemas import DocumentCreate  # noqa: E402
from signdoc.documents.service import create_document  # noqa: E402
from signdoc.main import app  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Database lifecycle
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def sessions():
    """Fresh schema per test; yields the session factory services use."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory_ = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _override_get_db():
        async with factory_() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_sessionmaker] = lambda: factory_
    yield factory_
    app.dependency_overrides.clear()
    await engine.dispose()


# ---------------------------------------------------------------------------
# HTTP client fixtures
# ---------------------------------------------------------------------------
def auth_header(user_id, role: str) -> dict[str, str]:
    token = create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(sessions) -> AsyncClient:
    """Unauthenticated client: an anonymous holder of a signing link."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_client(sessions) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.headers.update(auth_header(None, "admin"))
        yield ac


@pytest_asyncio.fixture
async def owner_client(sessions) -> AsyncClient:
    """Authenticated user ``u1``."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.headers.update(auth_header("u1", "user"))
        yield ac


@pytest_asyncio.fixture
async def other_client(sessions) -> AsyncClient:
    """Authenticated user ``u2``, who owns nothing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.headers.update(auth_header("u2", "user"))
        yield ac


# ---------------------------------------------------------------------------
# Callers
# ---------------------------------------------------------------------------
@pytest.fixture
def admin() -> Caller:
    return Caller.admin()


@pytest.fixture
def owner() -> Caller:
    return Caller.user("u1")


@pytest.fixture
def stranger() -> Caller:
    return Caller.user("u2")


@pytest.fixture
def anonymous() -> Caller:
    return Caller.anonymous()


# ---------------------------------------------------------------------------
# Factory Boy factories
# ---------------------------------------------------------------------------
class SignerFactory(factory.Factory):
    class Meta:
        model = dict

    id = factory.Sequence(lambda n: f"s{n + 1}")
    role = factory.Sequence(lambda n: f"Party {chr(ord('A') + n % 26)}")
    name = factory.Faker("name")
    email = factory.LazyFunction(lambda: f"signer-{uuid.uuid4().hex[:8]}@example.com")


class ContractFactory(factory.Factory):
    class Meta:
        model = dict

    payload = factory.LazyFunction(
        lambda: {
            "kind": "contract",
            "title": "Service Agreement",
            "content": "The parties agree to the terms below.",
            "metadata": {"contract_number": "HD-001", "location": "Hanoi"},
        }
    )
    signers = factory.LazyFunction(
        lambda: [{"id": "s1", "role": "Party A", "name": "An"}, {"id": "s2", "role": "Party B", "name": "Binh"}]
    )


class ReceiptFactory(factory.Factory):
    class Meta:
        model = dict

    payload = factory.LazyFunction(
        lambda: {
            "kind": "receipt",
            "title": "Cash Receipt",
            "fields": [{"id": "amount", "label": "Amount", "value": "500000", "type": "money"}],
            "place": "Hanoi",
        }
    )


class LegacyReceiptFactory(factory.Factory):
    class Meta:
        model = dict

    payload = factory.LazyFunction(
        lambda: {
            "kind": "legacy-receipt",
            "recipient_name": "Nguyen Van A",
            "sender_name": "Tran Thi B",
            "reason": "Deposit",
            "amount": 500000,
            "amount_in_words": "Five hundred thousand dong",
        }
    )


def typed(text: str = "Nguyen Van A") -> dict:
    return {"type": "typed", "text": text}


def drawn(*strokes) -> dict:
    if not strokes:
        strokes = ([(0, 0, 0), (5, 5, 1)],)
    return {"type": "drawn", "strokes": [[{"x": x, "y": y, "t": t} for x, y, t in stroke] for stroke in strokes]}


# ---------------------------------------------------------------------------
# Convenience fixtures: documents already in the DB
# ---------------------------------------------------------------------------
async def insert_document(sessions, data: dict, owner_user_id=None):
    async with sessions() as db:
        document = await create_document(db, DocumentCreate.model_validate(data), owner_user_id=owner_user_id)
        await db.commit()
    return document


@pytest_asyncio.fixture
async def contract(sessions):
    """Contract owned by ``u1`` with unsigned slots ``s1`` and ``s2``."""
    return await insert_document(sessions, ContractFactory(), owner_user_id="u1")


@pytest_asyncio.fixture
async def receipt(sessions):
    """Receipt owned by ``u1``, neither role signed."""
    return await insert_document(sessions, ReceiptFactory(), owner_user_id="u1")
