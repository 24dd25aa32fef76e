"""Shared test fixtures and configuration for the POS sync backend tests."""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_URL", "https://api.example.test")
os.environ.setdefault("FRONTEND_URL", "https://app.example.test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("POS_DEVELOPER_TOKEN", "dev-token")
os.environ.setdefault("POS_ENCRYPTION_KEY", "0123456789abcdef0123456789abcdef-extra")
os.environ.setdefault("POS_WEBHOOK_SECRET", "hook-secret")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.utils import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models import (
    InventoryItem,
    PosConnection,
    PosProductMapping,
    User,
)
from app.pos.client import PosApiClient
from app.pos.crypto import get_credential_cipher
from app.pos.dependencies import get_pos_client
from app.pos.schemas import GrantAccessResponse


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine shared across connections."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    """Create a database session."""
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def pos_client():
    """Mocked provider client; every API method is an AsyncMock."""
    client = AsyncMock(spec=PosApiClient)
    client.grant_access_token.return_value = GrantAccessResponse(
        grantAccessUri="https://my.ready2order.com/grant/abc"
    )
    client.get_company_info.return_value = {"company_id": "acct-1", "company_name": "Cloud Lounge"}
    client.create_product_group.return_value = {"id": "77", "name": "Lounge Inventory"}
    client.register_webhook.return_value = None
    client.delete_webhook.return_value = None
    client.get_products.return_value = []
    return client


@pytest.fixture
def cipher():
    return get_credential_cipher()


@pytest_asyncio.fixture
async def http(db, pos_client):
    """ASGI client with the database and provider client overridden."""

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pos_client] = lambda: pos_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as client:
        yield client

    app.dependency_overrides.clear()


async def make_user(db, tier="pro", expires_at=None, user_id="user-1", email="owner@lounge.test"):
    user = User(
        id=user_id,
        email=email,
        company_name="Cloud Lounge",
        subscription_tier=tier,
        subscription_expires_at=expires_at,
    )
    db.add(user)
    await db.commit()
    return user


async def make_connection(db, cipher, user_id="user-1", account_id="acct-1", token="account-token", **kwargs):
    sealed = cipher.encrypt(token)
    connection = PosConnection(
        user_id=user_id,
        encrypted_token=sealed.ciphertext,
        token_iv=sealed.iv,
        status=kwargs.pop("status", "connected"),
        provider_account_id=account_id,
        **kwargs,
    )
    db.add(connection)
    await db.commit()
    return connection


async def make_item(db, item_id="inv-abc", user_id="user-1", quantity="50", **kwargs):
    item = InventoryItem(
        id=item_id,
        user_id=user_id,
        brand=kwargs.pop("brand", "Al Fakher"),
        flavor=kwargs.pop("flavor", "Mint"),
        quantity_grams=Decimal(quantity),
        **kwargs,
    )
    db.add(item)
    await db.commit()
    return item


async def make_mapping(db, product_id="42", item_id="inv-abc", user_id="user-1", **kwargs):
    mapping = PosProductMapping(
        user_id=user_id,
        inventory_item_id=item_id,
        external_product_id=product_id,
        **kwargs,
    )
    db.add(mapping)
    await db.commit()
    return mapping


def auth_headers(user_id="user-1", email="owner@lounge.test"):
    return {"Authorization": f"Bearer {create_access_token(user_id, email)}"}


@pytest.fixture
def expired():
    return datetime.now(timezone.utc) - timedelta(days=1)
