"""
Pytest configuration and fixtures.
"""
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from weinvite.api.main import create_app
from weinvite.config import Settings
from weinvite.core.uploads import ImageUpload
from weinvite.database.connection import create_session_factory, init_db
from weinvite.database.models import Product, Tag, User
from weinvite.integrations.midtrans_client import MidtransClient
from weinvite.integrations.storage_client import StorageClient, StorageError

SUPABASE_URL = "https://project.supabase.co"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests against the database or the API")


class FakeStorage:
    """In-memory object store with failure injection."""

    def __init__(self) -> None:
        self._client = StorageClient(None, SUPABASE_URL, "service-key")  # type: ignore[arg-type]
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.upload_calls: List[Tuple[str, str]] = []
        self.delete_calls: List[Tuple[str, List[str]]] = []
        self.fail_upload_at: Optional[int] = None
        self.fail_delete = False

    def public_url(self, bucket: str, key: str) -> str:
        return self._client.public_url(bucket, key)

    def key_from_url(self, bucket: str, url: str) -> str:
        return self._client.key_from_url(bucket, url)

    async def upload(self, bucket: str, key: str, content: bytes, content_type: str) -> str:
        call_index = len(self.upload_calls)
        self.upload_calls.append((bucket, key))
        if self.fail_upload_at is not None and call_index == self.fail_upload_at:
            raise StorageError("Object storage rejected upload", status_code=500)
        self.objects[(bucket, key)] = content
        return self.public_url(bucket, key)

    async def delete(self, bucket: str, keys: List[str]) -> None:
        self.delete_calls.append((bucket, list(keys)))
        if self.fail_delete:
            raise StorageError("Object storage rejected delete", status_code=500)
        for key in keys:
            self.objects.pop((bucket, key), None)

    def keys(self, bucket: str) -> List[str]:
        return [key for (b, key) in self.objects if b == bucket]


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        midtrans_server_key="Mid-server-test-key",
        supabase_url=SUPABASE_URL,
        supabase_service_key="service-key",
        app_name="weinvite-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, Any]:
    """In-memory SQLite shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> Dict[str, Any]:
    """Two users, one tag and two products."""
    async with session_factory() as session:
        floral = Tag(name="floral")
        ayu = User(id="u1", name="Ayu", role="customer")
        anon = User(id="u2", name=None, role="customer")
        rustic = Product(
            id="p1",
            name="Rustic Gold",
            price=150000.4,
            thumbnail=f"{SUPABASE_URL}/storage/v1/object/public/products/thumbnails/0-abc.png",
            gallery_urls=[f"{SUPABASE_URL}/storage/v1/object/public/products/gallery/0-def.png"],
        )
        rustic.tags = [floral]
        minimal = Product(id="p2", name="Minimal White", price=99000.0, gallery_urls=[])
        session.add_all([floral, ayu, anon, rustic, minimal])
        await session.commit()
        return {"tag_id": floral.id, "user_id": "u1", "product_id": "p1"}


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession], seeded: Dict[str, Any]
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session over the seeded data."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def mock_gateway() -> AsyncMock:
    gateway = AsyncMock(spec=MidtransClient)
    gateway.create_transaction.return_value = {
        "token": "snap-token-123",
        "redirect_url": "https://app.sandbox.midtrans.com/snap/v4/redirection/snap-token-123",
    }
    gateway.get_status.return_value = {
        "status_code": "201",
        "order_id": "ORDER-1",
        "transaction_status": "pending",
    }
    gateway.cancel.return_value = {"status_code": "200", "transaction_status": "cancel"}
    return gateway


@pytest_asyncio.fixture
async def client(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    seeded: Dict[str, Any],
    fake_storage: FakeStorage,
    mock_gateway: AsyncMock,
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client wired to the in-memory database and fakes."""
    app = create_app(test_settings)
    app.state.session_factory = session_factory
    app.state.storage = fake_storage
    app.state.gateway = mock_gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_image() -> Callable[..., ImageUpload]:
    """Build a small PNG upload."""

    def _make(size: int = 16, name: Optional[str] = "photo.png", content_type: str = "image/png") -> ImageUpload:
        return ImageUpload(content=b"\x89PNG" + b"\x00" * size, content_type=content_type, filename=name)

    return _make
