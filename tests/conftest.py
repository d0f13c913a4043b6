"""
Pytest configuration and fixtures
"""

from typing import AsyncGenerator, Any, Dict, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import Settings
from tests.fakes import FakeAIClient
from ingestion.extractors.api_extractor import reset_circuit_breakers
from ingestion.runner import IngestionRunner
from ingestion.transformers.normalizer import ProductNormalizer
from models import Base
from models.base import SourceStatus, SourceType, SyncFrequency
from models.data_source import DataSource
from models.product_catalog import ProductCatalogEntry

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def clear_circuit_breakers():
    """Circuit breakers are module level; start every test closed."""
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        API_KEY=None,
        OPENAI_API_KEY=None,
        WEBHOOK_SECRET="test-webhook-secret",
        MAX_RETRIES=2,
        RETRY_DELAY=0,
        HTTP_TIMEOUT=5.0,
        SOURCE_ERROR_THRESHOLD=3,
        RATE_LIMIT_PER_MINUTE=0,
        SCHEDULER_ENABLED=False,
    )


@pytest.fixture
def fake_ai():
    return FakeAIClient()


@pytest.fixture
def make_runner(db_session, test_settings):
    """Build an IngestionRunner over the test session."""

    def _make(transport: Optional[httpx.AsyncBaseTransport] = None, ai_client=None, scraper=None):
        normalizer = ProductNormalizer(ai_client=ai_client, default_currency="GBP")
        return IngestionRunner(
            db_session,
            normalizer=normalizer,
            scraper=scraper,
            config=test_settings,
            transport=transport,
        )

    return _make


@pytest.fixture
def make_source(db_session):
    """Insert a data source row."""

    async def _make(
        name: str = "Acme partner API",
        provider_name: str = "Acme Insurance",
        source_type: SourceType = SourceType.API,
        configuration: Optional[Dict[str, Any]] = None,
        status: SourceStatus = SourceStatus.ACTIVE,
        sync_frequency: SyncFrequency = SyncFrequency.DAILY,
        **extra
    ) -> DataSource:
        source = DataSource(
            name=name,
            provider_name=provider_name,
            source_type=source_type,
            configuration=configuration if configuration is not None else {
                "api_endpoint": "https://partner.example.com/products"
            },
            status=status,
            sync_frequency=sync_frequency,
            **extra
        )
        db_session.add(source)
        await db_session.commit()
        return source

    return _make


@pytest.fixture
def mock_products():
    """Partner API product records"""
    return [
        {
            "id": "acme-home-1",
            "name": "Home Essentials",
            "insurer": "Acme Insurance",
            "type": "home",
            "premium": 12.5,
            "frequency": "monthly",
            "currency": "GBP",
            "coverage": "Buildings and contents cover up to 500k",
            "benefits": ["24/7 claims line", "Legal cover"],
            "url": "https://acme.example.com/home-essentials",
        },
        {
            "id": "acme-car-1",
            "name": "Car Plus",
            "insurer": "Acme Insurance",
            "type": "motor",
            "premium": "£30.00 per month",
            "coverage": "Comprehensive cover",
            "benefits": "Courtesy car, Windscreen cover",
            "url": "https://acme.example.com/car-plus",
        },
    ]


@pytest.fixture
def make_product(db_session):
    """Insert a catalog entry for ``source``."""

    async def _make(source: DataSource, external_id: str, **fields) -> ProductCatalogEntry:
        fields.setdefault("product_name", external_id)
        product = ProductCatalogEntry(data_source_id=source.id, external_id=external_id, **fields)
        db_session.add(product)
        await db_session.commit()
        return product

    return _make
