"""
Test Configuration and Fixtures

Provides the payroll sync service wired to in-memory repositories, and an
aiosqlite session for the SQL repository tests.
"""

from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.models.base import Base
from backend.services.payroll_sync import PayrollSyncService
from integrations.registry import AdapterRegistry
from integrations.vault import FernetCredentialVault, StaticKeyProvider
from tests.fakes import (
    FakeProvider,
    InMemoryEmployeeRepository,
    InMemoryProviderConfigRepository,
    InMemorySyncLogRepository,
    InMemoryTimesheetRepository,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def fernet_key() -> bytes:
    return Fernet.generate_key()


@pytest.fixture
def vault(fernet_key: bytes) -> FernetCredentialVault:
    return FernetCredentialVault(StaticKeyProvider(fernet_key))


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(provider: FakeProvider) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register("nmbrs", provider)
    return registry


@pytest.fixture
def configs() -> InMemoryProviderConfigRepository:
    return InMemoryProviderConfigRepository()


@pytest.fixture
def sync_logs() -> InMemorySyncLogRepository:
    return InMemorySyncLogRepository()


@pytest.fixture
def employees() -> InMemoryEmployeeRepository:
    return InMemoryEmployeeRepository()


@pytest.fixture
def timesheets() -> InMemoryTimesheetRepository:
    return InMemoryTimesheetRepository()


@pytest.fixture
def service(configs, sync_logs, employees, timesheets, vault, registry) -> PayrollSyncService:
    return PayrollSyncService(
        configs,
        sync_logs,
        employees,
        timesheets,
        vault,
        registry,
        request_timeout=5.0,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a session on a fresh in-memory SQLite database."""
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs behave as on PostgreSQL
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()
