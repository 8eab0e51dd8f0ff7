"""Shared test fixtures — async SQLite DB, in-memory cluster, test client."""

import asyncio
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

# Import all models so metadata is populated
import app.models  # noqa: F401
from app.api.deps import get_cluster_gateway, get_session_factory
from app.core.config import Settings, get_settings
from app.core.database import get_session
from app.core.errors import ClusterError, ClusterNotFound
from app.main import app
from app.models.store import Store, StoreEngine
from app.services.cluster import ClusterOutcome, WorkloadStatus
from app.workers.provision import Provisioner
from app.workers.reconcile import Reconciler


class FakeGateway:
    """In-memory stand-in for ClusterGateway."""

    def __init__(self) -> None:
        self.namespaces: dict[str, dict] = {}
        self.releases: set[str] = set()
        self.workloads: dict[str, list[WorkloadStatus]] = {}
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}
        self.installs: list[tuple[str, str, dict]] = []

        self.install_gate: asyncio.Event | None = None
        self.install_delay = 0.0
        self.install_error: ClusterError | None = None
        self.workload_errors: dict[str, ClusterError] = {}
        self.delete_delay = 0.0
        self.delete_error: ClusterError | None = None

    async def create_namespace(self, store_id, labels, annotations):
        if store_id in self.namespaces:
            return ClusterOutcome.ALREADY_EXISTS
        self.namespaces[store_id] = {"labels": labels, "annotations": annotations}
        return ClusterOutcome.CREATED

    async def delete_namespace(self, store_id):
        if self.delete_delay:
            await asyncio.sleep(self.delete_delay)
        if self.delete_error is not None:
            raise self.delete_error
        if self.namespaces.pop(store_id, None) is None:
            return ClusterOutcome.NOT_FOUND
        return ClusterOutcome.INITIATED

    async def list_workloads(self, store_id):
        if store_id in self.workload_errors:
            raise self.workload_errors[store_id]
        return list(self.workloads.get(store_id, []))

    async def read_secret(self, store_id, name):
        try:
            return dict(self.secrets[(store_id, name)])
        except KeyError:
            raise ClusterNotFound(f"read secret {name}: not found") from None

    async def install_or_upgrade_chart(self, store_id, engine, values, timeout):
        self.installs.append((store_id, engine, values))
        if self.install_gate is not None:
            await self.install_gate.wait()
        if self.install_delay:
            await asyncio.sleep(self.install_delay)
        if self.install_error is not None:
            raise self.install_error
        self.releases.add(store_id)

    async def release_exists(self, store_id):
        return store_id in self.releases

    async def uninstall_chart(self, store_id):
        if store_id in self.releases:
            self.releases.discard(store_id)
            return ClusterOutcome.REMOVED
        return ClusterOutcome.ALREADY_ABSENT

    async def ping(self):
        return "v1.30.0"


@pytest.fixture
async def engine(tmp_path):
    # File-backed so every session gets its own connection, as in production
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        ingress_domain_suffix="test.local",
        max_concurrent_provisions=2,
        provision_timeout_seconds=5,
        namespace_delete_timeout_seconds=1,
        chart_uninstall_timeout_seconds=1,
        cluster_request_timeout_seconds=1,
        max_stores_per_owner=3,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def provisioner(gateway, test_session_factory, settings) -> Provisioner:
    return Provisioner(gateway, test_session_factory, settings)  # type: ignore[arg-type]


@pytest.fixture
def reconciler(gateway, test_session_factory, settings) -> Reconciler:
    return Reconciler(gateway, test_session_factory, settings)  # type: ignore[arg-type]


@pytest.fixture
def make_store(test_session_factory):
    """Insert a store record directly, bypassing the API."""

    async def _make(name: str = "demo", engine: StoreEngine = StoreEngine.WOOCOMMERCE, **fields) -> Store:
        async with test_session_factory() as sess:
            store = Store(name=name, engine=engine, **fields)
            sess.add(store)
            await sess.commit()
            await sess.refresh(store)
            return store

    return _make


@pytest.fixture
def queue():
    """Mocked ARQ pool used by the create endpoint."""
    pool = AsyncMock()
    pool.enqueue_job = AsyncMock()
    pool.aclose = AsyncMock()
    with patch("app.api.v1.stores.create_pool", AsyncMock(return_value=pool)):
        yield pool


@pytest.fixture
async def client(session, test_session_factory, gateway, settings, queue) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB, cluster and settings overrides."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_session_factory] = lambda: test_session_factory
    app.dependency_overrides[get_cluster_gateway] = lambda: gateway
    app.dependency_overrides[get_settings] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
