"""Pytest configuration and fixtures."""

import pytest
from httpx import ASGITransport, AsyncClient

import app.core.channel as channel_module
import app.core.store as store_module
from app.core.channel import LogStreamChannel, get_log_channel
from app.core.store import DeploymentStore, get_deployment_store
from app.main import app
from app.models.deployment import DeploymentCreate


@pytest.fixture(autouse=True)
def fresh_singletons():
    """Give every test its own store and channel."""
    store_module._store = None
    channel_module._channel = None
    yield
    store_module._store = None
    channel_module._channel = None


@pytest.fixture
def store() -> DeploymentStore:
    """The deployment store the app will use."""
    return get_deployment_store()


@pytest.fixture
def channel() -> LogStreamChannel:
    """The log channel the app will use."""
    return get_log_channel()


@pytest.fixture
def small_channel() -> LogStreamChannel:
    """A standalone channel with tiny buffers for overflow tests."""
    return LogStreamChannel(outbound_queue_size=100, shard_count=4)


@pytest.fixture
async def client() -> AsyncClient:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def deployment_data() -> DeploymentCreate:
    """Sample deployment creation data."""
    return DeploymentCreate(
        project_id="acme-site",
        commit_hash="3f9c2a1b7e",
        commit_message="Fix header layout",
        branch="main",
    )
