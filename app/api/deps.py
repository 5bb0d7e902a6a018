"""Dependency injection for API endpoints."""

from typing import Annotated

from fastapi import Depends

from app.core.channel import LogStreamChannel, get_log_channel
from app.core.store import DeploymentStore, get_deployment_store
from app.models.deployment import Deployment


async def get_store() -> DeploymentStore:
    """Get the deployment store."""
    return get_deployment_store()


async def get_channel() -> LogStreamChannel:
    """Get the log streaming channel."""
    return get_log_channel()


async def get_deployment_by_id(
    deployment_id: str,
    store: Annotated[DeploymentStore, Depends(get_store)],
) -> Deployment:
    """Get a deployment by ID or raise DeploymentNotFoundError (404)."""
    return await store.require_deployment(deployment_id)


# Type aliases for cleaner signatures
StoreDep = Annotated[DeploymentStore, Depends(get_store)]
ChannelDep = Annotated[LogStreamChannel, Depends(get_channel)]
DeploymentDep = Annotated[Deployment, Depends(get_deployment_by_id)]
