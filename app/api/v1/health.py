"""Health check endpoints."""

from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from app import __version__
from app.api.deps import ChannelDep
from app.config import settings

router = APIRouter()


class ChannelHealth(BaseModel):
    """Log channel connection health."""

    open_connections: int
    subscriptions: int
    watched_deployments: int
    lines_published: int
    overflows: int
    oldest_connection_age_seconds: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str
    environment: str
    timestamp: datetime
    channel: ChannelHealth


@router.get("/health", response_model=HealthResponse)
async def health_check(channel: ChannelDep) -> HealthResponse:
    """Check API health status and log channel load."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.utcnow(),
        channel=ChannelHealth(**channel.stats()),
    )
