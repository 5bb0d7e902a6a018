"""Data models for GitShip."""

from app.models.deployment import (
    Deployment,
    DeploymentCreate,
    DeploymentStatus,
    DeploymentStatusUpdate,
    LogAppend,
    LogAppendResponse,
    LogLine,
)

__all__ = [
    "Deployment",
    "DeploymentCreate",
    "DeploymentStatus",
    "DeploymentStatusUpdate",
    "LogAppend",
    "LogAppendResponse",
    "LogLine",
]
