"""Deployment data models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field


class DeploymentStatus(str, Enum):
    """Build/deploy attempt status."""

    QUEUED = "queued"
    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    DeploymentStatus.QUEUED: frozenset(
        {DeploymentStatus.BUILDING, DeploymentStatus.CANCELLED}
    ),
    DeploymentStatus.BUILDING: frozenset(
        {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED, DeploymentStatus.CANCELLED}
    ),
    DeploymentStatus.SUCCESS: frozenset(),
    DeploymentStatus.FAILED: frozenset(),
    DeploymentStatus.CANCELLED: frozenset(),
}


def can_transition(current: DeploymentStatus, target: DeploymentStatus) -> bool:
    """Check whether ``current`` may move to ``target``."""
    return target in ALLOWED_TRANSITIONS[current]


class DeploymentCreate(BaseModel):
    """Request model for enqueuing a deployment."""

    project_id: str | None = None
    commit_hash: str = Field(..., min_length=1, max_length=64)
    commit_message: str | None = None
    branch: str = Field(default="main", min_length=1)


class Deployment(BaseModel):
    """One build/deploy attempt for a project."""

    id: str
    project_id: str | None = None
    commit_hash: str
    commit_message: str | None = None
    branch: str = "main"
    status: DeploymentStatus = DeploymentStatus.QUEUED

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    deploy_url: str | None = None
    error: str | None = None

    @computed_field  # type: ignore[misc]
    @property
    def build_time(self) -> int | None:
        """Build duration in whole seconds, once both ends are known."""
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds())

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class DeploymentStatusUpdate(BaseModel):
    """Request model for moving a deployment to a new status."""

    status: DeploymentStatus
    deploy_url: str | None = None
    error: str | None = None


class LogLine(BaseModel):
    """One line of build output."""

    deployment_id: str
    sequence: int
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class LogAppend(BaseModel):
    """Request model for pushing build output lines."""

    lines: list[str] = Field(..., min_length=1)


class LogAppendResponse(BaseModel):
    """Result of pushing build output lines."""

    deployment_id: str
    appended: int
    total_lines: int
    delivered: int
