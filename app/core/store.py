"""Deployment records and their build log history."""

import itertools
from datetime import datetime

from app.core.exceptions import (
    DeploymentFinalizedError,
    DeploymentNotFoundError,
    InvalidStatusTransitionError,
)
from app.models.deployment import (
    Deployment,
    DeploymentCreate,
    DeploymentStatus,
    LogLine,
    can_transition,
)
from app.utils.logging import get_logger

logger = get_logger(__name__)


class DeploymentStore:
    """Keeps deployments and their log lines in memory.

    Note: For production, this should be backed by a database.
    """

    def __init__(self) -> None:
        self._deployments: dict[str, Deployment] = {}
        self._logs: dict[str, list[LogLine]] = {}
        self._ids = itertools.count(1)

    async def create_deployment(self, data: DeploymentCreate) -> Deployment:
        """Enqueue a new deployment."""
        deployment = Deployment(
            id=str(next(self._ids)),
            project_id=data.project_id,
            commit_hash=data.commit_hash,
            commit_message=data.commit_message,
            branch=data.branch,
        )
        self._deployments[deployment.id] = deployment
        self._logs[deployment.id] = []
        logger.info(
            "deployment.created",
            deployment_id=deployment.id,
            project_id=deployment.project_id,
            branch=deployment.branch,
            commit=deployment.commit_hash[:7],
        )
        return deployment

    async def get_deployment(self, deployment_id: str) -> Deployment | None:
        """Get a deployment by ID."""
        return self._deployments.get(deployment_id)

    async def require_deployment(self, deployment_id: str) -> Deployment:
        deployment = self._deployments.get(deployment_id)
        if deployment is None:
            raise DeploymentNotFoundError(deployment_id)
        return deployment

    async def list_deployments(
        self,
        project_id: str | None = None,
        status: DeploymentStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Deployment], int]:
        """List deployments, newest first."""
        deployments = list(self._deployments.values())

        if project_id is not None:
            deployments = [d for d in deployments if d.project_id == project_id]
        if status:
            deployments = [d for d in deployments if d.status == status]

        deployments.sort(key=lambda d: (d.created_at, int(d.id)), reverse=True)

        total = len(deployments)
        return deployments[offset : offset + limit], total

    async def update_status(
        self,
        deployment_id: str,
        status: DeploymentStatus,
        deploy_url: str | None = None,
        error: str | None = None,
    ) -> Deployment:
        """Move a deployment along its lifecycle.

        Raises:
            DeploymentNotFoundError: Unknown deployment.
            InvalidStatusTransitionError: The move is not allowed, including
                any move out of a terminal status.
        """
        deployment = await self.require_deployment(deployment_id)
        if not can_transition(deployment.status, status):
            raise InvalidStatusTransitionError(
                deployment_id, deployment.status.value, status.value
            )

        now = datetime.utcnow()
        previous = deployment.status
        deployment.status = status
        if status == DeploymentStatus.BUILDING:
            deployment.started_at = now
        if status.is_terminal:
            deployment.completed_at = now
        if status == DeploymentStatus.SUCCESS:
            deployment.deploy_url = deploy_url
        if status == DeploymentStatus.FAILED:
            deployment.error = error

        logger.info(
            "deployment.status_changed",
            deployment_id=deployment_id,
            previous=previous.value,
            status=status.value,
            build_time=deployment.build_time,
        )
        return deployment

    async def append_logs(self, deployment_id: str, lines: list[str]) -> list[LogLine]:
        """Record build output lines in production order.

        Raises:
            DeploymentNotFoundError: Unknown deployment.
            DeploymentFinalizedError: The deployment already finished.
        """
        deployment = await self.require_deployment(deployment_id)
        if deployment.is_terminal:
            raise DeploymentFinalizedError(deployment_id, deployment.status.value)

        history = self._logs[deployment_id]
        start = len(history)
        appended = [
            LogLine(deployment_id=deployment_id, sequence=start + i + 1, message=line)
            for i, line in enumerate(lines)
        ]
        history.extend(appended)
        return appended

    async def get_logs(self, deployment_id: str) -> list[LogLine]:
        """Full log history of a deployment."""
        await self.require_deployment(deployment_id)
        return list(self._logs[deployment_id])

    async def clear(self) -> None:
        self._deployments.clear()
        self._logs.clear()
        self._ids = itertools.count(1)


# Singleton instance
_store: DeploymentStore | None = None


def get_deployment_store() -> DeploymentStore:
    """Get the deployment store singleton."""
    global _store
    if _store is None:
        _store = DeploymentStore()
    return _store
