"""Build reporting.

The build executor itself lives outside this service. ``BuildReporter`` is
the facade it (or the HTTP ingestion endpoints) uses to record progress: each
status change and each output line lands in the deployment store and is
relayed through the log channel.
"""

import asyncio

from app.config import settings
from app.core.channel import LogStreamChannel, get_log_channel
from app.core.exceptions import GitShipError
from app.core.store import DeploymentStore, get_deployment_store
from app.models.deployment import Deployment, DeploymentStatus, LogLine
from app.utils.logging import get_logger

logger = get_logger(__name__)

DEPLOY_URL_TEMPLATE = "https://{project}-{deployment_id}.gitship.app"


class BuildReporter:
    """Records progress of one deployment's build."""

    def __init__(
        self,
        deployment_id: str,
        store: DeploymentStore | None = None,
        channel: LogStreamChannel | None = None,
    ):
        self.deployment_id = deployment_id
        self.store = store or get_deployment_store()
        self.channel = channel or get_log_channel()

    async def start(self) -> Deployment:
        return await self._transition(DeploymentStatus.BUILDING)

    async def log(self, *lines: str) -> tuple[list[LogLine], int]:
        """Store output lines and push them to live observers.

        Returns:
            The stored lines and the total number of deliveries queued.
        """
        stored = await self.store.append_logs(self.deployment_id, list(lines))
        delivered = 0
        for line in stored:
            delivered += await self.channel.publish(self.deployment_id, line.message)
        return stored, delivered

    async def succeed(self, deploy_url: str | None = None) -> Deployment:
        return await self._transition(DeploymentStatus.SUCCESS, deploy_url=deploy_url)

    async def fail(self, error: str) -> Deployment:
        return await self._transition(DeploymentStatus.FAILED, error=error)

    async def cancel(self) -> Deployment:
        return await self._transition(DeploymentStatus.CANCELLED)

    async def transition(
        self,
        status: DeploymentStatus,
        deploy_url: str | None = None,
        error: str | None = None,
    ) -> Deployment:
        return await self._transition(status, deploy_url=deploy_url, error=error)

    async def _transition(
        self,
        status: DeploymentStatus,
        deploy_url: str | None = None,
        error: str | None = None,
    ) -> Deployment:
        deployment = await self.store.update_status(
            self.deployment_id, status, deploy_url=deploy_url, error=error
        )
        await self.channel.publish_status(self.deployment_id, status.value)
        return deployment


async def run_mock_build(
    deployment_id: str,
    reporter: BuildReporter | None = None,
    step_delay: float | None = None,
) -> Deployment | None:
    """Simulate a build without touching any repository."""
    reporter = reporter or BuildReporter(deployment_id)
    delay = settings.mock_build_step_delay if step_delay is None else step_delay

    deployment = await reporter.store.get_deployment(deployment_id)
    if deployment is None:
        return None

    project = deployment.project_id or "site"
    steps = [
        f"Downloading repository at {deployment.commit_hash[:7]} ({deployment.branch})",
        "Extracting archive",
        "Installing dependencies",
        "Running build command: npm run build",
        "Copying build output",
        "Build succeeded",
    ]

    try:
        await reporter.start()
        for step in steps:
            await reporter.log(step)
            await asyncio.sleep(delay)
        return await reporter.succeed(
            DEPLOY_URL_TEMPLATE.format(project=project, deployment_id=deployment_id)
        )
    except GitShipError as e:
        # Cancelled or finalized from elsewhere while running
        logger.info(
            "mock_build.stopped",
            deployment_id=deployment_id,
            reason=e.message,
        )
        return await reporter.store.get_deployment(deployment_id)
