"""Unit tests for the deployment store."""

import pytest

from app.core.exceptions import (
    DeploymentFinalizedError,
    DeploymentNotFoundError,
    InvalidStatusTransitionError,
)
from app.core.store import DeploymentStore
from app.models.deployment import DeploymentCreate, DeploymentStatus


class TestDeploymentStore:
    """Tests for DeploymentStore."""

    @pytest.mark.asyncio
    async def test_create_deployment(
        self, store: DeploymentStore, deployment_data: DeploymentCreate
    ):
        deployment = await store.create_deployment(deployment_data)

        assert deployment.id == "1"
        assert deployment.status == DeploymentStatus.QUEUED
        assert deployment.commit_hash == "3f9c2a1b7e"
        assert deployment.deploy_url is None

    @pytest.mark.asyncio
    async def test_ids_are_sequential(
        self, store: DeploymentStore, deployment_data: DeploymentCreate
    ):
        first = await store.create_deployment(deployment_data)
        second = await store.create_deployment(deployment_data)
        assert (first.id, second.id) == ("1", "2")

    @pytest.mark.asyncio
    async def test_get_missing(self, store: DeploymentStore):
        assert await store.get_deployment("404") is None
        with pytest.raises(DeploymentNotFoundError):
            await store.require_deployment("404")

    @pytest.mark.asyncio
    async def test_lifecycle_timestamps(
        self, store: DeploymentStore, deployment_data: DeploymentCreate
    ):
        deployment = await store.create_deployment(deployment_data)

        building = await store.update_status(deployment.id, DeploymentStatus.BUILDING)
        assert building.started_at is not None
        assert building.completed_at is None

        done = await store.update_status(
            deployment.id,
            DeploymentStatus.SUCCESS,
            deploy_url="https://acme-site-1.gitship.app",
        )
        assert done.completed_at is not None
        assert done.build_time is not None
        assert done.deploy_url == "https://acme-site-1.gitship.app"

    @pytest.mark.asyncio
    async def test_failure_records_error_without_url(
        self, store: DeploymentStore, deployment_data: DeploymentCreate
    ):
        deployment = await store.create_deployment(deployment_data)
        await store.update_status(deployment.id, DeploymentStatus.BUILDING)

        failed = await store.update_status(
            deployment.id,
            DeploymentStatus.FAILED,
            deploy_url="https://ignored.example",
            error="npm run build exited with code 1",
        )

        assert failed.deploy_url is None
        assert failed.error == "npm run build exited with code 1"

    @pytest.mark.asyncio
    async def test_invalid_transition(
        self, store: DeploymentStore, deployment_data: DeploymentCreate
    ):
        deployment = await store.create_deployment(deployment_data)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await store.update_status(deployment.id, DeploymentStatus.SUCCESS)

        assert exc_info.value.current == "queued"
        assert exc_info.value.requested == "success"

    @pytest.mark.asyncio
    async def test_terminal_is_final(
        self, store: DeploymentStore, deployment_data: DeploymentCreate
    ):
        deployment = await store.create_deployment(deployment_data)
        await store.update_status(deployment.id, DeploymentStatus.CANCELLED)

        with pytest.raises(InvalidStatusTransitionError):
            await store.update_status(deployment.id, DeploymentStatus.BUILDING)

    @pytest.mark.asyncio
    async def test_append_and_read_logs(
        self, store: DeploymentStore, deployment_data: DeploymentCreate
    ):
        deployment = await store.create_deployment(deployment_data)

        await store.append_logs(deployment.id, ["one", "two"])
        appended = await store.append_logs(deployment.id, ["three"])

        assert [line.sequence for line in appended] == [3]
        logs = await store.get_logs(deployment.id)
        assert [line.message for line in logs] == ["one", "two", "three"]
        assert [line.sequence for line in logs] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_logs_refused_after_terminal(
        self, store: DeploymentStore, deployment_data: DeploymentCreate
    ):
        deployment = await store.create_deployment(deployment_data)
        await store.update_status(deployment.id, DeploymentStatus.BUILDING)
        await store.append_logs(deployment.id, ["compiling"])
        await store.update_status(deployment.id, DeploymentStatus.FAILED, error="boom")

        with pytest.raises(DeploymentFinalizedError):
            await store.append_logs(deployment.id, ["too late"])

        # History stays available for download
        logs = await store.get_logs(deployment.id)
        assert [line.message for line in logs] == ["compiling"]

    @pytest.mark.asyncio
    async def test_list_deployments(self, store: DeploymentStore):
        for i in range(3):
            await store.create_deployment(
                DeploymentCreate(project_id="site-a", commit_hash=f"a{i}")
            )
        other = await store.create_deployment(
            DeploymentCreate(project_id="site-b", commit_hash="b0")
        )
        await store.update_status(other.id, DeploymentStatus.CANCELLED)

        deployments, total = await store.list_deployments(project_id="site-a")
        assert total == 3
        assert [d.id for d in deployments] == ["3", "2", "1"]

        deployments, total = await store.list_deployments(
            status=DeploymentStatus.CANCELLED
        )
        assert total == 1
        assert deployments[0].id == other.id

        page, total = await store.list_deployments(limit=2, offset=1)
        assert total == 4
        assert len(page) == 2
