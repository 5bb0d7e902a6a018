"""Deployment endpoints.

The producer side of the log channel lives here too: the external build
executor reports status changes and output lines over HTTP.
"""

import json
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from app.api.deps import ChannelDep, DeploymentDep, StoreDep
from app.api.streaming import iter_frames
from app.config import settings
from app.core.builder import BuildReporter, run_mock_build
from app.core.exceptions import ChannelConnectionError
from app.models.deployment import (
    TERMINAL_STATUSES,
    Deployment,
    DeploymentCreate,
    DeploymentStatus,
    DeploymentStatusUpdate,
    LogAppend,
    LogAppendResponse,
)
from app.models.messages import AckMessage, StatusMessage

router = APIRouter()

_TERMINAL_VALUES = {s.value for s in TERMINAL_STATUSES}


class DeploymentListResponse(BaseModel):
    """Response for listing deployments."""

    deployments: list[Deployment]
    total: int
    limit: int
    offset: int


@router.post(
    "",
    response_model=Deployment,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue a deployment",
)
async def create_deployment(
    data: DeploymentCreate,
    store: StoreDep,
    channel: ChannelDep,
    background_tasks: BackgroundTasks,
) -> Deployment:
    """Create a queued deployment. With mock builds enabled a simulated build starts."""
    deployment = await store.create_deployment(data)

    if settings.mock_builds:
        reporter = BuildReporter(deployment.id, store=store, channel=channel)
        background_tasks.add_task(run_mock_build, deployment.id, reporter)

    return deployment


@router.get(
    "",
    response_model=DeploymentListResponse,
    summary="List deployments",
)
async def list_deployments(
    store: StoreDep,
    project_id: str | None = None,
    status_filter: Annotated[DeploymentStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeploymentListResponse:
    """List deployments, newest first."""
    deployments, total = await store.list_deployments(
        project_id=project_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return DeploymentListResponse(
        deployments=deployments,
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{deployment_id}",
    response_model=Deployment,
    summary="Get deployment details",
)
async def get_deployment(deployment: DeploymentDep) -> Deployment:
    return deployment


@router.post(
    "/{deployment_id}/status",
    response_model=Deployment,
    summary="Report a status change",
)
async def update_status(
    deployment: DeploymentDep,
    data: DeploymentStatusUpdate,
    store: StoreDep,
    channel: ChannelDep,
) -> Deployment:
    """Move a deployment to a new status (409 if the move is not allowed)."""
    reporter = BuildReporter(deployment.id, store=store, channel=channel)
    return await reporter.transition(data.status, deploy_url=data.deploy_url, error=data.error)


@router.post(
    "/{deployment_id}/cancel",
    response_model=Deployment,
    summary="Cancel a deployment",
)
async def cancel_deployment(
    deployment: DeploymentDep,
    store: StoreDep,
    channel: ChannelDep,
) -> Deployment:
    reporter = BuildReporter(deployment.id, store=store, channel=channel)
    return await reporter.cancel()


@router.post(
    "/{deployment_id}/logs",
    response_model=LogAppendResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Push build output lines",
)
async def append_logs(
    deployment: DeploymentDep,
    data: LogAppend,
    store: StoreDep,
    channel: ChannelDep,
) -> LogAppendResponse:
    """Store lines and publish each to live observers, in order."""
    reporter = BuildReporter(deployment.id, store=store, channel=channel)
    stored, delivered = await reporter.log(*data.lines)
    return LogAppendResponse(
        deployment_id=deployment.id,
        appended=len(stored),
        total_lines=stored[-1].sequence if stored else 0,
        delivered=delivered,
    )


@router.get(
    "/{deployment_id}/logs",
    response_class=PlainTextResponse,
    summary="Download the full build log",
)
async def download_logs(deployment: DeploymentDep, store: StoreDep) -> PlainTextResponse:
    lines = await store.get_logs(deployment.id)
    body = "".join(f"{line.message}\n" for line in lines)
    return PlainTextResponse(
        body,
        headers={
            "Content-Disposition": f'attachment; filename="deployment-{deployment.id}.log"'
        },
    )


@router.get(
    "/{deployment_id}/stream",
    summary="Stream build logs (SSE)",
)
async def stream_logs(
    deployment: DeploymentDep,
    channel: ChannelDep,
    request: Request,
) -> EventSourceResponse:
    """Stream live log lines of one deployment using Server-Sent Events."""
    peer = f"{request.client.host}:{request.client.port}" if request.client else None
    connection = channel.open_connection(transport="sse", peer=peer)
    try:
        await channel.subscribe(connection, deployment.id)
    except ChannelConnectionError:
        await channel.close_connection(connection)
        raise

    async def event_generator():
        try:
            yield {
                "event": "subscribed",
                "data": json.dumps(
                    AckMessage(type="subscribed", deployment_id=deployment.id).to_wire()
                ),
            }
            if deployment.is_terminal:
                return

            async for frame in iter_frames(connection):
                yield {"event": frame.type, "data": json.dumps(frame.to_wire())}

                # Stop streaming once the build finished
                if isinstance(frame, StatusMessage) and frame.status in _TERMINAL_VALUES:
                    break
        finally:
            await channel.close_connection(connection)

    return EventSourceResponse(event_generator())
