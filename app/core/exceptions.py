"""Custom exceptions for GitShip."""

from typing import Any


class GitShipError(Exception):
    """Base exception for GitShip."""

    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DeploymentNotFoundError(GitShipError):
    """Deployment not found."""

    status_code = 404

    def __init__(self, deployment_id: str):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            {"deployment_id": deployment_id},
        )


class InvalidStatusTransitionError(GitShipError):
    """Deployment cannot move from its current status to the requested one."""

    status_code = 409

    def __init__(self, deployment_id: str, current: str, requested: str):
        super().__init__(
            f"Deployment {deployment_id} cannot go from '{current}' to '{requested}'",
            {"deployment_id": deployment_id, "current": current, "requested": requested},
        )
        self.current = current
        self.requested = requested


class DeploymentFinalizedError(GitShipError):
    """Deployment reached a terminal status and accepts no more log lines."""

    status_code = 409

    def __init__(self, deployment_id: str, status: str):
        super().__init__(
            f"Deployment {deployment_id} is already {status}",
            {"deployment_id": deployment_id, "status": status},
        )


class ChannelConnectionError(GitShipError):
    """Connection could not be established or is no longer open."""

    status_code = 503


class ProtocolError(GitShipError):
    """Well-formed frame with an invalid payload."""

    status_code = 400


class DeliveryOverflow(GitShipError):
    """A connection's outbound buffer is full."""

    status_code = 503

    def __init__(self, connection_id: str, capacity: int):
        super().__init__(
            f"Outbound buffer full for connection {connection_id}",
            {"connection_id": connection_id, "capacity": capacity},
        )
        self.connection_id = connection_id
        self.capacity = capacity
