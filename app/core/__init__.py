"""Core functionality for GitShip."""

from app.core.exceptions import (
    ChannelConnectionError,
    DeliveryOverflow,
    DeploymentFinalizedError,
    DeploymentNotFoundError,
    GitShipError,
    InvalidStatusTransitionError,
    ProtocolError,
)

__all__ = [
    "GitShipError",
    "ChannelConnectionError",
    "DeliveryOverflow",
    "DeploymentFinalizedError",
    "DeploymentNotFoundError",
    "InvalidStatusTransitionError",
    "ProtocolError",
]
