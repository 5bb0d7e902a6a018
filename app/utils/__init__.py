"""Utility functions for GitShip."""

from app.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
