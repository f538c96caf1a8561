"""Sphere-based collision checking for robot links."""

from .checker import (
    ALL_FILTER,
    ROBOT_FILTER,
    STATIC_FILTER,
    BoxObstacle,
    CollisionChecker,
    CollisionConfig,
    HalfSpaceObstacle,
    LinkSphere,
    Obstacle,
    SphereObstacle,
)
from .contact import CastPhase, Contact

__all__ = [
    "ALL_FILTER",
    "ROBOT_FILTER",
    "STATIC_FILTER",
    "BoxObstacle",
    "CastPhase",
    "CollisionChecker",
    "CollisionConfig",
    "Contact",
    "HalfSpaceObstacle",
    "LinkSphere",
    "Obstacle",
    "SphereObstacle",
]
