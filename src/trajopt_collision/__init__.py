"""Collision-avoidance terms for trajectory optimization.

Provides:
- Bounded caching of collision queries per variable assignment
- Discrete and swept (cast) collision evaluators with linearized distances
- Collision cost and constraint terms for sequential convex optimization
"""

from .cache import QueryCache
from .collision import (
    ALL_FILTER,
    ROBOT_FILTER,
    STATIC_FILTER,
    BoxObstacle,
    CastPhase,
    CollisionChecker,
    CollisionConfig,
    Contact,
    HalfSpaceObstacle,
    LinkSphere,
    Obstacle,
    SphereObstacle,
)
from .evaluators import (
    CastCollisionEvaluator,
    CollisionEvaluator,
    SingleTimestepCollisionEvaluator,
    pair_weights,
)
from .kinematics import Configuration, PinocchioConfiguration
from .terms import (
    CollisionConstraint,
    CollisionCost,
    CollisionTermConfig,
    build_collision_terms,
)

__all__ = [
    "ALL_FILTER",
    "ROBOT_FILTER",
    "STATIC_FILTER",
    "BoxObstacle",
    "CastCollisionEvaluator",
    "CastPhase",
    "CollisionChecker",
    "CollisionConfig",
    "CollisionConstraint",
    "CollisionCost",
    "CollisionEvaluator",
    "CollisionTermConfig",
    "Configuration",
    "Contact",
    "HalfSpaceObstacle",
    "LinkSphere",
    "Obstacle",
    "PinocchioConfiguration",
    "QueryCache",
    "SingleTimestepCollisionEvaluator",
    "SphereObstacle",
    "build_collision_terms",
    "pair_weights",
]
