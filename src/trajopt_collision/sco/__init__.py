"""Convex modeling for sequential convex optimization."""

from .modeling import (
    AffExpr,
    ConvexConstraints,
    ConvexObjective,
    Cost,
    IneqConstraint,
    Model,
)

__all__ = [
    "AffExpr",
    "ConvexConstraints",
    "ConvexObjective",
    "Cost",
    "IneqConstraint",
    "Model",
]
