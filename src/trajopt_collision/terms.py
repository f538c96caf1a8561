"""Collision cost and constraint terms for sequential convex optimization.

Both terms penalize contacts closer than a safety margin ``dist_pen``:

    penalty = coeff * w * max(0, dist_pen - d)

where d is the signed distance of a contact and w its link pair weight.
``value`` evaluates this exactly for the merit function; ``convex`` builds
the convex surrogate from the linearized distances.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .cache import QueryCache
from .collision import ALL_FILTER
from .evaluators import (
    CastCollisionEvaluator,
    CollisionBackend,
    CollisionEvaluator,
    SingleTimestepCollisionEvaluator,
)
from .kinematics import Configuration
from .sco import ConvexConstraints, ConvexObjective, Cost, IneqConstraint, Model

logger = logging.getLogger(__name__)


def _make_evaluator(
    rad: Configuration,
    checker: CollisionBackend,
    vars0: Sequence[int],
    vars1: Sequence[int] | None,
    filter_mask: int,
    cache: QueryCache | None,
) -> CollisionEvaluator:
    if vars1 is None:
        return SingleTimestepCollisionEvaluator(
            rad, checker, vars0, filter_mask, cache,
        )
    return CastCollisionEvaluator(
        rad, checker, vars0, vars1, filter_mask, cache,
    )


def _check_penalty_params(dist_pen: float, coeff: float) -> None:
    if not np.isfinite(dist_pen):
        raise ValueError(f"dist_pen must be finite, got {dist_pen}")
    if not np.isfinite(coeff) or coeff < 0:
        raise ValueError(f"coeff must be finite and >= 0, got {coeff}")


class CollisionCost(Cost):
    """Hinge penalty on contacts closer than ``dist_pen``.

    Single-timestep when only ``vars0`` is given, cast (swept) between the
    waypoints ``vars0`` and ``vars1`` otherwise.
    """

    def __init__(
        self,
        dist_pen: float,
        coeff: float,
        rad: Configuration,
        checker: CollisionBackend,
        vars0: Sequence[int],
        vars1: Sequence[int] | None = None,
        filter_mask: int = ALL_FILTER,
        cache: QueryCache | None = None,
        name: str = "collision",
    ):
        """Initialize cost.

        Args:
            dist_pen: Required clearance [m].
            coeff: Penalty weight, >= 0.
            rad: Robot configuration.
            checker: Collision backend.
            vars0: Variable indices of the (first) waypoint.
            vars1: Variable indices of the second waypoint for a cast cost.
            filter_mask: Passed to the backend.
            cache: Query cache for the evaluator.
            name: Term name.
        """
        super().__init__(name)
        _check_penalty_params(dist_pen, coeff)
        self._dist_pen = float(dist_pen)
        self._coeff = float(coeff)
        self._calc = _make_evaluator(
            rad, checker, vars0, vars1, filter_mask, cache,
        )

    @property
    def dist_pen(self) -> float:
        return self._dist_pen

    @property
    def coeff(self) -> float:
        return self._coeff

    @property
    def evaluator(self) -> CollisionEvaluator:
        return self._calc

    def convex(self, x: np.ndarray, model: Model) -> ConvexObjective:
        out = ConvexObjective(model)
        exprs, weights = self._calc.calc_dist_expressions(x)
        for expr, w in zip(exprs, weights):
            out.add_hinge(self._dist_pen - expr, self._coeff * w)
        return out

    def value(self, x: np.ndarray) -> float:
        dists, weights = self._calc.calc_dists(x)
        if len(dists) == 0:
            return 0.0
        return float(np.sum(
            np.maximum(self._dist_pen - dists, 0.0) * self._coeff * weights
        ))


class CollisionConstraint(IneqConstraint):
    """Inequality d >= dist_pen for every contact.

    Each contact row is scaled by coeff * w; the scaling does not change the
    feasible set but keeps constraint violations in the same units as the
    matching cost.
    """

    def __init__(
        self,
        dist_pen: float,
        coeff: float,
        rad: Configuration,
        checker: CollisionBackend,
        vars0: Sequence[int],
        vars1: Sequence[int] | None = None,
        filter_mask: int = ALL_FILTER,
        cache: QueryCache | None = None,
        name: str = "collision",
    ):
        super().__init__(name)
        _check_penalty_params(dist_pen, coeff)
        self._dist_pen = float(dist_pen)
        self._coeff = float(coeff)
        self._calc = _make_evaluator(
            rad, checker, vars0, vars1, filter_mask, cache,
        )

    @property
    def dist_pen(self) -> float:
        return self._dist_pen

    @property
    def coeff(self) -> float:
        return self._coeff

    @property
    def evaluator(self) -> CollisionEvaluator:
        return self._calc

    def convex(self, x: np.ndarray, model: Model) -> ConvexConstraints:
        out = ConvexConstraints(model)
        exprs, weights = self._calc.calc_dist_expressions(x)
        for expr, w in zip(exprs, weights):
            out.add_ineq((self._dist_pen - expr) * (self._coeff * w))
        return out

    def value(self, x: np.ndarray) -> np.ndarray:
        dists, weights = self._calc.calc_dists(x)
        return np.maximum(self._dist_pen - dists, 0.0) * self._coeff * weights


@dataclass
class CollisionTermConfig:
    """Collision terms over a range of trajectory steps.

    Attributes:
        term_type: "cost" or "constraint".
        continuous: Swept terms between steps i and i + gap instead of
            discrete terms at every step.
        first_step: First trajectory step covered.
        last_step: Last trajectory step covered. None means the last step.
        gap: Step distance of swept segments.
        coeffs: Penalty weight, scalar or one per step of the range.
        dist_pen: Required clearance [m], scalar or one per step of the range.
        filter_mask: Passed to the backend.
        contact_margin: The backend contact distance is raised to at least
            max(dist_pen) + contact_margin [m].
    """

    term_type: str = "cost"
    continuous: bool = True
    first_step: int = 0
    last_step: int | None = None
    gap: int = 1
    coeffs: float | Sequence[float] = 20.0
    dist_pen: float | Sequence[float] = 0.025
    filter_mask: int = ALL_FILTER
    contact_margin: float = 0.04


def _per_step(
    value: float | Sequence[float], n_steps: int, label: str,
) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64).ravel()
    if arr.size == 1:
        return np.full(n_steps, arr[0])
    if arr.size != n_steps:
        raise ValueError(
            f"{label} has {arr.size} entries, expected 1 or {n_steps}"
        )
    return arr


def build_collision_terms(
    config: CollisionTermConfig,
    rad: Configuration,
    checker,
    traj_vars: np.ndarray,
) -> list[CollisionCost] | list[CollisionConstraint]:
    """Create the collision terms of a trajectory optimization problem.

    Args:
        config: Collision term configuration.
        rad: Robot configuration shared by all terms.
        checker: CollisionChecker shared by all terms.
        traj_vars: Variable indices (n_steps, dof), one row per waypoint.

    Returns:
        One term per step (discrete) or per segment (continuous).
    """
    traj_vars = np.asarray(traj_vars, dtype=int)
    if traj_vars.ndim != 2:
        raise ValueError(
            f"traj_vars must be 2-D (n_steps, dof), got shape {traj_vars.shape}"
        )
    if config.term_type == "cost":
        term_cls = CollisionCost
    elif config.term_type == "constraint":
        term_cls = CollisionConstraint
    else:
        raise ValueError(f"Unknown term_type '{config.term_type}'")

    n_total = traj_vars.shape[0]
    last = n_total - 1 if config.last_step is None else config.last_step
    if not 0 <= config.first_step <= last < n_total:
        raise ValueError(
            f"Invalid step range [{config.first_step}, {last}] "
            f"for {n_total} steps"
        )
    if config.gap < 1:
        raise ValueError(f"gap must be >= 1, got {config.gap}")

    n_steps = last - config.first_step + 1
    coeffs = _per_step(config.coeffs, n_steps, "coeffs")
    dist_pen = _per_step(config.dist_pen, n_steps, "dist_pen")

    required = float(np.max(dist_pen)) + config.contact_margin
    if checker.contact_distance < required:
        logger.info(
            "Raising contact distance from %.4f to %.4f",
            checker.contact_distance, required,
        )
        checker.set_contact_distance(required)

    terms = []
    if config.continuous:
        for i in range(config.first_step, last - config.gap + 1):
            k = i - config.first_step
            terms.append(term_cls(
                dist_pen[k], coeffs[k], rad, checker,
                traj_vars[i], traj_vars[i + config.gap],
                filter_mask=config.filter_mask,
                name=f"cast_collision_{i}",
            ))
    else:
        for i in range(config.first_step, last + 1):
            k = i - config.first_step
            terms.append(term_cls(
                dist_pen[k], coeffs[k], rad, checker, traj_vars[i],
                filter_mask=config.filter_mask,
                name=f"collision_{i}",
            ))

    logger.info(
        "Created %d %s collision %ss for steps %d..%d",
        len(terms), "continuous" if config.continuous else "discrete",
        config.term_type, config.first_step, last,
    )
    return terms
