"""Collision evaluators: contacts to signed distances and their linearizations.

An evaluator binds a Configuration to one trajectory waypoint
(:class:`SingleTimestepCollisionEvaluator`) or to the segment between two
waypoints (:class:`CastCollisionEvaluator`). For a variable assignment x it
provides:

1. calc_collisions: the raw contacts from the collision backend.
2. calc_dists: the signed distance of each contact and its weight.
3. calc_dist_expressions: a first-order affine model of each distance in
   the optimization variables, and its weight.

A link pair can produce several contacts. To count each pair once, the k
contacts of a pair each get weight 1/k.
"""

import logging
from abc import ABC, abstractmethod
from typing import Protocol, Sequence

import numpy as np

from .cache import QueryCache
from .collision import ALL_FILTER, Contact
from .kinematics import Configuration
from .sco import AffExpr

logger = logging.getLogger(__name__)


class CollisionBackend(Protocol):
    """Collision queries the evaluators rely on."""

    def check_discrete(
        self, link_poses: dict[str, np.ndarray], filter_mask: int,
    ) -> list[Contact]: ...

    def check_swept(
        self,
        link_poses0: dict[str, np.ndarray],
        link_poses1: dict[str, np.ndarray],
        filter_mask: int,
    ) -> list[Contact]: ...


def pair_weights(contacts: Sequence[Contact]) -> np.ndarray:
    """Weight 1/k for each of the k contacts of an unordered link pair.

    Links are indexed in order of first appearance, and a pair is keyed by
    the sorted indices of its two links.

    Args:
        contacts: Contacts of one query.

    Returns:
        Weights (len(contacts),).
    """
    link2ind: dict[str, int] = {}
    keys = []
    for c in contacts:
        ia = link2ind.setdefault(c.link_a, len(link2ind))
        ib = link2ind.setdefault(c.link_b, len(link2ind))
        keys.append((min(ia, ib), max(ia, ib)))

    counts: dict[tuple[int, int], int] = {}
    for key in keys:
        counts[key] = counts.get(key, 0) + 1

    weights = np.empty(len(contacts), dtype=np.float64)
    for n, key in enumerate(keys):
        k = counts[key]
        if k <= 0:
            raise RuntimeError(f"Link pair {key} registered with no contacts")
        weights[n] = 1.0 / k
    return weights


class CollisionEvaluator(ABC):
    """Turns variable assignments into contacts, distances and distance models.

    Raw queries go through a bounded cache keyed by the evaluator's own
    variable values, so the cost value, its convexification and the
    constraint at the same x hit the backend once.
    """

    def __init__(
        self,
        rad: Configuration,
        checker: CollisionBackend,
        filter_mask: int = ALL_FILTER,
        cache: QueryCache | None = None,
    ):
        """Initialize evaluator.

        Args:
            rad: Robot configuration, shared read-mostly between evaluators.
            checker: Collision backend.
            filter_mask: Passed through to the backend unchanged.
            cache: Query cache. A 3-entry cache is created if None.
        """
        self.rad = rad
        self.checker = checker
        self.filter_mask = filter_mask
        self.cache = cache if cache is not None else QueryCache(3)
        self._link2ind = {link: i for i, link in enumerate(rad.links)}

    @property
    @abstractmethod
    def vars(self) -> np.ndarray:
        """Every variable index the evaluator reads."""

    @abstractmethod
    def calc_collisions(self, x: np.ndarray) -> list[Contact]:
        """Run the collision query at x, bypassing the cache."""

    @abstractmethod
    def calc_dist_expressions(
        self, x: np.ndarray,
    ) -> tuple[list[AffExpr], np.ndarray]:
        """Linearize each contact distance around x.

        Returns:
            Tuple of (one AffExpr per contact, weights).
        """

    def get_collisions_cached(self, x: np.ndarray) -> list[Contact]:
        """Contacts at x, queried at most once per cached assignment.

        Returns a new list on every call; the contacts themselves are
        shared with the cache.
        """
        x = np.asarray(x, dtype=np.float64)
        return list(self.cache.get_or_compute(
            x[self.vars], lambda _: self.calc_collisions(x),
        ))

    def calc_dists(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Signed distance of each contact at x, and its weight."""
        contacts = self._robot_contacts(x)
        dists = np.array([c.distance for c in contacts], dtype=np.float64)
        return dists, pair_weights(contacts)

    def _robot_contacts(self, x: np.ndarray) -> list[Contact]:
        """Cached contacts that involve at least one configuration link."""
        return [
            c for c in self.get_collisions_cached(x)
            if c.link_a in self._link2ind or c.link_b in self._link2ind
        ]

    def _linearize(
        self,
        contact: Contact,
        vars: np.ndarray,
        dofvals: np.ndarray,
        end: bool = False,
    ) -> AffExpr:
        """First-order model of the contact distance in *vars* around *dofvals*.

        The configuration must already be at *dofvals*. A side that is not a
        configuration link (e.g. a static obstacle) contributes nothing.
        """
        normal = contact.normal_b2a
        grad = np.zeros(len(vars))
        if contact.link_a in self._link2ind:
            grad += normal @ self.rad.point_jacobian(
                contact.link_a, contact.witness_a(end),
            )
        if contact.link_b in self._link2ind:
            grad -= normal @ self.rad.point_jacobian(
                contact.link_b, contact.witness_b(end),
            )
        return AffExpr.linear(
            vars, grad, contact.distance - float(grad @ dofvals),
        )


class SingleTimestepCollisionEvaluator(CollisionEvaluator):
    """Discrete collision check at one waypoint."""

    def __init__(
        self,
        rad: Configuration,
        checker: CollisionBackend,
        vars: Sequence[int],
        filter_mask: int = ALL_FILTER,
        cache: QueryCache | None = None,
    ):
        super().__init__(rad, checker, filter_mask, cache)
        self._vars = np.asarray(vars, dtype=int).ravel()
        if len(self._vars) != rad.dof:
            raise ValueError(
                f"Expected {rad.dof} variables, got {len(self._vars)}"
            )

    @property
    def vars(self) -> np.ndarray:
        return self._vars

    def calc_collisions(self, x: np.ndarray) -> list[Contact]:
        dofvals = np.asarray(x, dtype=np.float64)[self._vars]
        self.rad.set_dof_values(dofvals)
        return self.checker.check_discrete(
            self.rad.link_poses(), self.filter_mask,
        )

    def calc_dist_expressions(self, x):
        x = np.asarray(x, dtype=np.float64)
        contacts = self._robot_contacts(x)
        dofvals = x[self._vars]
        self.rad.set_dof_values(dofvals)  # Jacobians at x
        exprs = [self._linearize(c, self._vars, dofvals) for c in contacts]
        return exprs, pair_weights(contacts)


class CastCollisionEvaluator(CollisionEvaluator):
    """Swept collision check over the segment between two waypoints.

    Each contact is found at an interpolation fraction t of the motion.
    Its distance is linearized at both waypoints, with the Jacobian at the
    corresponding pose, and blended as (1 - t) * expr0 + t * expr1.
    """

    def __init__(
        self,
        rad: Configuration,
        checker: CollisionBackend,
        vars0: Sequence[int],
        vars1: Sequence[int],
        filter_mask: int = ALL_FILTER,
        cache: QueryCache | None = None,
    ):
        super().__init__(rad, checker, filter_mask, cache)
        self._vars0 = np.asarray(vars0, dtype=int).ravel()
        self._vars1 = np.asarray(vars1, dtype=int).ravel()
        for name, v in (("vars0", self._vars0), ("vars1", self._vars1)):
            if len(v) != rad.dof:
                raise ValueError(
                    f"Expected {rad.dof} variables in {name}, got {len(v)}"
                )

    @property
    def vars(self) -> np.ndarray:
        return np.concatenate([self._vars0, self._vars1])

    def calc_collisions(self, x: np.ndarray) -> list[Contact]:
        x = np.asarray(x, dtype=np.float64)
        self.rad.set_dof_values(x[self._vars0])
        poses0 = self.rad.link_poses()
        self.rad.set_dof_values(x[self._vars1])
        poses1 = self.rad.link_poses()
        return self.checker.check_swept(poses0, poses1, self.filter_mask)

    def calc_dist_expressions(self, x):
        x = np.asarray(x, dtype=np.float64)
        contacts = self._robot_contacts(x)
        dofvals0 = x[self._vars0]
        dofvals1 = x[self._vars1]

        self.rad.set_dof_values(dofvals0)
        exprs0 = [
            self._linearize(c, self._vars0, dofvals0, end=False)
            for c in contacts
        ]
        self.rad.set_dof_values(dofvals1)
        exprs1 = [
            self._linearize(c, self._vars1, dofvals1, end=True)
            for c in contacts
        ]

        exprs = [
            (e0 * (1.0 - c.time) + e1 * c.time).cleanup()
            for c, e0, e1 in zip(contacts, exprs0, exprs1)
        ]
        logger.debug(
            "cast linearization: %d contacts over vars %s -> %s",
            len(exprs), self._vars0.tolist(), self._vars1.tolist(),
        )
        return exprs, pair_weights(contacts)
