"""Shared pytest fixtures."""

import numpy as np
import pytest

from trajopt_collision import (
    CollisionChecker,
    CollisionConfig,
    LinkSphere,
    SphereObstacle,
)


class TranslatingRobot:
    """Two-link robot that translates rigidly with its 3 DOF values.

    ``base`` sits at q and ``tip`` at q + (0.5, 0, 0). Every point moves
    with q, so each point Jacobian is the identity.
    """

    TIP_OFFSET = np.array([0.5, 0.0, 0.0])

    def __init__(self):
        self._q = np.zeros(3)

    @property
    def links(self):
        return ["base", "tip"]

    @property
    def dof(self):
        return 3

    def set_dof_values(self, values):
        q = np.asarray(values, dtype=np.float64).ravel()
        if q.shape != (3,):
            raise ValueError(f"Expected 3 DOF values, got {q.shape[0]}")
        if not np.all(np.isfinite(q)):
            raise ValueError("Non-finite DOF values")
        self._q = q.copy()

    def get_dof_values(self):
        return self._q.copy()

    def link_poses(self):
        base = np.eye(4)
        base[:3, 3] = self._q
        tip = np.eye(4)
        tip[:3, 3] = self._q + self.TIP_OFFSET
        return {"base": base, "tip": tip}

    def point_jacobian(self, link, point):
        return np.eye(3)


class CountingChecker:
    """Forwards to a real checker, counts queries and records filter masks."""

    def __init__(self, checker):
        self.checker = checker
        self.n_discrete = 0
        self.n_swept = 0
        self.masks = []

    @property
    def contact_distance(self):
        return self.checker.contact_distance

    def set_contact_distance(self, distance):
        self.checker.set_contact_distance(distance)

    def check_discrete(self, link_poses, filter_mask):
        self.n_discrete += 1
        self.masks.append(filter_mask)
        return self.checker.check_discrete(link_poses, filter_mask)

    def check_swept(self, link_poses0, link_poses1, filter_mask):
        self.n_swept += 1
        self.masks.append(filter_mask)
        return self.checker.check_swept(link_poses0, link_poses1, filter_mask)


class FixedContactsChecker:
    """Backend that reports the same contacts for every query."""

    def __init__(self, contacts):
        self.contacts = list(contacts)

    def check_discrete(self, link_poses, filter_mask):
        return list(self.contacts)

    def check_swept(self, link_poses0, link_poses1, filter_mask):
        return list(self.contacts)


@pytest.fixture
def robot():
    """Translating two-link robot."""
    return TranslatingRobot()


@pytest.fixture
def ball_checker():
    """One sphere per link, a ball obstacle of radius 0.2 at the origin."""
    config = CollisionConfig(
        contact_distance=0.1,
        link_spheres=[
            LinkSphere("base", 0.1),
            LinkSphere("tip", 0.05),
        ],
    )
    return CollisionChecker(
        config, obstacles=[SphereObstacle("ball", np.zeros(3), 0.2)],
    )


@pytest.fixture
def counting_checker(ball_checker):
    """ball_checker wrapped to count backend queries."""
    return CountingChecker(ball_checker)


@pytest.fixture
def fixed_checker():
    """Factory for a backend returning fixed contacts."""
    return FixedContactsChecker


# Filter group of moving obstacles in mixed_checker
DYNAMIC_FILTER = 4


@pytest.fixture
def mixed_checker():
    """Static ball at the origin plus a dynamic sphere at (0.35, 0.25, 0).

    With the robot at (0.35, 0, 0) the base is 5 cm from both.
    """
    config = CollisionConfig(
        contact_distance=0.1,
        link_spheres=[
            LinkSphere("base", 0.1),
            LinkSphere("tip", 0.05),
        ],
    )
    return CollisionChecker(
        config,
        obstacles=[
            SphereObstacle("ball", np.zeros(3), 0.2),
            SphereObstacle(
                "drone", [0.35, 0.25, 0.0], 0.1, group=DYNAMIC_FILTER,
            ),
        ],
    )


@pytest.fixture
def counting_mixed_checker(mixed_checker):
    """mixed_checker wrapped to record backend queries."""
    return CountingChecker(mixed_checker)
