"""Sphere-based collision checker for robot links.

Robot links are approximated by spheres attached to link frames, which
keeps distance queries cheap enough to run at every solver iteration.
Two queries are provided:

1. Discrete: contacts at a single set of link poses.
2. Swept: contacts anywhere along the motion between two sets of link
   poses. Each sphere center moves linearly from its start to its end
   position, and every candidate pair is reported at its time of closest
   approach, so thin obstacles between two waypoints are not missed.

The following pairs are checked:
1. Link sphere vs obstacle, for obstacles whose group passes the filter mask.
2. Link sphere vs link sphere, for configured self-collision link pairs
   when the mask includes ROBOT_FILTER.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Mapping

import numpy as np
from scipy.optimize import minimize_scalar
from scipy.spatial.transform import Rotation

from .contact import CastPhase, Contact
from .geometry import (
    EPS,
    closest_time_on_segment,
    point_box_distance,
    point_halfspace_distance,
    point_sphere_distance,
)

logger = logging.getLogger(__name__)

# Filter mask bits
STATIC_FILTER = 1
ROBOT_FILTER = 2
ALL_FILTER = -1


@dataclass
class LinkSphere:
    """Collision sphere rigidly attached to a robot link.

    Attributes:
        link: Link name.
        radius: Sphere radius [m].
        offset: Sphere center in the link frame (3,) [m].
    """

    link: str
    radius: float
    offset: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.offset = np.asarray(self.offset, dtype=np.float64).ravel()
        if self.radius < 0:
            raise ValueError(f"Negative radius for sphere on '{self.link}'")

    def center(self, pose: np.ndarray) -> np.ndarray:
        """World position of the center for a 4x4 link pose."""
        return pose[:3, :3] @ self.offset + pose[:3, 3]


class Obstacle(ABC):
    """Static obstacle interface.

    Subclasses provide ``name``, ``group`` and ``point_distance``.
    """

    name: str
    group: int

    @abstractmethod
    def point_distance(
        self, point: np.ndarray,
    ) -> tuple[float, np.ndarray, np.ndarray]:
        """(signed distance, outward normal, closest surface point)."""

    def closest_time(self, p0: np.ndarray, p1: np.ndarray) -> float:
        """Fraction of closest approach for a point moving from p0 to p1.

        The signed distance to a convex obstacle is convex along a line,
        so a bounded scalar search finds the global minimum. Both endpoints
        are compared as well, earlier times winning ties.
        """
        d = p1 - p0
        if float(np.dot(d, d)) <= EPS:
            return 0.0

        def dist_at(t: float) -> float:
            return self.point_distance(p0 + t * d)[0]

        res = minimize_scalar(dist_at, bounds=(0.0, 1.0), method="bounded")
        # min keeps the first of equal candidates
        return min([0.0, float(res.x), 1.0], key=dist_at)


@dataclass
class SphereObstacle(Obstacle):
    name: str
    center: np.ndarray
    radius: float
    group: int = STATIC_FILTER

    def __post_init__(self):
        self.center = np.asarray(self.center, dtype=np.float64).ravel()

    def point_distance(self, point):
        return point_sphere_distance(point, self.center, self.radius)

    def closest_time(self, p0, p1):
        return closest_time_on_segment(p0, p1, self.center)


@dataclass
class BoxObstacle(Obstacle):
    """Oriented box.

    Attributes:
        name: Obstacle name, used as the B side of contacts.
        center: Box center in world frame (3,) [m].
        half_extents: Half side lengths (3,) [m].
        rotation: Box orientation (3, 3).
        group: Filter group bits.
    """

    name: str
    center: np.ndarray
    half_extents: np.ndarray
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    group: int = STATIC_FILTER

    def __post_init__(self):
        self.center = np.asarray(self.center, dtype=np.float64).ravel()
        self.half_extents = np.asarray(
            self.half_extents, dtype=np.float64,
        ).ravel()
        self.rotation = np.asarray(self.rotation, dtype=np.float64)

    @classmethod
    def from_rpy(
        cls,
        name: str,
        center: np.ndarray,
        half_extents: np.ndarray,
        rpy: tuple[float, float, float],
        group: int = STATIC_FILTER,
    ) -> "BoxObstacle":
        """Create a box from roll-pitch-yaw angles [rad]."""
        rotation = Rotation.from_euler("xyz", rpy).as_matrix()
        return cls(name, center, half_extents, rotation, group)

    def point_distance(self, point):
        return point_box_distance(
            point, self.center, self.rotation, self.half_extents,
        )


@dataclass
class HalfSpaceObstacle(Obstacle):
    """Everything below the plane normal . p = offset (e.g. the ground)."""

    name: str
    normal: np.ndarray = field(
        default_factory=lambda: np.array([0.0, 0.0, 1.0])
    )
    offset: float = 0.0
    group: int = STATIC_FILTER

    def __post_init__(self):
        normal = np.asarray(self.normal, dtype=np.float64).ravel()
        norm = float(np.linalg.norm(normal))
        if norm <= EPS:
            raise ValueError(f"Zero normal for half-space '{self.name}'")
        self.normal = normal / norm

    def point_distance(self, point):
        return point_halfspace_distance(point, self.normal, self.offset)

    def closest_time(self, p0, p1):
        # Distance is linear along the segment
        return 0.0 if np.dot(self.normal, p1 - p0) >= 0.0 else 1.0


@dataclass
class CollisionConfig:
    """Configuration for sphere-based collision checking.

    Attributes:
        contact_distance: Pairs closer than this are reported [m].
        link_spheres: Collision spheres of the robot links.
        self_collision_pairs: Link pairs checked against each other.
    """

    contact_distance: float = 0.05
    link_spheres: list[LinkSphere] = field(default_factory=list)
    self_collision_pairs: list[tuple[str, str]] = field(default_factory=list)


class CollisionChecker:
    """Discrete and swept collision checks between link spheres and obstacles.

    Link poses are passed in as a mapping from link name to a 4x4
    homogeneous transform, as produced by a Configuration.
    """

    def __init__(
        self,
        config: CollisionConfig | None = None,
        obstacles: Iterable[Obstacle] = (),
    ):
        """Initialize collision checker.

        Args:
            config: Collision configuration. Uses defaults if None.
            obstacles: Initial static obstacles.
        """
        self.config = config or CollisionConfig()
        self.obstacles: dict[str, Obstacle] = {}
        for obstacle in obstacles:
            self.add_obstacle(obstacle)

    @property
    def contact_distance(self) -> float:
        return self.config.contact_distance

    def set_contact_distance(self, distance: float) -> None:
        self.config.contact_distance = float(distance)

    def add_obstacle(self, obstacle: Obstacle) -> None:
        if obstacle.name in self.obstacles:
            raise ValueError(f"Duplicate obstacle name '{obstacle.name}'")
        self.obstacles[obstacle.name] = obstacle

    def remove_obstacle(self, name: str) -> None:
        del self.obstacles[name]

    def _sphere_centers(
        self, link_poses: Mapping[str, np.ndarray],
    ) -> list[np.ndarray]:
        centers = []
        for sphere in self.config.link_spheres:
            if sphere.link not in link_poses:
                raise ValueError(f"No pose given for link '{sphere.link}'")
            pose = np.asarray(link_poses[sphere.link], dtype=np.float64)
            if pose.shape != (4, 4) or not np.all(np.isfinite(pose)):
                raise ValueError(f"Invalid pose for link '{sphere.link}'")
            centers.append(sphere.center(pose))
        return centers

    def _active_obstacles(self, filter_mask: int) -> list[Obstacle]:
        return [o for o in self.obstacles.values() if o.group & filter_mask]

    def _self_sphere_pairs(self, filter_mask: int) -> list[tuple[int, int]]:
        """Index pairs into link_spheres for the configured link pairs."""
        if not filter_mask & ROBOT_FILTER:
            return []
        spheres = self.config.link_spheres
        pairs = []
        for link_a, link_b in self.config.self_collision_pairs:
            for i, sa in enumerate(spheres):
                if sa.link != link_a:
                    continue
                for j, sb in enumerate(spheres):
                    if sb.link == link_b:
                        pairs.append((i, j))
        return pairs

    def check_discrete(
        self,
        link_poses: Mapping[str, np.ndarray],
        filter_mask: int = ALL_FILTER,
    ) -> list[Contact]:
        """Find all contacts closer than the contact distance at one pose.

        Args:
            link_poses: Link name -> 4x4 world pose.
            filter_mask: Obstacle group bits to include.

        Returns:
            Contacts, link spheres in configuration order.
        """
        spheres = self.config.link_spheres
        centers = self._sphere_centers(link_poses)
        cutoff = self.config.contact_distance
        contacts = []

        # 1. Link spheres vs obstacles
        for sphere, c in zip(spheres, centers):
            for obstacle in self._active_obstacles(filter_mask):
                dist, normal, point_b = obstacle.point_distance(c)
                dist -= sphere.radius
                if dist < cutoff:
                    contacts.append(Contact(
                        link_a=sphere.link,
                        link_b=obstacle.name,
                        point_a=c - sphere.radius * normal,
                        point_b=point_b,
                        normal_b2a=normal,
                        distance=dist,
                    ))

        # 2. Self-collision
        for i, j in self._self_sphere_pairs(filter_mask):
            sa, sb = spheres[i], spheres[j]
            dist, normal, _ = point_sphere_distance(
                centers[i], centers[j], sb.radius,
            )
            dist -= sa.radius
            if dist < cutoff:
                contacts.append(Contact(
                    link_a=sa.link,
                    link_b=sb.link,
                    point_a=centers[i] - sa.radius * normal,
                    point_b=centers[j] + sb.radius * normal,
                    normal_b2a=normal,
                    distance=dist,
                ))

        logger.debug("discrete check: %d contacts", len(contacts))
        return contacts

    def check_swept(
        self,
        link_poses0: Mapping[str, np.ndarray],
        link_poses1: Mapping[str, np.ndarray],
        filter_mask: int = ALL_FILTER,
    ) -> list[Contact]:
        """Find contacts along the motion from one set of poses to another.

        Args:
            link_poses0: Link poses at the start of the segment.
            link_poses1: Link poses at the end of the segment.
            filter_mask: Obstacle group bits to include.

        Returns:
            Contacts at their time of closest approach, with witness
            points at both endpoints.
        """
        spheres = self.config.link_spheres
        centers0 = self._sphere_centers(link_poses0)
        centers1 = self._sphere_centers(link_poses1)
        cutoff = self.config.contact_distance
        contacts = []

        # 1. Swept link spheres vs obstacles
        for sphere, c0, c1 in zip(spheres, centers0, centers1):
            for obstacle in self._active_obstacles(filter_mask):
                t = obstacle.closest_time(c0, c1)
                dist, normal, point_b = obstacle.point_distance(
                    c0 + t * (c1 - c0),
                )
                dist -= sphere.radius
                if dist < cutoff:
                    contacts.append(Contact(
                        link_a=sphere.link,
                        link_b=obstacle.name,
                        point_a=c0 - sphere.radius * normal,
                        point_b=point_b,
                        normal_b2a=normal,
                        distance=dist,
                        time=t,
                        phase=CastPhase.from_time(t),
                        point_a1=c1 - sphere.radius * normal,
                        point_b1=point_b,
                    ))

        # 2. Self-collision, closest approach of the relative motion
        for i, j in self._self_sphere_pairs(filter_mask):
            sa, sb = spheres[i], spheres[j]
            t = closest_time_on_segment(
                centers0[i] - centers0[j],
                centers1[i] - centers1[j],
                np.zeros(3),
            )
            ca = centers0[i] + t * (centers1[i] - centers0[i])
            cb = centers0[j] + t * (centers1[j] - centers0[j])
            dist, normal, _ = point_sphere_distance(ca, cb, sb.radius)
            dist -= sa.radius
            if dist < cutoff:
                contacts.append(Contact(
                    link_a=sa.link,
                    link_b=sb.link,
                    point_a=centers0[i] - sa.radius * normal,
                    point_b=centers0[j] + sb.radius * normal,
                    normal_b2a=normal,
                    distance=dist,
                    time=t,
                    phase=CastPhase.from_time(t),
                    point_a1=centers1[i] - sa.radius * normal,
                    point_b1=centers1[j] + sb.radius * normal,
                ))

        logger.debug("swept check: %d contacts", len(contacts))
        return contacts
