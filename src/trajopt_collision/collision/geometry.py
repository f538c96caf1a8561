"""Signed distance primitives for sphere-based collision checking.

All functions work on world-frame numpy vectors of shape (3,).
"""

import numpy as np

EPS = 1e-12

# Fallback normal when two centers coincide.
_DEFAULT_NORMAL = np.array([0.0, 0.0, 1.0])


def closest_time_on_segment(
    p0: np.ndarray, p1: np.ndarray, q: np.ndarray,
) -> float:
    """Fraction t in [0, 1] where p0 + t * (p1 - p0) is closest to q.

    A degenerate segment (p0 == p1) returns 0.
    """
    d = p1 - p0
    a = float(np.dot(d, d))
    if a <= EPS:
        return 0.0
    return float(np.clip(np.dot(q - p0, d) / a, 0.0, 1.0))


def point_sphere_distance(
    point: np.ndarray, center: np.ndarray, radius: float,
) -> tuple[float, np.ndarray, np.ndarray]:
    """Signed distance from a point to a sphere surface.

    Returns:
        (distance, outward normal at the closest surface point,
        closest surface point).
    """
    r = point - center
    norm = float(np.linalg.norm(r))
    normal = r / norm if norm > EPS else _DEFAULT_NORMAL.copy()
    return norm - radius, normal, center + radius * normal


def point_box_distance(
    point: np.ndarray,
    center: np.ndarray,
    rotation: np.ndarray,
    half_extents: np.ndarray,
) -> tuple[float, np.ndarray, np.ndarray]:
    """Signed distance from a point to an oriented box surface.

    Inside the box the distance is minus the depth to the nearest face.

    Returns:
        (distance, outward normal, closest surface point), world frame.
    """
    local = rotation.T @ (point - center)
    excess = np.abs(local) - half_extents

    if np.any(excess > 0.0):
        closest = np.clip(local, -half_extents, half_extents)
        r = local - closest
        norm = float(np.linalg.norm(r))
        normal_local = r / norm
        dist = norm
    else:
        # Inside: push out through the least penetrated face
        axis = int(np.argmax(excess))
        sign = 1.0 if local[axis] >= 0.0 else -1.0
        normal_local = np.zeros(3)
        normal_local[axis] = sign
        closest = local.copy()
        closest[axis] = sign * half_extents[axis]
        dist = float(excess[axis])

    return dist, rotation @ normal_local, rotation @ closest + center


def point_halfspace_distance(
    point: np.ndarray, normal: np.ndarray, offset: float,
) -> tuple[float, np.ndarray, np.ndarray]:
    """Signed distance from a point to the plane {p : normal . p = offset}.

    Points on the side the normal points to are outside (positive).

    Returns:
        (distance, normal, closest point on the plane).
    """
    dist = float(np.dot(normal, point)) - offset
    return dist, normal.copy(), point - dist * normal
