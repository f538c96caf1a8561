"""Contact records produced by the collision checker."""

from dataclasses import dataclass, fields
from enum import Enum

import numpy as np


class CastPhase(Enum):
    """Where along a swept motion a contact was found."""

    TIME0 = "time0"
    TIME1 = "time1"
    BETWEEN = "between"

    @classmethod
    def from_time(cls, t: float) -> "CastPhase":
        if t <= 0.0:
            return cls.TIME0
        if t >= 1.0:
            return cls.TIME1
        return cls.BETWEEN


def _field_equal(a, b) -> bool:
    if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
        if a is None or b is None:
            return False
        return np.array_equal(a, b)
    return a == b


@dataclass(frozen=True, eq=False)
class Contact:
    """A near-contact or penetration between a robot link and another body.

    Contacts compare field by field, arrays by exact value. They are not
    hashable since the witness points and normal are numpy arrays.

    Attributes:
        link_a: Robot link on the A side.
        link_b: Robot link or obstacle name on the B side.
        point_a: Witness point on A at the start pose (or the only pose) (3,).
        point_b: Witness point on B at the start pose (or the only pose) (3,).
        normal_b2a: Unit contact normal pointing from B to A (3,).
        distance: Signed distance [m], negative when penetrating.
        time: Interpolation fraction of closest approach for swept checks.
        phase: TIME0, TIME1 or BETWEEN, derived from *time*.
        point_a1: Witness point on A at the end pose, None for discrete checks.
        point_b1: Witness point on B at the end pose, None for discrete checks.
    """

    link_a: str
    link_b: str
    point_a: np.ndarray
    point_b: np.ndarray
    normal_b2a: np.ndarray
    distance: float
    time: float = 0.0
    phase: CastPhase = CastPhase.TIME0
    point_a1: np.ndarray | None = None
    point_b1: np.ndarray | None = None

    def __eq__(self, other):
        if not isinstance(other, Contact):
            return NotImplemented
        return all(
            _field_equal(getattr(self, f.name), getattr(other, f.name))
            for f in fields(self)
        )

    __hash__ = None

    @property
    def pair(self) -> tuple[str, str]:
        return self.link_a, self.link_b

    def witness_a(self, end: bool = False) -> np.ndarray:
        """Witness point on A at the start (or end) pose."""
        if end and self.point_a1 is not None:
            return self.point_a1
        return self.point_a

    def witness_b(self, end: bool = False) -> np.ndarray:
        """Witness point on B at the start (or end) pose."""
        if end and self.point_b1 is not None:
            return self.point_b1
        return self.point_b
