"""Convex modeling vocabulary for sequential convex optimization.

Terms of the nonconvex problem produce, at every iterate, a convex
surrogate made of affine expressions, hinge penalties and inequality
constraints. The surrogates are built on top of a cvxpy variable vector
owned by a :class:`Model`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

import cvxpy as cp
import numpy as np


@dataclass
class AffExpr:
    """Affine function of the optimization variables.

    value(x) = constant + sum(coeffs[i] * x[i])
    """

    constant: float = 0.0
    coeffs: dict[int, float] = field(default_factory=dict)

    @classmethod
    def linear(
        cls,
        vars: Sequence[int],
        coeffs: Sequence[float],
        constant: float = 0.0,
    ) -> "AffExpr":
        """Build constant + coeffs . x[vars], summing repeated indices."""
        out = cls(float(constant))
        for i, c in zip(vars, coeffs):
            out.coeffs[int(i)] = out.coeffs.get(int(i), 0.0) + float(c)
        return out

    def value(self, x: np.ndarray) -> float:
        x = np.asarray(x, dtype=np.float64)
        return self.constant + sum(c * x[i] for i, c in self.coeffs.items())

    def cleanup(self) -> "AffExpr":
        """Copy without zero coefficients."""
        return AffExpr(
            self.constant,
            {i: c for i, c in self.coeffs.items() if c != 0.0},
        )

    def __add__(self, other):
        if isinstance(other, AffExpr):
            out = AffExpr(self.constant + other.constant, dict(self.coeffs))
            for i, c in other.coeffs.items():
                out.coeffs[i] = out.coeffs.get(i, 0.0) + c
            return out
        return AffExpr(self.constant + float(other), dict(self.coeffs))

    __radd__ = __add__

    def __neg__(self):
        return self * -1.0

    def __sub__(self, other):
        return self + (-other)

    def __rsub__(self, other):
        return (-self) + other

    def __mul__(self, scale):
        scale = float(scale)
        return AffExpr(
            self.constant * scale,
            {i: c * scale for i, c in self.coeffs.items()},
        )

    __rmul__ = __mul__


class Model:
    """Owns the cvxpy variable vector of one optimization problem."""

    def __init__(self, n_vars: int, name: str = "x"):
        if n_vars <= 0:
            raise ValueError(f"n_vars must be positive, got {n_vars}")
        self.n_vars = n_vars
        self.x = cp.Variable(n_vars, name=name)

    def to_cvxpy(self, aff: AffExpr) -> cp.Expression:
        """Convert an AffExpr into a cvxpy expression over ``self.x``."""
        if not aff.coeffs:
            return cp.Constant(aff.constant)
        idx = np.fromiter(aff.coeffs.keys(), dtype=int)
        if idx.min() < 0 or idx.max() >= self.n_vars:
            raise ValueError(
                f"Variable index out of range for model of size {self.n_vars}"
            )
        coeffs = np.fromiter(aff.coeffs.values(), dtype=np.float64)
        return self.x[idx] @ coeffs + aff.constant


class ConvexObjective:
    """Sum of convex penalty terms built at one linearization point."""

    def __init__(self, model: Model):
        self.model = model
        self._hinges: list[tuple[AffExpr, float]] = []

    def add_hinge(self, aff: AffExpr, coeff: float) -> None:
        """Add coeff * max(0, aff). Requires coeff >= 0."""
        if coeff < 0:
            raise ValueError(f"Hinge coefficient must be >= 0, got {coeff}")
        self._hinges.append((aff, float(coeff)))

    def __len__(self) -> int:
        return len(self._hinges)

    def expr(self) -> cp.Expression:
        if not self._hinges:
            return cp.Constant(0.0)
        return cp.sum(cp.hstack([
            coeff * cp.pos(self.model.to_cvxpy(aff))
            for aff, coeff in self._hinges
        ]))

    def value(self, x: np.ndarray) -> float:
        """Value of the surrogate at x, without going through cvxpy."""
        return float(sum(
            coeff * max(0.0, aff.value(x)) for aff, coeff in self._hinges
        ))


class ConvexConstraints:
    """Affine inequality constraints aff <= 0 built at one linearization point."""

    def __init__(self, model: Model):
        self.model = model
        self.ineqs: list[AffExpr] = []

    def add_ineq(self, aff: AffExpr) -> None:
        self.ineqs.append(aff)

    def __len__(self) -> int:
        return len(self.ineqs)

    def constraints(self) -> list[cp.Constraint]:
        return [self.model.to_cvxpy(aff) <= 0 for aff in self.ineqs]

    def violations(self, x: np.ndarray) -> np.ndarray:
        return np.array(
            [max(0.0, aff.value(x)) for aff in self.ineqs], dtype=np.float64,
        )


class Cost(ABC):
    """Nonconvex cost term of a sequential convex program."""

    def __init__(self, name: str = "cost"):
        self.name = name

    @abstractmethod
    def value(self, x: np.ndarray) -> float:
        """Exact cost at x, used for merit evaluation."""

    @abstractmethod
    def convex(self, x: np.ndarray, model: Model) -> ConvexObjective:
        """Convex approximation around x."""


class IneqConstraint(ABC):
    """Nonconvex inequality constraint g(x) <= 0 of a sequential convex program."""

    def __init__(self, name: str = "constraint"):
        self.name = name

    @abstractmethod
    def value(self, x: np.ndarray) -> np.ndarray:
        """Exact constraint values at x."""

    @abstractmethod
    def convex(self, x: np.ndarray, model: Model) -> ConvexConstraints:
        """Convex approximation around x."""

    def violations(self, x: np.ndarray) -> np.ndarray:
        return np.maximum(self.value(x), 0.0)
