"""Robot configurations: variable values to link poses and Jacobians."""

from typing import Protocol, Sequence

import numpy as np


class Configuration(Protocol):
    """Kinematic state bound to a subset of optimization variables.

    ``set_dof_values`` changes the pose that ``link_poses`` and
    ``point_jacobian`` refer to. It is not reentrant: one caller owns the
    configuration for the duration of a query.
    """

    @property
    def links(self) -> list[str]: ...

    @property
    def dof(self) -> int: ...

    def set_dof_values(self, values: np.ndarray) -> None: ...

    def get_dof_values(self) -> np.ndarray: ...

    def link_poses(self) -> dict[str, np.ndarray]: ...

    def point_jacobian(self, link: str, point: np.ndarray) -> np.ndarray: ...


class PinocchioConfiguration:
    """Configuration backed by a Pinocchio model.

    Each link is identified by the name of the joint that moves it; its
    pose is the joint placement ``data.oMi``.

    Usage:
        rad = PinocchioConfiguration.from_urdf("ur5e.urdf")
        rad.set_dof_values(q)
        J = rad.point_jacobian("wrist_3_joint", p)
    """

    def __init__(
        self,
        model,
        link_names: Sequence[str] | None = None,
    ):
        """Initialize configuration.

        Args:
            model: Pinocchio model. Must have nq == nv.
            link_names: Joint names to expose as links. Defaults to every
                joint except the universe.
        """
        import pinocchio as pin

        if model.nq != model.nv:
            raise ValueError(
                f"Only models with nq == nv are supported "
                f"(nq={model.nq}, nv={model.nv})"
            )

        self._pin = pin
        self.model = model
        self.data = model.createData()

        if link_names is None:
            link_names = [model.names[i] for i in range(1, model.njoints)]

        self._joint_ids: dict[str, int] = {}
        for name in link_names:
            if not model.existJointName(name):
                raise ValueError(f"Unknown joint '{name}'")
            self._joint_ids[name] = model.getJointId(name)

        self.set_dof_values(pin.neutral(model))

    @classmethod
    def from_urdf(
        cls,
        urdf_path: str,
        link_names: Sequence[str] | None = None,
    ) -> "PinocchioConfiguration":
        """Build a configuration from a URDF file."""
        import pinocchio as pin

        return cls(pin.buildModelFromUrdf(urdf_path), link_names)

    @property
    def links(self) -> list[str]:
        return list(self._joint_ids)

    @property
    def dof(self) -> int:
        return self.model.nq

    def set_dof_values(self, values: np.ndarray) -> None:
        """Set the joint configuration and update placements and Jacobians.

        Args:
            values: Joint configuration (nq,).
        """
        q = np.asarray(values, dtype=np.float64).ravel()
        if q.shape != (self.model.nq,):
            raise ValueError(
                f"Expected {self.model.nq} DOF values, got {q.shape[0]}"
            )
        if not np.all(np.isfinite(q)):
            raise ValueError("Non-finite DOF values")

        self._q = q.copy()
        self._pin.forwardKinematics(self.model, self.data, self._q)
        self._pin.computeJointJacobians(self.model, self.data, self._q)

    def get_dof_values(self) -> np.ndarray:
        return self._q.copy()

    def link_poses(self) -> dict[str, np.ndarray]:
        """World pose (4, 4) of every link at the current configuration."""
        return {
            name: self.data.oMi[jid].homogeneous.copy()
            for name, jid in self._joint_ids.items()
        }

    def point_jacobian(self, link: str, point: np.ndarray) -> np.ndarray:
        """Jacobian (3, nv) of a world point rigidly attached to *link*.

        Args:
            link: Link (joint) name.
            point: World position of the point at the current pose (3,).

        Returns:
            d(point)/dq in world coordinates.
        """
        jid = self._joint_ids[link]
        J = self._pin.getJointJacobian(
            self.model, self.data, jid,
            self._pin.ReferenceFrame.LOCAL_WORLD_ALIGNED,
        )
        r = np.asarray(point, dtype=np.float64) - self.data.oMi[jid].translation
        # v_p = v_o + w x r
        return J[:3, :] - self._pin.skew(r) @ J[3:, :]
