# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Binary observation edges and their linearization.

Every edge relates two vertices (endpoint 0 = "Xi", endpoint 1 = "Xj") through
a measurement and computes an error vector of fixed size ``DIMENSION``. Its
linearization is the pair of Jacobian blocks

    J_i = ∂e(Xi ⊕ δi, Xj) / ∂δi |δi=0        (DIMENSION × Xi.DIMENSION)
    J_j = ∂e(Xi, Xj ⊕ δj) / ∂δj |δj=0        (DIMENSION × Xj.DIMENSION)

taken with respect to the local increment of each vertex. The blocks are not
allocated by the edge: they are column-major views into a
`JacobianWorkspace` bound by the caller.

Two linearization paths write into the same layout:

    linearize_oplus(workspace)
        Binds ``workspace`` and evaluates the closed-form Jacobians
        implemented by the edge type.

    numeric_linearize_oplus()
        Central differences into the currently bound workspace:

            J[:, d] = (e(x ⊕ +h·u_d) − e(x ⊕ −h·u_d)) / 2h

        Each perturbation goes through the vertex ``push / oplus / pop``
        cycle, so only the vertex increment is needed.

Edge types
----------
EdgeSE3
    Pose-pose constraint. With measurement Z:

        E = Z⁻¹ · (Xi⁻¹ · Xj),    e = [t(E), q(R(E))]   (6-vector)

    where q is the half-sphere quaternion chart of `slam.quaternion_chart`.

EdgePointXYZ
    Point-point constraint:

        e = (Xj − Xi) − z   (3-vector)

Preconditions (bound vertices of the declared types, a measurement and, for
either linearization path, a bound workspace) are checked on every call and
raise immediately.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Type

import numpy as np

from edgelin.core.math3d import hat, isometry_inverse, split_isometry
from edgelin.core.types import BlockShape
from edgelin.optimization.jacobian_workspace import JacobianWorkspace
from edgelin.slam.quaternion_chart import (
    from_vector_qt,
    quaternion_chart,
    to_vector_mqt,
    to_vector_qt,
)
from edgelin.slam.vertices import BaseVertex, VertexPointXYZ, VertexSE3


@dataclass
class NumericDiffConfig:
    """Step of the central-difference linearization."""
    delta: float = 1e-6


class BaseBinaryEdge(ABC):
    """
    Edge between two vertices with analytic and numeric linearization.

    Subclasses set the class constants and implement `_error`,
    `_linearize_analytic`, `_validate_measurement` and `initial_estimate`.
    """

    DIMENSION: int = 0
    MEASUREMENT: str = ""
    VERTEX_XI_TYPE: Type[BaseVertex] = BaseVertex
    VERTEX_XJ_TYPE: Type[BaseVertex] = BaseVertex

    def __init__(self, numeric_diff: Optional[NumericDiffConfig] = None) -> None:
        self._vertices: List[Optional[BaseVertex]] = [None, None]
        self._measurement: Optional[np.ndarray] = None
        self.information = np.eye(self.DIMENSION)
        self.numeric_diff = numeric_diff or NumericDiffConfig()
        self.error: Optional[np.ndarray] = None
        self._jacobian_xi: Optional[np.ndarray] = None
        self._jacobian_xj: Optional[np.ndarray] = None

    # --- Structure ---

    @classmethod
    def vertex_dimensions(cls) -> Tuple[int, int]:
        return cls.VERTEX_XI_TYPE.DIMENSION, cls.VERTEX_XJ_TYPE.DIMENSION

    @classmethod
    def block_shapes(cls) -> Tuple[BlockShape, BlockShape]:
        di, dj = cls.vertex_dimensions()
        return BlockShape(cls.DIMENSION, di), BlockShape(cls.DIMENSION, dj)

    def set_vertex(self, slot: int, vertex: BaseVertex) -> None:
        if slot not in (0, 1):
            raise IndexError(f"Binary edge has slots 0 and 1, got {slot}")
        expected = self.VERTEX_XI_TYPE if slot == 0 else self.VERTEX_XJ_TYPE
        if not isinstance(vertex, expected):
            raise TypeError(
                f"{type(self).__name__} slot {slot} expects {expected.__name__}, "
                f"got {type(vertex).__name__}"
            )
        self._vertices[slot] = vertex

    def vertex(self, slot: int) -> BaseVertex:
        if slot not in (0, 1):
            raise IndexError(f"Binary edge has slots 0 and 1, got {slot}")
        v = self._vertices[slot]
        if v is None:
            raise RuntimeError(f"{type(self).__name__}: vertex slot {slot} is not bound")
        return v

    # --- Measurement and information ---

    @property
    def measurement(self) -> np.ndarray:
        if self._measurement is None:
            raise RuntimeError(f"{type(self).__name__}: measurement is not set")
        return self._measurement

    def set_measurement(self, value: Any) -> None:
        self._measurement = self._validate_measurement(np.array(value, dtype=float))

    def set_information(self, matrix: Any) -> None:
        matrix = np.array(matrix, dtype=float)
        if matrix.shape != (self.DIMENSION, self.DIMENSION):
            raise ValueError(
                f"{type(self).__name__} information must be "
                f"{self.DIMENSION}x{self.DIMENSION}, got shape {matrix.shape}"
            )
        self.information = matrix

    # --- Error ---

    def compute_error(self) -> np.ndarray:
        self._check_ready()
        self.error = self._error()
        return self.error

    def chi2(self) -> float:
        e = self.compute_error()
        return float(e @ self.information @ e)

    # --- Linearization ---

    @property
    def jacobian_oplus_xi(self) -> np.ndarray:
        if self._jacobian_xi is None:
            raise RuntimeError(f"{type(self).__name__}: no Jacobian workspace bound")
        return self._jacobian_xi

    @property
    def jacobian_oplus_xj(self) -> np.ndarray:
        if self._jacobian_xj is None:
            raise RuntimeError(f"{type(self).__name__}: no Jacobian workspace bound")
        return self._jacobian_xj

    def bind_workspace(self, workspace: JacobianWorkspace) -> None:
        """Point the Jacobian blocks at ``workspace`` (column-major views)."""
        blocks = []
        for slot, shape in enumerate(self.block_shapes()):
            raw = workspace.workspace_for_vertex(slot)
            if raw.size < shape.size:
                raise RuntimeError(
                    f"{type(self).__name__}: workspace slot {slot} holds {raw.size} entries, "
                    f"block needs {shape.size}; call update_size() for this edge"
                )
            blocks.append(raw[:shape.size].reshape((shape.rows, shape.cols), order="F"))
        self._jacobian_xi, self._jacobian_xj = blocks

    def linearize_oplus(self, workspace: JacobianWorkspace) -> None:
        """Analytic Jacobians of the error, written into ``workspace``."""
        self.bind_workspace(workspace)
        self._check_ready()
        self._linearize_analytic()

    def numeric_linearize_oplus(self) -> None:
        """Central-difference Jacobians, written into the bound workspace."""
        blocks = (self.jacobian_oplus_xi, self.jacobian_oplus_xj)
        self._check_ready()

        h = self.numeric_diff.delta
        scalar = 1.0 / (2.0 * h)
        for slot, jac in enumerate(blocks):
            vertex = self._vertices[slot]
            step = np.zeros(vertex.DIMENSION)
            for d in range(vertex.DIMENSION):
                step[d] = h
                vertex.push()
                vertex.oplus(step)
                e_plus = self._error()
                vertex.pop()

                step[d] = -h
                vertex.push()
                vertex.oplus(step)
                e_minus = self._error()
                vertex.pop()

                step[d] = 0.0
                jac[:, d] = scalar * (e_plus - e_minus)

    # --- Hooks ---

    @abstractmethod
    def _validate_measurement(self, value: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def _error(self) -> np.ndarray:
        """Error at the current estimates; preconditions already checked."""

    @abstractmethod
    def _linearize_analytic(self) -> None:
        """Fill ``jacobian_oplus_xi`` / ``jacobian_oplus_xj`` in closed form."""

    @abstractmethod
    def initial_estimate(self, fixed_slot: int) -> None:
        """Set the other endpoint's estimate from ``fixed_slot`` and the measurement."""

    def _check_ready(self) -> None:
        for slot in (0, 1):
            self.vertex(slot)
        if self._measurement is None:
            raise RuntimeError(f"{type(self).__name__}: measurement is not set")


# hat(e_k) for the canonical basis vectors
_GENERATORS = tuple(hat(e) for e in np.eye(3))


class EdgeSE3(BaseBinaryEdge):
    """Relative pose constraint between two `VertexSE3`."""

    DIMENSION = 6
    MEASUREMENT = "Isometry3"
    VERTEX_XI_TYPE = VertexSE3
    VERTEX_XJ_TYPE = VertexSE3

    def __init__(self, numeric_diff: Optional[NumericDiffConfig] = None) -> None:
        super().__init__(numeric_diff)
        self._inverse_measurement: Optional[np.ndarray] = None

    def _validate_measurement(self, value: np.ndarray) -> np.ndarray:
        if value.shape != (4, 4):
            raise ValueError(f"EdgeSE3 measurement must be a 4x4 isometry, got shape {value.shape}")
        return value

    def set_measurement(self, value: Any) -> None:
        super().set_measurement(value)
        self._inverse_measurement = isometry_inverse(self._measurement)

    def set_measurement_data(self, v: Any) -> None:
        """Set the measurement from ``[tx, ty, tz, qx, qy, qz, qw]``."""
        self.set_measurement(from_vector_qt(v))

    def get_measurement_data(self) -> np.ndarray:
        return to_vector_qt(self.measurement)

    def _error(self) -> np.ndarray:
        Xi = self._vertices[0].estimate
        Xj = self._vertices[1].estimate
        delta = self._inverse_measurement @ isometry_inverse(Xi) @ Xj
        return to_vector_mqt(delta)

    def _linearize_analytic(self) -> None:
        # E = A · D_i⁻¹ · B with A = Z⁻¹, B = Xi⁻¹ Xj; right perturbation
        # D(δ) = [R(q), t] ≈ [I + 2 hat(q), t].
        A = self._inverse_measurement
        B = isometry_inverse(self._vertices[0].estimate) @ self._vertices[1].estimate
        E = A @ B
        Ra, _ = split_isometry(A)
        Rb, tb = split_isometry(B)
        Re, _ = split_isometry(E)
        dq_dR = quaternion_chart(Re).dq_dR

        Ji = self.jacobian_oplus_xi
        Ji[...] = 0.0
        Ji[0:3, 0:3] = -Ra
        Ji[0:3, 3:6] = 2.0 * Ra @ hat(tb)
        for k, G in enumerate(_GENERATORS):
            dR = -2.0 * Ra @ G @ Rb
            Ji[3:6, 3 + k] = dq_dR @ dR.ravel(order="F")

        Jj = self.jacobian_oplus_xj
        Jj[...] = 0.0
        Jj[0:3, 0:3] = Re
        for k, G in enumerate(_GENERATORS):
            dR = 2.0 * Re @ G
            Jj[3:6, 3 + k] = dq_dR @ dR.ravel(order="F")

    def initial_estimate(self, fixed_slot: int) -> None:
        vi, vj = self.vertex(0), self.vertex(1)
        if fixed_slot == 0:
            vj.set_estimate(vi.estimate @ self.measurement)
        elif fixed_slot == 1:
            vi.set_estimate(vj.estimate @ self._inverse_measurement)
        else:
            raise IndexError(f"Binary edge has slots 0 and 1, got {fixed_slot}")


class EdgePointXYZ(BaseBinaryEdge):
    """Offset constraint between two `VertexPointXYZ`."""

    DIMENSION = 3
    MEASUREMENT = "Vector3"
    VERTEX_XI_TYPE = VertexPointXYZ
    VERTEX_XJ_TYPE = VertexPointXYZ

    def _validate_measurement(self, value: np.ndarray) -> np.ndarray:
        if value.shape != (3,):
            raise ValueError(f"EdgePointXYZ measurement must be a 3-vector, got shape {value.shape}")
        return value

    def set_measurement_data(self, v: Any) -> None:
        self.set_measurement(v)

    def get_measurement_data(self) -> np.ndarray:
        return self.measurement.copy()

    def _error(self) -> np.ndarray:
        return (self._vertices[1].estimate - self._vertices[0].estimate) - self._measurement

    def _linearize_analytic(self) -> None:
        self.jacobian_oplus_xi[...] = -np.eye(3)
        self.jacobian_oplus_xj[...] = np.eye(3)

    def initial_estimate(self, fixed_slot: int) -> None:
        vi, vj = self.vertex(0), self.vertex(1)
        if fixed_slot == 0:
            vj.set_estimate(vi.estimate + self.measurement)
        elif fixed_slot == 1:
            vi.set_estimate(vj.estimate - self.measurement)
        else:
            raise IndexError(f"Binary edge has slots 0 and 1, got {fixed_slot}")
