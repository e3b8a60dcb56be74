# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Rotation-matrix → quaternion chart and its analytic derivative.

SE(3) edges in EdgeLin express the rotational part of their error as the
vector part ``(qx, qy, qz)`` of a unit quaternion whose real part is kept
non-negative (a half-sphere chart). The conversion from a 3×3 rotation matrix
uses the standard numerically stable extraction, which branches on the trace:

    trace(R) > 0
        t = sqrt(trace(R) + 1),  s = 0.5 / t
        q = s · [R21 − R12, R02 − R20, R10 − R01]

    otherwise, for the axis i with the largest diagonal entry
    (j = (i+1) % 3, k = (j+1) % 3)
        t = sqrt(R_ii − R_jj − R_kk + 1),  s = 0.5 / t
        q_i = 0.5 t
        q_j = (R_ji + R_ij) s
        q_k = (R_ki + R_ik) s
        w   = (R_kj − R_jk) s     (flip all of q when w < 0)

The derivative ``dq/dR`` is taken with respect to the 9 entries of R in
column-major order (entry ``R[r, c]`` is column ``r + 3 c`` of the 3×9
Jacobian). Each branch has its own closed form, so the value and the
derivative must agree on the branch. `quaternion_chart` computes both in a
single pass and tags the result with the branch it used; the public helpers
`quaternion_from_rotation` and `dquaternion_drotation` only unpack it.

Degenerate input (non-orthonormal R) is out of contract.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

import numpy as np

from edgelin.core.math3d import isometry, rotation_from_quaternion, split_isometry
from edgelin.core.types import Isometry3


class ChartBranch(enum.Enum):
    """Which case of the quaternion extraction handled a rotation matrix."""
    AXIS_X = 0
    AXIS_Y = 1
    AXIS_Z = 2
    TRACE = 3

    @property
    def axis(self) -> int:
        if self is ChartBranch.TRACE:
            raise ValueError("the trace branch has no pivot axis")
        return self.value


@dataclass(frozen=True)
class ChartResult:
    """Value and derivative of the chart at one rotation, with the branch used."""
    q: np.ndarray         # (3,)
    dq_dR: np.ndarray     # (3, 9), column-major w.r.t. R
    branch: ChartBranch
    w: float              # implied real part, >= 0


# (plus, minus) entries of R entering each component in the trace branch.
_TRACE_TERMS = (
    ((2, 1), (1, 2)),
    ((0, 2), (2, 0)),
    ((1, 0), (0, 1)),
)


def _vec_index(r: int, c: int) -> int:
    return r + 3 * c


def select_branch(R: np.ndarray) -> ChartBranch:
    """
    Pick the extraction case for ``R``.

    The pivot axis is chosen with strict comparisons in a fixed order
    (``R11 > R00`` first, then ``R22 > R_ii``), so ties resolve to the
    lower index.
    """
    if R[0, 0] + R[1, 1] + R[2, 2] > 0.0:
        return ChartBranch.TRACE
    i = 0
    if R[1, 1] > R[0, 0]:
        i = 1
    if R[2, 2] > R[i, i]:
        i = 2
    return ChartBranch(i)


def quaternion_chart(R: np.ndarray) -> ChartResult:
    """Compact quaternion of ``R`` together with its 3×9 derivative."""
    R = np.asarray(R, dtype=float)
    branch = select_branch(R)
    q = np.zeros(3)
    J = np.zeros((3, 9))

    if branch is ChartBranch.TRACE:
        t = np.sqrt(R[0, 0] + R[1, 1] + R[2, 2] + 1.0)
        s = 0.5 / t
        ds = -0.25 / (t * t * t)  # d s / d R_dd, same for every diagonal entry
        for m, (plus, minus) in enumerate(_TRACE_TERMS):
            diff = R[plus] - R[minus]
            q[m] = diff * s
            J[m, _vec_index(*plus)] += s
            J[m, _vec_index(*minus)] -= s
            for d in range(3):
                J[m, _vec_index(d, d)] += diff * ds
        return ChartResult(q=q, dq_dR=J, branch=branch, w=0.5 * t)

    i = branch.axis
    j = (i + 1) % 3
    k = (j + 1) % 3

    t = np.sqrt(R[i, i] - R[j, j] - R[k, k] + 1.0)
    s = 0.5 / t

    dt = np.zeros(9)
    dt[_vec_index(i, i)] = s
    dt[_vec_index(j, j)] = -s
    dt[_vec_index(k, k)] = -s
    ds = (-0.5 / (t * t)) * dt

    q[i] = 0.5 * t
    J[i] = 0.5 * dt

    sum_j = R[j, i] + R[i, j]
    q[j] = sum_j * s
    J[j] = sum_j * ds
    J[j, _vec_index(j, i)] += s
    J[j, _vec_index(i, j)] += s

    sum_k = R[k, i] + R[i, k]
    q[k] = sum_k * s
    J[k] = sum_k * ds
    J[k, _vec_index(k, i)] += s
    J[k, _vec_index(i, k)] += s

    w = (R[k, j] - R[j, k]) * s
    # half-sphere chart: the real part must be non-negative
    if w < 0.0:
        q = -q
        J = -J
        w = -w
    return ChartResult(q=q, dq_dR=J, branch=branch, w=float(w))


def quaternion_from_rotation(R: np.ndarray) -> np.ndarray:
    """Vector part of the unit quaternion of ``R`` with non-negative real part."""
    return quaternion_chart(R).q


def dquaternion_drotation(R: np.ndarray) -> np.ndarray:
    """3×9 derivative of `quaternion_from_rotation` w.r.t. column-major ``R``."""
    return quaternion_chart(R).dq_dR


def implied_real_part(q: np.ndarray) -> float:
    """Real part recovered from a compact quaternion, ``sqrt(1 - |q|²)``."""
    return float(np.sqrt(max(0.0, 1.0 - float(np.dot(q, q)))))


def to_vector_mqt(T: Isometry3) -> np.ndarray:
    """Isometry → 6-vector ``[tx, ty, tz, qx, qy, qz]`` on the half-sphere chart."""
    R, t = split_isometry(T)
    return np.concatenate([t, quaternion_from_rotation(R)])


def to_vector_qt(T: Isometry3) -> np.ndarray:
    """Isometry → 7-vector ``[tx, ty, tz, qx, qy, qz, qw]`` with ``qw >= 0``."""
    R, t = split_isometry(T)
    chart = quaternion_chart(R)
    return np.concatenate([t, chart.q, [chart.w]])


def from_vector_qt(v: np.ndarray) -> Isometry3:
    """7-vector ``[t, qx, qy, qz, qw]`` → isometry; the quaternion is normalized."""
    v = np.asarray(v, dtype=float)
    if v.shape != (7,):
        raise ValueError(f"Expected a 7-vector [t, qx, qy, qz, qw], got shape {v.shape}")
    quat = v[3:7]
    norm = np.linalg.norm(quat)
    if norm == 0.0:
        raise ValueError("Quaternion part of the vector has zero norm")
    qx, qy, qz, qw = quat / norm
    return isometry(rotation_from_quaternion(qx, qy, qz, qw), v[0:3])
