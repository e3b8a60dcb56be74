# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
SO(3) and SE(3) helpers for EdgeLin.

This module implements the small amount of rigid-body mathematics needed by
the vertices and edges:

    • Skew-symmetric (hat) operator and Rodrigues' formula
    • Homogeneous isometry construction, inversion and splitting
    • Unit quaternion → rotation matrix
    • Compact quaternion (vector part only) → rotation matrix
    • The "MQT" 6-vector [tx, ty, tz, qx, qy, qz] → isometry map used as the
      local parameterization of SE(3) vertices

Everything here is plain float64 NumPy: these functions run inside the
numeric-differentiation inner loop and the analytic Jacobian code, both of
which write into preallocated, mutable Jacobian workspaces.

The inverse direction (rotation matrix → quaternion) lives in
`slam.quaternion_chart`, because its branch structure is shared with the
analytic derivative of the chart.

Key Functions
-------------
hat(v)
    R^3 → 3×3 skew-symmetric matrix, ``hat(a) @ b == cross(a, b)``.

angle_axis_to_rotation(angle, axis)
    Rodrigues' formula for a unit axis.

so3_exp(w)
    Rotation vector → rotation matrix (small-angle fallback near zero).

isometry(R, t) / isometry_inverse(T)
    Build and invert 4×4 homogeneous transforms.

rotation_from_compact_quaternion(v)
    Rotation from the vector part of a unit quaternion with non-negative
    real part.

from_vector_mqt(v)
    [t, qx, qy, qz] → isometry; the SE(3) vertex increment.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from .types import Isometry3


def hat(v: np.ndarray) -> np.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = v[0], v[1], v[2]
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def angle_axis_to_rotation(angle: float, axis: np.ndarray) -> np.ndarray:
    """
    Rodrigues' formula for a rotation of `angle` radians about the unit `axis`.

        R = I + sin(θ) K + (1 - cos(θ)) K²,   K = hat(axis)
    """
    K = hat(axis)
    return np.eye(3) + np.sin(angle) * K + (1.0 - np.cos(angle)) * (K @ K)


def so3_exp(w: np.ndarray) -> np.ndarray:
    """
    Exponential map from so(3) (rotation vector) to SO(3).

    Uses Rodrigues' formula with a first-order fallback for tiny angles.
    """
    w = np.asarray(w, dtype=float)
    theta = np.linalg.norm(w)
    if theta < 1e-10:
        return np.eye(3) + hat(w)
    return angle_axis_to_rotation(theta, w / theta)


def isometry(R: np.ndarray, t: np.ndarray) -> Isometry3:
    """Assemble a 4×4 homogeneous transform from rotation and translation."""
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = t
    return T


def split_isometry(T: Isometry3) -> Tuple[np.ndarray, np.ndarray]:
    """Return ``(R, t)`` of a homogeneous transform."""
    return T[:3, :3], T[:3, 3]


def isometry_inverse(T: Isometry3) -> Isometry3:
    """
    Closed-form inverse of a rigid transform:

        [ R  t ]⁻¹ = [ Rᵀ  -Rᵀ t ]
        [ 0  1 ]     [ 0     1   ]
    """
    R, t = split_isometry(T)
    return isometry(R.T, -R.T @ t)


def rotation_from_quaternion(qx: float, qy: float, qz: float, qw: float) -> np.ndarray:
    """Rotation matrix of the (assumed unit) quaternion ``qw + qx i + qy j + qz k``."""
    xx, yy, zz = qx * qx, qy * qy, qz * qz
    xy, xz, yz = qx * qy, qx * qz, qy * qz
    wx, wy, wz = qw * qx, qw * qy, qw * qz
    return np.array(
        [
            [1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz), 2.0 * (xz + wy)],
            [2.0 * (xy + wz), 1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx)],
            [2.0 * (xz - wy), 2.0 * (yz + wx), 1.0 - 2.0 * (xx + yy)],
        ]
    )


def rotation_from_compact_quaternion(v: np.ndarray) -> np.ndarray:
    """
    Rotation from the vector part of a unit quaternion.

    The real part is recovered as ``sqrt(1 - |v|²)``. Vectors outside the
    unit ball do not describe a quaternion on the chart and map to identity.
    """
    w = 1.0 - float(np.dot(v, v))
    if w < 0.0:
        return np.eye(3)
    return rotation_from_quaternion(v[0], v[1], v[2], np.sqrt(w))


def from_vector_mqt(v: np.ndarray) -> Isometry3:
    """
    Map a 6-vector ``[tx, ty, tz, qx, qy, qz]`` to an isometry.

    This is the local parameterization used by `VertexSE3.oplus`; for small
    ``v`` the rotation part is ``I + 2 hat(v[3:])`` to first order.
    """
    v = np.asarray(v, dtype=float)
    return isometry(rotation_from_compact_quaternion(v[3:6]), v[0:3])
