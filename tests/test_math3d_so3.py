from __future__ import annotations

import numpy as np
import pytest

from edgelin.core.math3d import (
    from_vector_mqt,
    hat,
    isometry,
    isometry_inverse,
    rotation_from_compact_quaternion,
    so3_exp,
)

def test_so3_exp_is_orthonormal():
    R = so3_exp(np.array([0.3, -0.2, 0.9]))
    assert np.allclose(R @ R.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(R) == pytest.approx(1.0, abs=1e-12)


def test_so3_exp_no_nan_for_zero():
    R = so3_exp(np.zeros(3))
    assert np.all(np.isfinite(R))
    assert np.allclose(R, np.eye(3))

def test_hat_is_cross_product():
    a = np.array([0.1, -0.4, 2.0])
    b = np.array([1.5, 0.3, -0.7])
    assert np.allclose(hat(a) @ b, np.cross(a, b))

def test_isometry_inverse_composes_to_identity():
    T = isometry(so3_exp(np.array([0.2, 0.5, -1.1])), np.array([1.0, -2.0, 0.5]))
    assert np.allclose(T @ isometry_inverse(T), np.eye(4), atol=1e-12)
    assert np.allclose(isometry_inverse(T) @ T, np.eye(4), atol=1e-12)

def test_compact_quaternion_rotation_first_order():
    # R(q) = I + 2 hat(q) + O(|q|^2)
    q = np.array([1e-5, -2e-5, 3e-5])
    R = rotation_from_compact_quaternion(q)
    assert np.allclose(R, np.eye(3) + 2.0 * hat(q), atol=1e-8)

def test_compact_quaternion_outside_unit_ball_is_identity():
    R = rotation_from_compact_quaternion(np.array([1.0, 1.0, 0.0]))
    assert np.allclose(R, np.eye(3))

def test_from_vector_mqt_zero_is_identity():
    assert np.allclose(from_vector_mqt(np.zeros(6)), np.eye(4))
