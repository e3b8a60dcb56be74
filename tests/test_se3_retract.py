from __future__ import annotations

import numpy as np
import pytest

from edgelin.core.math3d import isometry, so3_exp
from edgelin.slam.quaternion_chart import to_vector_mqt
from edgelin.slam.vertices import VertexPointXYZ, VertexSE3


def _pose() -> np.ndarray:
    return isometry(so3_exp(np.array([0.4, -0.3, 1.2])), np.array([0.5, -1.0, 2.0]))


def test_se3_increment_zero_delta_is_identity():
    pose = _pose()
    pose_new = VertexSE3.increment(pose, np.zeros(6))
    assert np.allclose(pose_new, pose, atol=1e-12)


def test_se3_increment_pure_translation_is_body_frame():
    pose = _pose()
    delta = np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0])

    pose_new = VertexSE3.increment(pose, delta)
    assert np.allclose(pose_new[:3, :3], pose[:3, :3])
    assert np.allclose(pose_new[:3, 3], pose[:3, 3] + pose[:3, :3] @ delta[:3])


def test_se3_increment_matches_relative_pose_for_small_delta():
    """
    Applying a small delta and reading back the relative pose through the
    quaternion chart should give the delta again.
    """
    delta = np.array([0.1, -0.05, 0.02, 0.01, 0.0, -0.02])
    pose0 = _pose()
    pose1 = VertexSE3.increment(pose0, delta)

    rel = np.linalg.inv(pose0) @ pose1
    assert np.allclose(to_vector_mqt(rel), delta, atol=1e-9)


def test_vertex_push_oplus_pop_restores_estimate():
    v = VertexSE3()
    v.set_id(3)
    v.set_estimate(_pose())
    before = v.estimate.copy()

    v.push()
    v.oplus(np.array([0.1, 0.2, 0.3, 0.01, 0.02, 0.03]))
    assert not np.allclose(v.estimate, before)
    v.pop()
    assert np.array_equal(v.estimate, before)


def test_point_vertex_increment_is_additive():
    v = VertexPointXYZ()
    v.set_estimate([1.0, 2.0, 3.0])
    v.oplus(np.array([0.5, -0.5, 1.0]))
    assert np.allclose(v.estimate, [1.5, 1.5, 4.0])
    assert VertexPointXYZ.DIMENSION == 3
    assert VertexSE3.DIMENSION == 6


def test_vertex_preconditions():
    v = VertexSE3()
    with pytest.raises(RuntimeError):
        _ = v.estimate
    with pytest.raises(ValueError):
        v.set_estimate(np.zeros(3))
    v.set_estimate(np.eye(4))
    with pytest.raises(ValueError):
        v.oplus(np.zeros(3))
    with pytest.raises(RuntimeError):
        v.pop()
