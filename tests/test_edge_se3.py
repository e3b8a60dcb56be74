from __future__ import annotations

import numpy as np
import pytest

from edgelin.core.math3d import isometry, isometry_inverse, so3_exp
from edgelin.optimization.jacobian_workspace import JacobianWorkspace
from edgelin.slam.edges import EdgePointXYZ, EdgeSE3
from edgelin.slam.vertices import VertexPointXYZ, VertexSE3
from edgelin.verification.harness import VerificationConfig, se3_edge_scenario, verify_edge_jacobians


def _bound_edge():
    v1 = VertexSE3()
    v1.set_id(0)
    v2 = VertexSE3()
    v2.set_id(1)
    e = EdgeSE3()
    e.set_vertex(0, v1)
    e.set_vertex(1, v2)
    e.set_information(np.eye(6))
    return e, v1, v2


def _workspace(edge) -> JacobianWorkspace:
    ws = JacobianWorkspace()
    ws.update_size(edge)
    ws.allocate()
    return ws


def test_error_vanishes_when_measurement_is_consistent():
    e, v1, v2 = _bound_edge()
    Xi = isometry(so3_exp(np.array([0.1, 0.7, -0.3])), np.array([1.0, 2.0, 3.0]))
    Z = isometry(so3_exp(np.array([-0.5, 0.2, 0.9])), np.array([0.3, -0.1, 0.4]))
    v1.set_estimate(Xi)
    v2.set_estimate(Xi @ Z)
    e.set_measurement(Z)

    assert np.allclose(e.compute_error(), np.zeros(6), atol=1e-12)
    assert e.chi2() == pytest.approx(0.0, abs=1e-20)


def test_error_layout_is_translation_then_quaternion():
    e, v1, v2 = _bound_edge()
    v1.set_estimate(np.eye(4))
    v2.set_estimate(isometry(so3_exp(np.array([0.0, 0.0, 0.2])), np.array([1.0, 0.0, 0.0])))
    e.set_measurement(np.eye(4))

    err = e.compute_error()
    assert np.allclose(err[:3], [1.0, 0.0, 0.0])
    assert np.allclose(err[3:], [0.0, 0.0, np.sin(0.1)])


def test_analytic_jacobians_at_identity():
    e, v1, v2 = _bound_edge()
    v1.set_estimate(np.eye(4))
    v2.set_estimate(np.eye(4))
    e.set_measurement(np.eye(4))

    ws = _workspace(e)
    e.linearize_oplus(ws)
    assert np.allclose(e.jacobian_oplus_xi, -np.eye(6))
    assert np.allclose(e.jacobian_oplus_xj, np.eye(6))


def test_jacobian_blocks_are_column_major_views_of_the_workspace():
    e, v1, v2 = _bound_edge()
    v1.set_estimate(np.eye(4))
    v2.set_estimate(np.eye(4))
    e.set_measurement(np.eye(4))

    ws = _workspace(e)
    e.linearize_oplus(ws)
    flat = ws.workspace_for_vertex(1)
    assert np.array_equal(flat.reshape((6, 6), order="F"), e.jacobian_oplus_xj)
    assert np.shares_memory(flat, e.jacobian_oplus_xj)


def test_numeric_matches_analytic_at_fixed_configuration():
    e, v1, v2 = _bound_edge()
    v1.set_estimate(isometry(so3_exp(np.array([0.3, -1.2, 0.4])), np.array([0.2, 0.1, -0.3])))
    v2.set_estimate(isometry(so3_exp(np.array([2.0, 0.5, -0.7])), np.array([-0.6, 0.9, 0.5])))
    e.set_measurement(isometry(so3_exp(np.array([-1.0, 1.5, 0.3])), np.array([0.4, 0.4, -0.8])))

    analytic = _workspace(e)
    e.linearize_oplus(analytic)
    Ji, Jj = e.jacobian_oplus_xi.copy(), e.jacobian_oplus_xj.copy()

    e.numeric_linearize_oplus()
    assert np.allclose(e.jacobian_oplus_xi, Ji, atol=1e-6)
    assert np.allclose(e.jacobian_oplus_xj, Jj, atol=1e-6)


def test_numeric_linearization_restores_estimates():
    scenario = se3_edge_scenario()
    scenario.randomize(np.random.default_rng(0))
    before = [v.estimate.copy() for v in scenario.vertices]

    ws = _workspace(scenario.edge)
    scenario.edge.bind_workspace(ws)
    scenario.edge.numeric_linearize_oplus()
    for v, est in zip(scenario.vertices, before):
        assert np.array_equal(v.estimate, est)


def test_edge_se3_jacobian_agrees_with_numeric():
    report = verify_edge_jacobians(se3_edge_scenario(), VerificationConfig(trials=2000, seed=1))

    assert report.trials == 2000
    assert report.ok, report.mismatches[:5]
    assert report.max_abs_diff <= 1e-6


def test_preconditions_are_checked():
    e = EdgeSE3()
    with pytest.raises(RuntimeError):
        e.compute_error()
    with pytest.raises(TypeError):
        e.set_vertex(0, VertexPointXYZ())
    with pytest.raises(IndexError):
        e.set_vertex(2, VertexSE3())
    with pytest.raises(ValueError):
        e.set_information(np.eye(3))
    with pytest.raises(ValueError):
        e.set_measurement(np.zeros(3))

    e, v1, v2 = _bound_edge()
    v1.set_estimate(np.eye(4))
    v2.set_estimate(np.eye(4))
    with pytest.raises(RuntimeError):
        e.compute_error()  # no measurement yet
    e.set_measurement(np.eye(4))
    with pytest.raises(RuntimeError):
        e.numeric_linearize_oplus()  # no workspace bound

    unsized = JacobianWorkspace()
    with pytest.raises(RuntimeError):
        e.linearize_oplus(unsized)

    too_small = JacobianWorkspace()
    too_small.update_size(EdgePointXYZ())
    too_small.allocate()
    with pytest.raises(RuntimeError):
        e.linearize_oplus(too_small)


def test_measurement_data_roundtrip():
    e = EdgeSE3()
    v = np.array([1.0, -2.0, 0.5, 0.0, np.sin(0.4), 0.0, np.cos(0.4)])
    e.set_measurement_data(v)
    assert np.allclose(e.get_measurement_data(), v, atol=1e-12)


def test_initial_estimate_from_either_side():
    e, v1, v2 = _bound_edge()
    Z = isometry(so3_exp(np.array([0.2, -0.1, 0.6])), np.array([1.0, 0.0, -1.0]))
    Xi = isometry(so3_exp(np.array([0.0, 0.4, 0.0])), np.array([3.0, 1.0, 0.0]))
    e.set_measurement(Z)

    v1.set_estimate(Xi)
    e.initial_estimate(0)
    assert np.allclose(v2.estimate, Xi @ Z)

    v2.set_estimate(Xi)
    e.initial_estimate(1)
    assert np.allclose(v1.estimate, Xi @ isometry_inverse(Z))
    assert np.allclose(e.compute_error(), np.zeros(6), atol=1e-12)
