from __future__ import annotations

import dataclasses

import numpy as np

from edgelin.slam.quaternion_chart import ChartBranch, quaternion_chart
from edgelin.verification.autodiff import (
    TRACE_BRANCH,
    autodiff_dquaternion_drotation,
    functor_branch,
    rotation_to_quaternion_functor,
)
from edgelin.verification import harness
from edgelin.verification.harness import CHART_TOLERANCE, VerificationConfig, verify_quaternion_chart


def test_autodiff_matches_analytic_at_identity():
    R = np.eye(3)
    q_ad, J_ad = autodiff_dquaternion_drotation(R)
    chart = quaternion_chart(R)

    assert functor_branch(R) == TRACE_BRANCH
    assert np.allclose(q_ad, np.zeros(3))
    assert J_ad.shape == (3, 9)
    assert np.max(np.abs(chart.dq_dR - J_ad)) < CHART_TOLERANCE


def test_autodiff_matches_analytic_for_half_turn_about_x():
    R = np.diag([1.0, -1.0, -1.0])
    q_ad, J_ad = autodiff_dquaternion_drotation(R)
    chart = quaternion_chart(R)

    assert functor_branch(R) == 0
    assert chart.branch is ChartBranch.AXIS_X
    assert np.allclose(q_ad, chart.q)
    assert np.max(np.abs(chart.dq_dR - J_ad)) < CHART_TOLERANCE


def test_functor_is_column_major():
    # column-major flattening of R: entry R[r, c] sits at r + 3c
    # quarter turn about +z
    R = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    q = np.asarray(rotation_to_quaternion_functor(R.ravel(order="F"), branch=TRACE_BRANCH))
    assert np.allclose(q, [0.0, 0.0, np.sqrt(0.5)])


def test_chart_derivative_agrees_with_autodiff_on_random_rotations():
    report = verify_quaternion_chart(VerificationConfig(trials=2000, seed=42))

    assert report.trials == 2000
    assert report.ok, report.mismatches[:5]
    assert report.max_abs_diff < CHART_TOLERANCE
    # the sampler must exercise both the trace case and the pivot-axis case
    assert report.branch_counts[ChartBranch.TRACE] > 0
    axis_trials = sum(report.branch_counts[b] for b in (ChartBranch.AXIS_X, ChartBranch.AXIS_Y, ChartBranch.AXIS_Z))
    assert axis_trials > 0


def test_chart_off_the_half_sphere_is_reported(monkeypatch):
    # -q is the vector part of the antipodal quaternion, whose real part is negative
    def negated_chart(R):
        chart = quaternion_chart(R)
        return dataclasses.replace(chart, q=-chart.q)

    monkeypatch.setattr(harness, "quaternion_chart", negated_chart)
    report = verify_quaternion_chart(VerificationConfig(trials=20, seed=3))

    assert not report.ok
    checks = {m.check for m in report.mismatches}
    assert "real_part" in checks
    assert "value" in checks
