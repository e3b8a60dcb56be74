# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Randomized cross-checks of analytic Jacobians.

Each check runs a fixed number of independent trials:

    Setup → (Randomize → Linearize (analytic) → Linearize (numeric) → Compare) × N

Edges
-----
`verify_edge_jacobians` drives an `EdgeScenario` (two vertices, one edge with
identity information, and a randomizer). Per trial, `evaluate_jacobian`

    1. writes the analytic Jacobians into the numeric workspace,
    2. copies that workspace into a second, independently owned one,
    3. overwrites the numeric workspace with central differences,
    4. compares both blocks entry by entry.

A disagreement larger than the tolerance is recorded as a
`JacobianMismatch` naming the trial, endpoint and entry offset and logged at
WARNING; the run always finishes all trials so the full failure distribution
is visible in the returned `VerificationReport`.

Quaternion chart
----------------
`verify_quaternion_chart` compares `dquaternion_drotation` with the JAX
forward-mode oracle of `verification.autodiff` on random rotations and also
checks that ``q`` with its implied non-negative real part rebuilds the
input rotation and that both
implementations pick the same case.

Randomness always comes from an explicit `numpy.random.Generator`; when none
is passed, one is seeded from `VerificationConfig.seed`.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from edgelin.core.math3d import rotation_from_compact_quaternion
from edgelin.optimization.jacobian_workspace import JacobianWorkspace
from edgelin.slam.edges import BaseBinaryEdge, EdgePointXYZ, EdgeSE3, NumericDiffConfig
from edgelin.slam.quaternion_chart import ChartBranch, quaternion_chart
from edgelin.slam.vertices import BaseVertex, VertexPointXYZ, VertexSE3
from edgelin.verification.autodiff import (
    TRACE_BRANCH,
    autodiff_dquaternion_drotation,
    functor_branch,
)
from edgelin.verification.sampling import random_isometry3, random_point3, random_rotation

logger = logging.getLogger(__name__)

CHART_TOLERANCE = 1e-7
RECONSTRUCTION_TOLERANCE = 1e-6


@dataclass
class VerificationConfig:
    """Trial count, comparison tolerance and seed of a verification run."""
    trials: int = 2000
    tolerance: float = 1e-6
    seed: int = 0
    numeric_delta: float = 1e-6


@dataclass(frozen=True)
class JacobianMismatch:
    trial: int
    endpoint: int
    entry: int
    analytic: float
    numeric: float

    @property
    def abs_diff(self) -> float:
        return abs(self.numeric - self.analytic)


@dataclass
class VerificationReport:
    """Outcome of an edge Jacobian run."""
    name: str
    trials: int = 0
    mismatches: List[JacobianMismatch] = field(default_factory=list)
    max_abs_diff: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.mismatches

    @property
    def failed_trials(self) -> List[int]:
        return sorted({m.trial for m in self.mismatches})


@dataclass(frozen=True)
class ChartMismatch:
    trial: int
    check: str     # "jacobian", "value", "real_part" or "branch"
    detail: float


@dataclass
class ChartReport:
    """Outcome of a quaternion chart run against the AD oracle."""
    trials: int = 0
    mismatches: List[ChartMismatch] = field(default_factory=list)
    max_abs_diff: float = 0.0
    branch_counts: Dict[ChartBranch, int] = field(default_factory=Counter)

    @property
    def ok(self) -> bool:
        return not self.mismatches


@dataclass
class EdgeScenario:
    """An edge bound to its two vertices plus the per-trial randomizer."""
    name: str
    edge: BaseBinaryEdge
    vertices: Tuple[BaseVertex, BaseVertex]
    randomize: Callable[[np.random.Generator], None]


# --- Scenarios ---

def se3_edge_scenario() -> EdgeScenario:
    v1 = VertexSE3()
    v1.set_id(0)
    v2 = VertexSE3()
    v2.set_id(1)

    e = EdgeSE3()
    e.set_vertex(0, v1)
    e.set_vertex(1, v2)
    e.set_information(np.eye(EdgeSE3.DIMENSION))

    def randomize(rng: np.random.Generator) -> None:
        v1.set_estimate(random_isometry3(rng))
        v2.set_estimate(random_isometry3(rng))
        e.set_measurement(random_isometry3(rng))

    return EdgeScenario(name="EdgeSE3", edge=e, vertices=(v1, v2), randomize=randomize)


def point_edge_scenario() -> EdgeScenario:
    v1 = VertexPointXYZ()
    v1.set_id(0)
    v2 = VertexPointXYZ()
    v2.set_id(1)

    e = EdgePointXYZ()
    e.set_vertex(0, v1)
    e.set_vertex(1, v2)
    e.set_information(np.eye(EdgePointXYZ.DIMENSION))

    def randomize(rng: np.random.Generator) -> None:
        v1.set_estimate(random_point3(rng))
        v2.set_estimate(random_point3(rng))
        e.set_measurement(random_point3(rng))

    return EdgeScenario(name="EdgePointXYZ", edge=e, vertices=(v1, v2), randomize=randomize)


# --- Edge Jacobians ---

def evaluate_jacobian(
    edge: BaseBinaryEdge,
    jacobian_ws: JacobianWorkspace,
    numeric_ws: JacobianWorkspace,
    tolerance: float,
    trial: int = 0,
) -> Tuple[List[JacobianMismatch], float]:
    """
    Compare analytic and numeric Jacobians of ``edge`` at its current state.

    ``numeric_ws`` must be sized and allocated for the edge; ``jacobian_ws``
    receives a copy of the analytic result (and adopts the layout if it has
    none yet).

    Returns:
        mismatches: entries with ``|numeric - analytic| > tolerance`` (or NaN).
        max_abs_diff: largest finite difference over both blocks.
    """
    # analytic Jacobian, written to the numeric workspace, then moved aside
    edge.linearize_oplus(numeric_ws)
    jacobian_ws.assign(numeric_ws)

    # numeric Jacobian into the workspace bound by the previous call
    edge.numeric_linearize_oplus()

    mismatches: List[JacobianMismatch] = []
    max_abs_diff = 0.0
    for i, dim in enumerate(edge.vertex_dimensions()):
        num_elems = edge.DIMENSION * dim
        n = numeric_ws.workspace_for_vertex(i)[:num_elems]
        a = jacobian_ws.workspace_for_vertex(i)[:num_elems]
        diff = np.abs(n - a)
        finite = diff[np.isfinite(diff)]
        if finite.size:
            max_abs_diff = max(max_abs_diff, float(finite.max()))
        for j in np.flatnonzero(~(diff <= tolerance)):
            mismatch = JacobianMismatch(
                trial=trial, endpoint=i, entry=int(j), analytic=float(a[j]), numeric=float(n[j])
            )
            logger.warning(
                "%s trial %d: endpoint %d entry %d analytic=%.12g numeric=%.12g (|diff|=%.3g)",
                type(edge).__name__, trial, i, j, mismatch.analytic, mismatch.numeric, mismatch.abs_diff,
            )
            mismatches.append(mismatch)
    return mismatches, max_abs_diff


def verify_edge_jacobians(
    scenario: EdgeScenario,
    config: Optional[VerificationConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> VerificationReport:
    """Run ``config.trials`` randomized analytic-vs-numeric comparisons."""
    cfg = config or VerificationConfig()
    rng = rng if rng is not None else np.random.default_rng(cfg.seed)

    edge = scenario.edge
    previous_diff = edge.numeric_diff
    edge.numeric_diff = NumericDiffConfig(delta=cfg.numeric_delta)

    jacobian_ws = JacobianWorkspace()
    numeric_ws = JacobianWorkspace()
    numeric_ws.update_size(edge)
    numeric_ws.allocate()

    report = VerificationReport(name=scenario.name)
    try:
        for k in range(cfg.trials):
            scenario.randomize(rng)
            mismatches, max_diff = evaluate_jacobian(edge, jacobian_ws, numeric_ws, cfg.tolerance, trial=k)
            report.mismatches.extend(mismatches)
            report.max_abs_diff = max(report.max_abs_diff, max_diff)
            report.trials += 1
    finally:
        edge.numeric_diff = previous_diff

    logger.info(
        "%s: %d trials, %d mismatching entries in %d trials, max |diff| %.3g",
        scenario.name, report.trials, len(report.mismatches), len(report.failed_trials), report.max_abs_diff,
    )
    return report


# --- Quaternion chart ---

def verify_quaternion_chart(
    config: Optional[VerificationConfig] = None,
    rng: Optional[np.random.Generator] = None,
    tolerance: float = CHART_TOLERANCE,
) -> ChartReport:
    """Check the analytic chart derivative against the AD oracle on random rotations."""
    cfg = config or VerificationConfig()
    rng = rng if rng is not None else np.random.default_rng(cfg.seed)

    report = ChartReport()
    for k in range(cfg.trials):
        R = random_rotation(rng)
        chart = quaternion_chart(R)
        q_ad, J_ad = autodiff_dquaternion_drotation(R)
        report.branch_counts[chart.branch] += 1
        report.trials += 1

        ad_branch = functor_branch(R)
        expected = ChartBranch.TRACE if ad_branch == TRACE_BRANCH else ChartBranch(ad_branch)
        if chart.branch is not expected:
            report.mismatches.append(ChartMismatch(trial=k, check="branch", detail=float(ad_branch)))
            logger.warning("chart trial %d: branch %s, AD functor used %d", k, chart.branch.name, ad_branch)
            continue

        # q with the implied non-negative real part must rebuild R
        recon_diff = float(np.max(np.abs(rotation_from_compact_quaternion(chart.q) - R)))
        if not recon_diff <= RECONSTRUCTION_TOLERANCE:
            report.mismatches.append(ChartMismatch(trial=k, check="real_part", detail=recon_diff))
            logger.warning("chart trial %d: q does not rebuild R on the w >= 0 half-sphere (%.3g)", k, recon_diff)

        value_diff = float(np.max(np.abs(chart.q - q_ad)))
        if not value_diff <= tolerance:
            report.mismatches.append(ChartMismatch(trial=k, check="value", detail=value_diff))
            logger.warning("chart trial %d: quaternion differs from AD value by %.3g", k, value_diff)

        jac_diff = float(np.max(np.abs(chart.dq_dR - J_ad)))
        report.max_abs_diff = max(report.max_abs_diff, jac_diff)
        if not jac_diff <= tolerance:
            report.mismatches.append(ChartMismatch(trial=k, check="jacobian", detail=jac_diff))
            logger.warning("chart trial %d: dq/dR differs from AD by %.3g", k, jac_diff)

    logger.info(
        "quaternion chart: %d trials, %d mismatches, max |diff| %.3g, branches %s",
        report.trials, len(report.mismatches), report.max_abs_diff,
        {b.name: n for b, n in report.branch_counts.items()},
    )
    return report


def verify_all(config: Optional[VerificationConfig] = None) -> Dict[str, object]:
    """Run the chart check and both edge checks with the same configuration."""
    cfg = config or VerificationConfig()
    return {
        "quaternion_chart": verify_quaternion_chart(cfg),
        "EdgeSE3": verify_edge_jacobians(se3_edge_scenario(), cfg),
        "EdgePointXYZ": verify_edge_jacobians(point_edge_scenario(), cfg),
    }
