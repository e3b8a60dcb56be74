# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.

import logging
import time

import numpy as np

from edgelin.optimization.jacobian_workspace import JacobianWorkspace
from edgelin.verification.harness import (
    VerificationConfig,
    point_edge_scenario,
    se3_edge_scenario,
    verify_all,
)


def time_linearization(scenario, num_trials: int = 2000, seed: int = 0):
    """
    Time the analytic and numeric paths separately on the same random states.
    """
    rng = np.random.default_rng(seed)
    edge = scenario.edge

    ws = JacobianWorkspace()
    ws.update_size(edge)
    ws.allocate()

    analytic_s = 0.0
    numeric_s = 0.0
    for _ in range(num_trials):
        scenario.randomize(rng)

        t0 = time.perf_counter()
        edge.linearize_oplus(ws)
        t1 = time.perf_counter()
        edge.numeric_linearize_oplus()
        t2 = time.perf_counter()

        analytic_s += t1 - t0
        numeric_s += t2 - t1

    return analytic_s, numeric_s


def run_benchmark(num_trials: int = 2000):
    print("=== Edge linearization benchmark ===")
    print(f"num_trials = {num_trials}")

    for scenario in (se3_edge_scenario(), point_edge_scenario()):
        analytic_s, numeric_s = time_linearization(scenario, num_trials)
        print(
            f"{scenario.name:>14}: analytic {analytic_s / num_trials * 1e6:8.2f} us/edge, "
            f"numeric {numeric_s / num_trials * 1e6:8.2f} us/edge"
        )

    # Full verification pass, including JIT warmup of the AD oracle
    t0 = time.time()
    reports = verify_all(VerificationConfig(trials=num_trials))
    t1 = time.time()
    print(f"verify_all: {(t1 - t0) * 1000:.1f} ms")
    for name, report in reports.items():
        status = "ok" if report.ok else f"{len(report.mismatches)} mismatches"
        print(f"{name:>16}: {status}, max |diff| = {report.max_abs_diff:.3g}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_benchmark(num_trials=2000)
