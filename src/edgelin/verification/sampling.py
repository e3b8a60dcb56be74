# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Seeded random manifold values for the verification harness.

Rotations are drawn by summing two uniform vectors in [-1, 1]³ and using the
result as an axis-angle vector: the angle is its norm and the axis its
direction. This covers rotations of up to ~3.5 rad, so both cases of the
quaternion chart (positive trace and pivot axis) are hit regularly.

All functions take an explicit `numpy.random.Generator`, so every trial is
reproducible from the harness seed.
"""

from __future__ import annotations

import numpy as np

from edgelin.core.math3d import isometry, so3_exp
from edgelin.core.types import Isometry3


def _uniform3(rng: np.random.Generator) -> np.ndarray:
    return rng.uniform(-1.0, 1.0, size=3)


def random_rotation(rng: np.random.Generator) -> np.ndarray:
    return so3_exp(_uniform3(rng) + _uniform3(rng))


def random_isometry3(rng: np.random.Generator) -> Isometry3:
    R = random_rotation(rng)
    return isometry(R, _uniform3(rng))


def random_point3(rng: np.random.Generator) -> np.ndarray:
    return _uniform3(rng)
