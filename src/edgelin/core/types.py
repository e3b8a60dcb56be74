# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Core typed data structures for EdgeLin.

These types are intentionally minimal: they name the shapes that flow between
vertices, edges and Jacobian workspaces, while all numerical work happens in
`core.math3d`, `slam.quaternion_chart` and the edge classes.

Types
-----
NodeId
    Integer identifier of a vertex (manifold variable).

Isometry3
    4×4 homogeneous rigid transform stored as a float64 ``numpy.ndarray``:

        [ R  t ]
        [ 0  1 ]

BlockShape
    Shape of one Jacobian block, ``(error dimension, vertex local dimension)``.
    The workspace stores each block column-major in ``rows * cols`` doubles.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import NewType

import numpy as np

NodeId = NewType("NodeId", int)

Isometry3 = np.ndarray


@dataclass(frozen=True)
class BlockShape:
    """Shape of a single Jacobian block (error dim × local dim)."""
    rows: int
    cols: int

    @property
    def size(self) -> int:
        return self.rows * self.cols
