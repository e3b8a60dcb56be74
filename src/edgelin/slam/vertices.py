# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Manifold variables (vertices) for EdgeLin.

A vertex holds an estimate that lives on a manifold and is updated through a
local, minimal-dimension increment rather than plain vector addition:

    • `VertexSE3`       estimate: 4×4 isometry, local dimension 6
                        increment: X ⊕ δ = X · from_vector_mqt(δ)
    • `VertexPointXYZ`  estimate: 3-vector, local dimension 3
                        increment: p ⊕ δ = p + δ

Each vertex type supplies the same small capability:

    DIMENSION                     local (tangent) dimension
    increment(estimate, delta)    pure manifold increment
    oplus(delta)                  apply the increment to the held estimate
    push() / pop()                backup stack for temporary perturbations

The numeric linearization in `slam.edges` only relies on this capability, so
it works unchanged for every vertex type. Both increments satisfy
``increment(x, 0) == x``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Optional

import numpy as np

from edgelin.core.math3d import from_vector_mqt
from edgelin.core.types import Isometry3, NodeId


class BaseVertex(ABC):
    """Manifold variable with an id, an estimate and a backup stack."""

    DIMENSION: int = 0

    def __init__(self) -> None:
        self.id: Optional[NodeId] = None
        self._estimate: Optional[np.ndarray] = None
        self._backup: List[np.ndarray] = []

    def set_id(self, node_id: int) -> None:
        self.id = NodeId(node_id)

    @property
    def estimate(self) -> np.ndarray:
        if self._estimate is None:
            raise RuntimeError(f"{type(self).__name__} {self.id} has no estimate")
        return self._estimate

    def set_estimate(self, value: Any) -> None:
        self._estimate = self._validate(np.array(value, dtype=float))

    @staticmethod
    @abstractmethod
    def increment(estimate: np.ndarray, delta: np.ndarray) -> np.ndarray:
        """Return ``estimate ⊕ delta`` without touching any vertex."""

    @abstractmethod
    def _validate(self, value: np.ndarray) -> np.ndarray:
        ...

    def oplus(self, delta: np.ndarray) -> None:
        delta = np.asarray(delta, dtype=float)
        if delta.shape != (self.DIMENSION,):
            raise ValueError(
                f"{type(self).__name__} expects an update of shape ({self.DIMENSION},), "
                f"got {delta.shape}"
            )
        self._estimate = self.increment(self.estimate, delta)

    def push(self) -> None:
        self._backup.append(self.estimate.copy())

    def pop(self) -> None:
        if not self._backup:
            raise RuntimeError(f"pop() on {type(self).__name__} {self.id} with an empty backup stack")
        self._estimate = self._backup.pop()


class VertexSE3(BaseVertex):
    """3D rigid pose, perturbed on the right by an MQT 6-vector."""

    DIMENSION = 6

    @staticmethod
    def increment(estimate: Isometry3, delta: np.ndarray) -> Isometry3:
        return estimate @ from_vector_mqt(delta)

    def _validate(self, value: np.ndarray) -> np.ndarray:
        if value.shape != (4, 4):
            raise ValueError(f"VertexSE3 estimate must be a 4x4 isometry, got shape {value.shape}")
        return value


class VertexPointXYZ(BaseVertex):
    """3D point with Euclidean increment."""

    DIMENSION = 3

    @staticmethod
    def increment(estimate: np.ndarray, delta: np.ndarray) -> np.ndarray:
        return estimate + delta

    def _validate(self, value: np.ndarray) -> np.ndarray:
        if value.shape != (3,):
            raise ValueError(f"VertexPointXYZ estimate must be a 3-vector, got shape {value.shape}")
        return value
