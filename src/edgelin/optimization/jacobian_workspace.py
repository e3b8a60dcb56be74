# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Reusable storage for the Jacobian blocks of binary edges.

A `JacobianWorkspace` owns one contiguous float64 buffer that holds the
Jacobian block of every endpoint of an edge, one after the other:

    buffer = [ J_0 (rows × dim_0, column-major) | J_1 (rows × dim_1, column-major) ]

Lifecycle
---------
    ws = JacobianWorkspace()
    ws.update_size(edge)        # record extents, no allocation
    ws.allocate()               # reserve and zero the buffer
    ws.workspace_for_vertex(0)  # 1-D view of endpoint 0's block

Sizing is max-accumulating, so a single workspace can serve several edge
types (`update_size_for_edges`): each slot is as large as the biggest block
any of them needs, and an edge uses the leading ``rows * dim`` entries of its
slot. Once allocated, the layout never changes; switching to a different
sizing requires ``update_size(edge, reset=True)`` followed by `allocate`;
any call that changes the extents releases the buffer, so the workspace
raises on access until it is allocated again.

Two workspaces never share memory. `assign` copies the content of another
workspace into this one's own buffer, which is how the verification harness
keeps analytic and numeric Jacobians side by side.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class JacobianWorkspace:
    """Contiguous, size-negotiated buffer for per-endpoint Jacobian blocks."""

    def __init__(self) -> None:
        self._extents: List[int] = []
        self._offsets: List[int] = []
        self._buffer: Optional[np.ndarray] = None

    # --- Sizing ---

    def update_size(self, edge, reset: bool = False) -> None:
        """
        Record the block extents required by ``edge``.

        ``edge`` must expose ``DIMENSION`` and ``vertex_dimensions()``; each
        endpoint slot grows to ``DIMENSION * dim_i`` entries if it is smaller.
        Nothing is allocated here. If the layout changes, an existing buffer
        is released and `allocate` must be called again.
        """
        self.update_size_for_edges([edge], reset=reset)

    def update_size_for_edges(self, edges: Iterable, reset: bool = True) -> None:
        """Size the workspace for the largest blocks over a collection of edges."""
        previous = list(self._extents)
        if reset:
            self._extents = []
        for edge in edges:
            for slot, dim in enumerate(edge.vertex_dimensions()):
                needed = edge.DIMENSION * dim
                if slot < len(self._extents):
                    self._extents[slot] = max(self._extents[slot], needed)
                else:
                    self._extents.append(needed)
            logger.debug("JacobianWorkspace sized for %s: extents=%s", type(edge).__name__, self._extents)

        self._offsets = []
        offset = 0
        for extent in self._extents:
            self._offsets.append(offset)
            offset += extent

        if self._buffer is not None and self._extents != previous:
            logger.debug("JacobianWorkspace layout changed from %s, buffer released", previous)
            self._buffer = None

    def allocate(self) -> None:
        """Reserve a zeroed buffer large enough for every recorded slot."""
        if not self._extents:
            raise RuntimeError("JacobianWorkspace.allocate() called before update_size()")
        self._buffer = np.zeros(self.size, dtype=np.float64)

    # --- Access ---

    @property
    def allocated(self) -> bool:
        return self._buffer is not None

    @property
    def size(self) -> int:
        return int(sum(self._extents))

    @property
    def num_vertices(self) -> int:
        return len(self._extents)

    def extent(self, index: int) -> int:
        self._check_index(index)
        return self._extents[index]

    def workspace_for_vertex(self, index: int) -> np.ndarray:
        """1-D writable view of the block slot for endpoint ``index``."""
        if self._buffer is None:
            raise RuntimeError("JacobianWorkspace used before allocate()")
        self._check_index(index)
        start = self._offsets[index]
        return self._buffer[start:start + self._extents[index]]

    def set_zero(self) -> None:
        if self._buffer is None:
            raise RuntimeError("JacobianWorkspace used before allocate()")
        self._buffer.fill(0.0)

    # --- Copy ---

    def assign(self, other: "JacobianWorkspace") -> None:
        """
        Bulk-copy ``other`` into this workspace's own memory.

        An unsized workspace takes over the layout of ``other`` and allocates
        a fresh buffer; a sized one must have exactly the same layout.
        """
        if other._buffer is None:
            raise RuntimeError("Cannot assign from an unallocated JacobianWorkspace")
        if not self._extents:
            self._extents = list(other._extents)
            self._offsets = list(other._offsets)
        elif self._extents != other._extents:
            raise ValueError(
                f"JacobianWorkspace layouts differ: {self._extents} vs {other._extents}"
            )
        if self._buffer is None:
            self.allocate()
        np.copyto(self._buffer, other._buffer)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._extents):
            raise IndexError(
                f"Vertex index {index} out of range for a workspace with {len(self._extents)} slots"
            )
