# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Automatic-differentiation oracle for the quaternion chart.

`rotation_to_quaternion_functor` re-implements the rotation-matrix →
compact-quaternion map in JAX on a column-major 9-vector, independently of
the NumPy code in `slam.quaternion_chart`. Differentiating it with
`jax.jacfwd` gives a reference 3×9 Jacobian against which the closed-form
`dquaternion_drotation` is checked.

The extraction branches on values of R. Data-dependent Python control flow
cannot be traced, so the case is decided on the concrete input first and
passed to the functor as a static tag:

    -1      trace(R) > 0
    0/1/2   pivot axis i (largest diagonal entry, strict comparisons)

Only the half-sphere sign flip (``w < 0``) stays inside the traced function,
as a `jnp.where`. One compiled Jacobian exists per tag.
"""

from __future__ import annotations

from functools import partial
from typing import Tuple

import numpy as np

from edgelin.core.jax_init import jax, jnp

TRACE_BRANCH = -1


def functor_branch(R: np.ndarray) -> int:
    """Case of the extraction for a concrete rotation matrix."""
    if np.trace(R) > 0.0:
        return TRACE_BRANCH
    i = 0
    if R[1, 1] > R[0, 0]:
        i = 1
    if R[2, 2] > R[i, i]:
        i = 2
    return i


def rotation_to_quaternion_functor(r_flat: jnp.ndarray, branch: int) -> jnp.ndarray:
    """
    Compact quaternion of the rotation whose column-major entries are ``r_flat``.

    Args:
        r_flat: (9,) column-major rotation matrix.
        branch: static case tag, see `functor_branch`.

    Returns:
        (3,) vector part of the unit quaternion with non-negative real part.
    """
    R = jnp.reshape(r_flat, (3, 3)).T

    if branch == TRACE_BRANCH:
        t = jnp.sqrt(jnp.trace(R) + 1.0)
        t = 0.5 / t
        return jnp.array([
            (R[2, 1] - R[1, 2]) * t,
            (R[0, 2] - R[2, 0]) * t,
            (R[1, 0] - R[0, 1]) * t,
        ])

    i = branch
    j = (i + 1) % 3
    k = (j + 1) % 3

    t = jnp.sqrt(R[i, i] - R[j, j] - R[k, k] + 1.0)
    q = jnp.zeros(3, dtype=R.dtype)
    q = q.at[i].set(0.5 * t)
    t = 0.5 / t
    q = q.at[j].set((R[j, i] + R[i, j]) * t)
    q = q.at[k].set((R[k, i] + R[i, k]) * t)
    w = (R[k, j] - R[j, k]) * t
    # normalize to the half-sphere: real part non-negative
    return jnp.where(w < 0.0, -q, q)


@partial(jax.jit, static_argnames=("branch",))
def _value_and_jacobian(r_flat: jnp.ndarray, branch: int) -> Tuple[jnp.ndarray, jnp.ndarray]:
    f = partial(rotation_to_quaternion_functor, branch=branch)
    return f(r_flat), jax.jacfwd(f)(r_flat)


def autodiff_dquaternion_drotation(R: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Value and forward-mode AD Jacobian of the chart at ``R``.

    Returns:
        q: (3,) compact quaternion.
        J: (3, 9) Jacobian w.r.t. the column-major entries of ``R``.
    """
    R = np.asarray(R, dtype=np.float64)
    r_flat = jnp.asarray(R.ravel(order="F"))
    q, J = _value_and_jacobian(r_flat, branch=functor_branch(R))
    return np.asarray(q), np.asarray(J)
