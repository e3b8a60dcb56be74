# Copyright (c) 2025.
# This file is part of EdgeLin, released under the MIT License.
"""
Single import point for JAX inside EdgeLin.

The automatic-differentiation oracle compares against analytic Jacobians at
a `1e-7` absolute tolerance, which float32 cannot resolve. Importing JAX
through this module guarantees that `jax_enable_x64` is switched on before
any array is created:

    from edgelin.core.jax_init import jax, jnp
"""

from __future__ import annotations

import jax

jax.config.update("jax_enable_x64", True)

import jax.numpy as jnp  # noqa: E402

__all__ = ["jax", "jnp"]
