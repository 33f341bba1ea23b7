"""Dense linear-algebra kernels used by the decompositions.

Both kernels work on a single real matrix (a ``jax.Array``) and know
nothing about indices, blocks or scales.

- :func:`svd` returns ``(U, s, V)`` with ``M = U @ diag(s) @ V.T``, singular
  values descending. Singular values far below the largest one are
  recomputed from the projected sub-matrix, so small values keep their
  relative accuracy, and the singular vectors are re-orthonormalised a
  configurable number of times.
- :func:`eigh` returns ascending eigenpairs of a symmetric matrix.

These are not JIT-compiled: the size of the refined tail depends on the
singular values themselves.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
import numpy as np


def _orthonormalize(vectors: jax.Array) -> jax.Array:
    """One QR pass with the column signs of the input preserved."""
    if vectors.shape[1] == 0:
        return vectors
    Q, R = jnp.linalg.qr(vectors)
    signs = jnp.where(jnp.diagonal(R) < 0, -1.0, 1.0).astype(vectors.dtype)
    return Q * signs[None, :]


def svd(
    matrix: jax.Array,
    threshold: float = 1e-3,
    n_orth_pass: int = 2,
) -> tuple[jax.Array, jax.Array, jax.Array]:
    """Thin SVD of a real matrix.

    Args:
        matrix:      2-D array of shape (m, n).
        threshold:   Singular values below ``threshold * s[0]`` are refined
                     by decomposing ``U_tail.T @ M @ V_tail`` again.
        n_orth_pass: Number of re-orthonormalisation passes applied to the
                     singular vectors (0 disables them).

    Returns:
        ``(U, s, V)`` with shapes (m, k), (k,), (n, k), ``k = min(m, n)``.
    """
    matrix = jnp.asarray(matrix)
    U, s, Vh = jnp.linalg.svd(matrix, full_matrices=False)
    V = Vh.T

    s_np = np.asarray(s)
    if len(s_np) > 1 and s_np[0] > 0 and threshold > 0:
        small = np.nonzero(s_np < threshold * s_np[0])[0]
        start = int(small[0]) if len(small) else len(s_np)
        if 0 < start < len(s_np):
            U_tail = U[:, start:]
            V_tail = V[:, start:]
            projected = U_tail.T @ matrix @ V_tail
            Ua, sa, Va = svd(projected, threshold, 0)
            U = U.at[:, start:].set(U_tail @ Ua)
            V = V.at[:, start:].set(V_tail @ Va)
            s = s.at[start:].set(sa)

    for _ in range(n_orth_pass):
        U = _orthonormalize(U)
        V = _orthonormalize(V)

    return U, s, V


def eigh(matrix: jax.Array) -> tuple[jax.Array, jax.Array]:
    """Eigenvalues (ascending) and eigenvectors (columns) of a symmetric matrix."""
    evals, evecs = jnp.linalg.eigh(jnp.asarray(matrix))
    return evals, evecs
