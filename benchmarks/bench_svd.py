#!/usr/bin/env python
"""Benchmark: dense vs block-sparse truncated SVD at DMRG-relevant sizes.

Builds the rank-2 matrix form of a two-site wavefunction (chi*d, d*chi)
with U(1) charges fused from a virtual and a physical leg, and compares
decomposition timings for the dense and block-sparse paths, with and
without a worker pool for the per-block kernels.

Usage:
    python benchmarks/bench_svd.py
"""

from __future__ import annotations

import time

import jax
import numpy as np

from tndecomp.core.index import FlowDirection, TensorIndex
from tndecomp.core.symmetry import U1Symmetry
from tndecomp.core.tensor import DenseTensor, SymmetricTensor
from tndecomp.decomp import DecompConfig, svd


def _fused_charges(virt: np.ndarray, phys: np.ndarray) -> np.ndarray:
    return (virt[:, None] + phys[None, :]).ravel().astype(np.int32)


def _build_theta_indices(chi: int) -> tuple[TensorIndex, TensorIndex]:
    """Row and column legs of a (chi*d, d*chi) two-site matrix."""
    sym = U1Symmetry()
    phys_charges = np.array([1, -1], dtype=np.int32)

    # Virtual bond: distribute chi states across Sz = {-1, 0, +1}
    q_each = max(1, chi // 4)
    q_zero = max(1, chi - 2 * q_each)
    virt_charges = np.concatenate([
        np.full(q_each, -1, dtype=np.int32),
        np.full(q_zero, 0, dtype=np.int32),
        np.full(q_each, 1, dtype=np.int32),
    ])[:chi]

    fused = _fused_charges(virt_charges, phys_charges)
    return (
        TensorIndex(sym, fused, FlowDirection.IN, label="left"),
        TensorIndex(sym, fused, FlowDirection.OUT, label="right"),
    )


def _time(fn, n_warmup: int, n_iter: int) -> float:
    for _ in range(n_warmup):
        fn()
    t0 = time.perf_counter()
    for _ in range(n_iter):
        fn()
    return 1000.0 * (time.perf_counter() - t0) / n_iter


def bench_svd() -> None:
    """Time svd() for dense vs block-sparse storage at various chi."""
    print("=" * 78)
    print("Truncated SVD: dense vs block-sparse")
    print("=" * 78)
    print(f"{'chi':>6} {'dense(ms)':>10} {'sparse(ms)':>11} {'pool(ms)':>9} "
          f"{'speedup':>8} {'fill%':>7} {'n_blocks':>9} {'kept':>6}")
    print("-" * 78)

    n_warmup = 2
    n_iter = 5

    for chi in [16, 32, 64, 128, 256]:
        indices = _build_theta_indices(chi)
        key = jax.random.PRNGKey(42)
        sym_tensor = SymmetricTensor.random_normal(indices, key=key)
        dense_tensor = DenseTensor(sym_tensor.todense(), indices)

        config = DecompConfig(max_m=chi, cutoff=1e-10)
        pooled = config.with_(workers=4)

        total_elements = indices[0].dim * indices[1].dim
        nnz = sum(v.size for v in sym_tensor.blocks.values())
        fill_pct = 100.0 * nnz / total_elements

        dense_ms = _time(
            lambda: svd(dense_tensor, "left", "right", config), n_warmup, n_iter
        )
        sparse_ms = _time(
            lambda: svd(sym_tensor, "left", "right", config), n_warmup, n_iter
        )
        pool_ms = _time(
            lambda: svd(sym_tensor, "left", "right", pooled), n_warmup, n_iter
        )
        _, _, _, spectrum = svd(sym_tensor, "left", "right", config)

        speedup = dense_ms / sparse_ms if sparse_ms > 0 else float("inf")
        print(f"{chi:>6} {dense_ms:>10.2f} {sparse_ms:>11.2f} {pool_ms:>9.2f} "
              f"{speedup:>7.2f}x {fill_pct:>6.1f}% {sym_tensor.n_blocks:>9} "
              f"{spectrum.num_kept:>6}")


if __name__ == "__main__":
    bench_svd()
