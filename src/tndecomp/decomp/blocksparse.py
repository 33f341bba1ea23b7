"""Truncated SVD of rank-2 SymmetricTensors, one charge block at a time.

Every block of a rank-2 symmetric tensor is an independent matrix. Each is
decomposed with the dense kernel, then the squared singular values of all
blocks are merged, sorted and truncated once. The resulting split threshold
is applied back to every block so that the same global cut is made
everywhere: a block keeps exactly those of its singular values whose square
lies above the threshold, and blocks keeping nothing are dropped.

The new bond leg is assembled block by block: block ``(q_r, q_c)`` keeping
``m_b`` states contributes ``m_b`` states of charge ``q_r`` to the bond on U
and ``m_b`` states of charge ``q_c`` to the bond on V.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, NamedTuple

import jax
import jax.numpy as jnp
import numpy as np

from tndecomp.core.index import TensorIndex
from tndecomp.core.scale import LogScale
from tndecomp.core.tensor import BlockKey, IndexRef, SymmetricTensor
from tndecomp.decomp.config import DecompConfig
from tndecomp.decomp.dense import check_rank2_real, resolve_row_col, scaled_eigs
from tndecomp.decomp.kernels import svd
from tndecomp.decomp.truncation import Spectrum, log_spectrum, truncate
from tndecomp.errors import ResultIsZero, UnsupportedOperation

logger = logging.getLogger(__name__)


class MatrixBlock(NamedTuple):
    """One block of a rank-2 tensor, oriented as (row, col)."""

    row_charge: int
    col_charge: int
    matrix: jax.Array


class BlockSVD(NamedTuple):
    """Kernel SVD of one MatrixBlock."""

    block: MatrixBlock
    U: jax.Array
    s: np.ndarray
    V: jax.Array


def matrix_blocks(A: SymmetricTensor, transposed: bool) -> list[MatrixBlock]:
    """Blocks of A in stored (sorted) order, each oriented (row, col)."""
    blocks = []
    for key, block in A.blocks.items():
        if transposed:
            blocks.append(MatrixBlock(key[1], key[0], block.T))
        else:
            blocks.append(MatrixBlock(key[0], key[1], block))
    return blocks


def kept_per_block(
    results: list[BlockSVD],
    split_threshold: float,
) -> list[int]:
    """Count, per block, the squared singular values above ``split_threshold``.

    If no block keeps anything, the block holding the largest singular value
    keeps exactly one state.
    """
    counts = []
    for res in results:
        s = np.maximum(res.s, 0.0)
        this_m = 0
        while this_m < len(s) and s[this_m] ** 2 > split_threshold:
            this_m += 1
        counts.append(this_m)

    if sum(counts) == 0:
        nonempty = [b for b, res in enumerate(results) if len(res.s) > 0]
        if nonempty:
            best = max(nonempty, key=lambda b: results[b].s[0])
            counts[best] = 1
    return counts


def _decompose_blocks(
    blocks: list[MatrixBlock],
    config: DecompConfig,
) -> list[BlockSVD]:
    def run(block: MatrixBlock) -> BlockSVD:
        U, s, V = svd(block.matrix, config.svd_threshold, config.svd_n_orth_pass)
        return BlockSVD(block, U, np.asarray(s, dtype=np.float64), V)

    if config.workers > 1 and len(blocks) > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as pool:
            return list(pool.map(run, blocks))
    return [run(block) for block in blocks]


def svd_rank2(
    A: SymmetricTensor,
    row_index: IndexRef,
    col_index: IndexRef,
    config: DecompConfig | None = None,
) -> tuple[SymmetricTensor, SymmetricTensor, SymmetricTensor, Spectrum]:
    """Truncated block-wise SVD of a rank-2 SymmetricTensor.

    Args:
        A:         Real rank-2 symmetric tensor.
        row_index: Leg that becomes the row of every block (and a leg of U).
        col_index: Leg that becomes the column (and a leg of V).
        config:    Truncation and naming options; truncates by default.

    Returns:
        ``(U, D, V, spectrum)`` with ``U(row, uL)``, block-diagonal
        ``D(uL, vL)`` and ``V(col, vL)``. U and V have zero divergence, D
        carries A's divergence. ``spectrum.eigs`` are the kept squared
        singular values of all blocks, descending, times ``A.scale**2``.

    Raises:
        RankError:            If A is not rank 2.
        UnsupportedOperation: If A is complex.
        ResultIsZero:         If A has no blocks or a zero-dimension leg.
    """
    config = config or DecompConfig()
    check_rank2_real(A, "svd")
    row, col, transposed = resolve_row_col(A, row_index, col_index)
    if row.dim == 0 or col.dim == 0:
        raise ResultIsZero(f"svd of a {row.dim}x{col.dim} matrix")
    if A.n_blocks == 0:
        raise ResultIsZero("svd of a tensor with no blocks")

    blocks = matrix_blocks(A, transposed)
    results = _decompose_blocks(blocks, config)
    logger.debug("svd_rank2: decomposed %d blocks", len(results))

    alleig = np.concatenate([res.s for res in results]) ** 2
    probs = np.sort(alleig)[::-1]

    do_truncate = config.should_truncate(default=True)
    m = len(probs)
    truncerr = 0.0
    split = -1.0
    if do_truncate and m > 0:
        m, truncerr, split = truncate(
            probs,
            config.max_m,
            config.min_m,
            config.cutoff,
            config.absolute_cutoff,
            config.do_rel_cutoff,
        )
    probs = probs[:m]

    if config.show_eigs:
        log_spectrum(
            probs, truncerr, A.scale,
            max_m=config.max_m, min_m=config.min_m, cutoff=config.cutoff,
            do_truncate=do_truncate, rel_cutoff=config.do_rel_cutoff,
            absolute_cutoff=config.absolute_cutoff,
        )

    counts = kept_per_block(results, split)
    kept = [(res, n) for res, n in zip(results, counts) if n > 0]
    if not kept:
        raise ResultIsZero("no singular values survived truncation")
    logger.debug(
        "svd_rank2: %d of %d blocks kept, %d states",
        len(kept), len(results), sum(counts),
    )

    sym = row.symmetry
    # Convention: bond on U/V flows against row/col, D carries the flipped copies
    uL = TensorIndex(
        sym,
        np.concatenate([np.full(n, res.block.row_charge) for res, n in kept]).astype(np.int32),
        -row.flow,
        label=config.left_index_name,
        tags=(config.left_type,),
    )
    vL = TensorIndex(
        sym,
        np.concatenate([np.full(n, res.block.col_charge) for res, n in kept]).astype(np.int32),
        -col.flow,
        label=config.right_index_name,
        tags=(config.right_type,),
    )

    U_blocks: dict[BlockKey, Any] = {}
    D_blocks: dict[BlockKey, Any] = {}
    V_blocks: dict[BlockKey, Any] = {}
    kept_eigs = []
    for res, n in kept:
        q_r, q_c = res.block.row_charge, res.block.col_charge
        U_blocks[(q_r, q_r)] = res.U[:, :n]
        D_blocks[(q_r, q_c)] = jnp.diag(jnp.asarray(res.s[:n]))
        V_blocks[(q_c, q_c)] = res.V[:, :n]
        kept_eigs.append(res.s[:n] ** 2)

    signfix = -1.0 if A.scale.sign < 0 else 1.0
    U = SymmetricTensor(U_blocks, (row, uL), scale=LogScale.from_real(signfix))
    D = SymmetricTensor(
        D_blocks, (uL.flip(), vL.flip()), A.divergence, A.scale * signfix
    )
    V = SymmetricTensor(V_blocks, (col, vL))

    eigs = np.sort(np.concatenate(kept_eigs))[::-1]
    return U, D, V, Spectrum(scaled_eigs(eigs, A.scale, 2), truncerr)


def diag_hermitian(
    rho: SymmetricTensor,
    config: DecompConfig | None = None,
) -> tuple[SymmetricTensor, SymmetricTensor, Spectrum]:
    """Block-sparse Hermitian eigendecomposition (not implemented)."""
    raise UnsupportedOperation(
        "diag_hermitian is not implemented for SymmetricTensor; "
        "decompose rho.to_dense_tensor() instead"
    )
