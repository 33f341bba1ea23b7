"""Truncated SVD and Hermitian eigendecomposition of rank-2 DenseTensors.

Output conventions (shared with the block-sparse path)::

    A  ~=  U(row, uL) * D(uL, vL) * V(col, vL)
    rho ~= U(active, n) * D(n', n) * U'(active', n')

New bond legs are flow-reversed copies of each other on the two tensors
they connect, so the factors contract back with ``*``. The tensor's scale
is carried by D; if it is negative, U and D both pick up a factor -1 so the
diagonal of D stays non-negative.
"""

from __future__ import annotations

import logging

import jax.numpy as jnp
import numpy as np

from tndecomp.core.index import TensorIndex
from tndecomp.core.scale import LogScale
from tndecomp.core.tensor import DenseTensor, IndexRef, Tensor
from tndecomp.decomp.config import DecompConfig
from tndecomp.decomp.kernels import eigh, svd
from tndecomp.decomp.truncation import (
    Spectrum,
    clamp_negative_tail,
    log_spectrum,
    truncate,
)
from tndecomp.errors import InvalidState, RankError, ResultIsZero, UnsupportedOperation

logger = logging.getLogger(__name__)


def check_rank2_real(tensor: Tensor, operation: str) -> None:
    """Raise unless ``tensor`` is a real rank-2 tensor."""
    if tensor.ndim != 2:
        raise RankError(f"{operation} requires a rank-2 tensor, got rank {tensor.ndim}")
    if tensor.is_complex():
        raise UnsupportedOperation(f"complex {operation} is not implemented")


def resolve_row_col(
    tensor: Tensor,
    row_index: IndexRef,
    col_index: IndexRef,
) -> tuple[TensorIndex, TensorIndex, bool]:
    """Look up the row/column legs; the flag is True if row is axis 1."""
    row = tensor.index(row_index)
    col = tensor.index(col_index)
    if row.key == col.key:
        raise InvalidState(f"row and column must be different legs, both are {row.key!r}")
    return row, col, tensor.axis(row) != 0


def scaled_eigs(probs: np.ndarray, scale: LogScale, power: int) -> np.ndarray:
    """Multiply weights by ``scale**power`` when the scale is a finite real."""
    if scale.is_finite_real():
        return probs * scale.real() ** power
    logger.warning(
        "scale %r is not a finite real; reported eigenvalues exclude it", scale
    )
    return probs


def bond_pair(
    template: TensorIndex,
    dim: int,
    label: str,
    tag: str,
) -> TensorIndex:
    """Uncharged bond leg flowing against ``template``."""
    return TensorIndex(
        template.symmetry,
        np.full(dim, template.symmetry.identity(), dtype=np.int32),
        -template.flow,
        label=label,
        tags=(tag,),
    )


def svd_rank2(
    A: DenseTensor,
    row_index: IndexRef,
    col_index: IndexRef,
    config: DecompConfig | None = None,
) -> tuple[DenseTensor, DenseTensor, DenseTensor, Spectrum]:
    """Truncated SVD of a rank-2 DenseTensor.

    Args:
        A:         Real rank-2 tensor.
        row_index: Leg that becomes the row of the matrix (and a leg of U).
        col_index: Leg that becomes the column (and a leg of V).
        config:    Truncation and naming options; truncates by default.

    Returns:
        ``(U, D, V, spectrum)`` with ``U(row, uL)``, diagonal ``D(uL, vL)``
        and ``V(col, vL)``. ``spectrum.eigs`` are the kept squared singular
        values times ``A.scale**2``.

    Raises:
        RankError:            If A is not rank 2.
        UnsupportedOperation: If A is complex.
        ResultIsZero:         If the row or column leg has dimension 0.
    """
    config = config or DecompConfig()
    check_rank2_real(A, "svd")
    row, col, transposed = resolve_row_col(A, row_index, col_index)
    if row.dim == 0 or col.dim == 0:
        raise ResultIsZero(f"svd of a {row.dim}x{col.dim} matrix")

    matrix = A.data.T if transposed else A.data
    UU, DD, VV = svd(matrix, config.svd_threshold, config.svd_n_orth_pass)

    do_truncate = config.should_truncate(default=True)
    probs = np.asarray(DD, dtype=np.float64) ** 2
    m = len(probs)
    truncerr = 0.0
    if do_truncate:
        m, truncerr, _ = truncate(
            probs,
            config.max_m,
            config.min_m,
            config.cutoff,
            config.absolute_cutoff,
            config.do_rel_cutoff,
        )
        probs = probs[:m]
        UU, DD, VV = UU[:, :m], DD[:m], VV[:, :m]

    if config.show_eigs:
        log_spectrum(
            probs, truncerr, A.scale,
            max_m=config.max_m, min_m=config.min_m, cutoff=config.cutoff,
            do_truncate=do_truncate, rel_cutoff=config.do_rel_cutoff,
            absolute_cutoff=config.absolute_cutoff,
        )

    # Convention: bond on U/V flows against row/col, D carries the flipped copies
    uL = bond_pair(row, m, config.left_index_name, config.left_type)
    vL = bond_pair(col, m, config.right_index_name, config.right_type)

    signfix = -1.0 if A.scale.sign < 0 else 1.0
    U = DenseTensor(UU, (row, uL), LogScale.from_real(signfix))
    D = DenseTensor(jnp.diag(DD), (uL.flip(), vL.flip()), A.scale * signfix)
    V = DenseTensor(VV, (col, vL))

    logger.debug("svd_rank2: kept %d of %d states", m, min(row.dim, col.dim))
    return U, D, V, Spectrum(scaled_eigs(probs, A.scale, 2), truncerr)


def _active_pair(rho: Tensor) -> tuple[TensorIndex, TensorIndex]:
    active = next((idx for idx in rho.indices if idx.prime == 0), None)
    if active is None:
        raise InvalidState(f"tensor must have one unprimed index, got {rho.keys()}")
    partner_key = (active.label, 1)
    if not rho.has_index(partner_key):
        raise InvalidState(
            f"unprimed index {active.key!r} has no primed partner in {rho.keys()}"
        )
    primed = rho.index(partner_key)
    if primed.dim != active.dim:
        raise InvalidState(
            f"legs {active.key!r} and {primed.key!r} have dimensions "
            f"{active.dim} and {primed.dim}"
        )
    return active, primed


def diag_hermitian(
    rho: DenseTensor,
    config: DecompConfig | None = None,
) -> tuple[DenseTensor, DenseTensor, Spectrum]:
    """Eigendecomposition of a real symmetric rank-2 DenseTensor.

    ``rho`` must carry one unprimed leg ``s`` and its primed partner ``s'``.
    Eigenvalues come out descending. Truncation is off unless
    ``config.truncate`` is True.

    The new leg is named ``config.left_index_name`` rather than after the
    active leg: reusing ``s`` would give U two legs with the key ``(s, 0)``.
    It keeps the active leg's tags and flows against it.

    Args:
        rho:    Real symmetric tensor with legs ``s`` and ``s'``.
        config: Truncation and naming options.

    Returns:
        ``(U, D, spectrum)`` with ``U(s, n)`` and diagonal ``D(n', n)``, the
        new leg ``n`` labelled ``config.left_index_name``.
        ``spectrum.eigs`` are the kept eigenvalues times ``rho.scale``.

    Raises:
        RankError:            If rho is not rank 2.
        UnsupportedOperation: If rho is complex.
        InvalidState:         If rho lacks an unprimed/primed leg pair.
        ResultIsZero:         If the legs have dimension 0.
    """
    config = config or DecompConfig()
    check_rank2_real(rho, "diag_hermitian")
    active, _ = _active_pair(rho)
    if active.dim == 0:
        raise ResultIsZero("diag_hermitian of a 0x0 matrix")

    # eigh sorts ascending; with a negative scale the raw buffer is -rho
    if rho.scale.sign < 0:
        rho = rho.scale_to(-rho.scale)

    matrix = rho.data if rho.axis(active) == 0 else rho.data.T
    evals, evecs = eigh(matrix)
    DD = np.asarray(evals, dtype=np.float64)[::-1].copy()
    UU = evecs[:, ::-1]

    do_truncate = config.should_truncate(default=False)
    m = len(DD)
    truncerr = 0.0
    if do_truncate:
        DD = clamp_negative_tail(DD)
        m, truncerr, _ = truncate(
            DD,
            config.max_m,
            config.min_m,
            config.cutoff,
            config.absolute_cutoff,
            config.do_rel_cutoff,
        )
        DD = DD[:m]
        UU = UU[:, :m]

    if config.show_eigs:
        log_spectrum(
            DD, truncerr, rho.scale,
            max_m=config.max_m, min_m=config.min_m, cutoff=config.cutoff,
            do_truncate=do_truncate, rel_cutoff=config.do_rel_cutoff,
            absolute_cutoff=config.absolute_cutoff,
            power=1,
        )

    newmid = TensorIndex(
        active.symmetry,
        np.full(m, active.symmetry.identity(), dtype=np.int32),
        -active.flow,
        label=config.left_index_name,
        tags=active.tags,
    )
    U = DenseTensor(UU, (active, newmid))
    D = DenseTensor(
        jnp.diag(jnp.asarray(DD)), (newmid.prime_by(1), newmid.flip()), rho.scale
    )

    logger.debug("diag_hermitian: kept %d of %d states", m, active.dim)
    return U, D, Spectrum(scaled_eigs(DD, rho.scale, 1), truncerr)
