"""Truncated decompositions of rank-2 tensors.

:func:`svd` and :func:`diag_hermitian` dispatch on the tensor type to the
dense or the block-sparse implementation.
"""

from __future__ import annotations

from tndecomp.core.tensor import DenseTensor, IndexRef, SymmetricTensor, Tensor
from tndecomp.decomp import blocksparse, dense
from tndecomp.decomp.config import MAX_M, MIN_CUT, OPTION_NAMES, DecompConfig
from tndecomp.decomp.kernels import eigh as eigh_kernel
from tndecomp.decomp.kernels import svd as svd_kernel
from tndecomp.decomp.truncation import (
    Spectrum,
    TruncationResult,
    clamp_negative_tail,
    truncate,
)
from tndecomp.errors import UnsupportedOperation


def svd(
    A: Tensor,
    row_index: IndexRef,
    col_index: IndexRef,
    config: DecompConfig | None = None,
) -> tuple[Tensor, Tensor, Tensor, Spectrum]:
    """Truncated SVD ``A ~= U * D * V`` of a rank-2 tensor.

    See :func:`tndecomp.decomp.dense.svd_rank2` and
    :func:`tndecomp.decomp.blocksparse.svd_rank2`.
    """
    if isinstance(A, SymmetricTensor):
        return blocksparse.svd_rank2(A, row_index, col_index, config)
    if isinstance(A, DenseTensor):
        return dense.svd_rank2(A, row_index, col_index, config)
    raise UnsupportedOperation(f"svd is not implemented for {type(A).__name__}")


def diag_hermitian(
    rho: Tensor,
    config: DecompConfig | None = None,
) -> tuple[Tensor, Tensor, Spectrum]:
    """Eigendecomposition ``rho ~= U * D * U'`` of a rank-2 symmetric tensor."""
    if isinstance(rho, SymmetricTensor):
        return blocksparse.diag_hermitian(rho, config)
    if isinstance(rho, DenseTensor):
        return dense.diag_hermitian(rho, config)
    raise UnsupportedOperation(
        f"diag_hermitian is not implemented for {type(rho).__name__}"
    )


__all__ = [
    "DecompConfig",
    "MAX_M",
    "MIN_CUT",
    "OPTION_NAMES",
    "Spectrum",
    "TruncationResult",
    "clamp_negative_tail",
    "diag_hermitian",
    "eigh_kernel",
    "svd",
    "svd_kernel",
    "truncate",
]
