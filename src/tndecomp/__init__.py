"""tndecomp: symmetry-aware truncated spectral decompositions in JAX.

Decomposes rank-2 dense or block-sparse tensors (SVD and Hermitian
eigendecomposition), truncating the spectrum with a single policy shared by
both paths, and builds the two-site density matrices DMRG-style sweeps feed
into them.

.. note::
    Importing ``tndecomp`` enables JAX 64-bit mode (``jax_enable_x64``).
    All tensors default to ``float64``.

Quick start::

    import jax
    import numpy as np
    from tndecomp import (
        U1Symmetry, TensorIndex, FlowDirection, SymmetricTensor,
        DecompConfig, svd,
    )

    u1 = U1Symmetry()
    row = TensorIndex(u1, np.array([0, 0, 1, 1, 1], dtype=np.int32), FlowDirection.IN, label="a")
    col = TensorIndex(u1, np.array([0, 0, 1, 1], dtype=np.int32), FlowDirection.OUT, label="b")
    A = SymmetricTensor.random_normal((row, col), key=jax.random.PRNGKey(0))

    U, D, V, spectrum = svd(A, "a", "b", DecompConfig(max_m=3))
    print(spectrum.eigs, spectrum.truncation_error)
    approx = U * D * V           # contracts the new "ul" and "vl" legs
"""

import jax

jax.config.update("jax_enable_x64", True)

from tndecomp.contraction.contractor import contract, contract_with_subscripts
from tndecomp.core.index import FlowDirection, IndexKey, Label, TensorIndex
from tndecomp.core.scale import LogScale
from tndecomp.core.symmetry import BaseSymmetry, U1Symmetry, ZnSymmetry
from tndecomp.core.tensor import (
    BlockKey,
    DenseTensor,
    SymmetricTensor,
    Tensor,
    combiner,
    tie_prime_pair,
)
from tndecomp.decomp import (
    MAX_M,
    MIN_CUT,
    DecompConfig,
    Spectrum,
    TruncationResult,
    clamp_negative_tail,
    diag_hermitian,
    svd,
    truncate,
)
from tndecomp.errors import (
    DecompositionError,
    InvalidArgument,
    InvalidState,
    RankError,
    ResultIsZero,
    UnsupportedOperation,
)
from tndecomp.mps.localop import Direction, LocalOp

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Symmetries
    "BaseSymmetry",
    "U1Symmetry",
    "ZnSymmetry",
    # Index
    "FlowDirection",
    "IndexKey",
    "Label",
    "TensorIndex",
    # Tensors
    "LogScale",
    "Tensor",
    "DenseTensor",
    "SymmetricTensor",
    "BlockKey",
    "combiner",
    "tie_prime_pair",
    # Contraction
    "contract",
    "contract_with_subscripts",
    # Decompositions
    "DecompConfig",
    "MAX_M",
    "MIN_CUT",
    "Spectrum",
    "TruncationResult",
    "clamp_negative_tail",
    "truncate",
    "svd",
    "diag_hermitian",
    # Local operator
    "Direction",
    "LocalOp",
    # Errors
    "DecompositionError",
    "InvalidArgument",
    "InvalidState",
    "RankError",
    "ResultIsZero",
    "UnsupportedOperation",
]
