"""Legs, scales and the dense and block-sparse tensor types."""

from tndecomp.core.index import FlowDirection, IndexKey, Label, TensorIndex
from tndecomp.core.scale import LogScale
from tndecomp.core.symmetry import BaseSymmetry, U1Symmetry, ZnSymmetry
from tndecomp.core.tensor import (
    BlockKey,
    DenseTensor,
    IndexRef,
    SymmetricTensor,
    Tensor,
    combiner,
    tie_prime_pair,
)

__all__ = [
    "BaseSymmetry", "U1Symmetry", "ZnSymmetry",
    "FlowDirection", "IndexKey", "IndexRef", "Label", "TensorIndex",
    "LogScale",
    "BlockKey", "DenseTensor", "SymmetricTensor", "Tensor",
    "combiner", "tie_prime_pair",
]
