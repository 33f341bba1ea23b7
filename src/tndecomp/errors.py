"""Exceptions raised by the decomposition engine.

``ResultIsZero`` is the only recoverable outcome: it means the input was
valid but there is nothing to decompose (zero-dimension index, no populated
blocks), and sweep drivers are expected to treat the state as annihilated.
Every other error signals misuse and should not be retried.
"""

from __future__ import annotations


class DecompositionError(Exception):
    """Base class for all errors raised by tndecomp."""


class InvalidState(DecompositionError, RuntimeError):
    """Operation invoked on a structurally invalid object.

    Raised for a null LocalOp, a missing prime-level pairing, or a scale that
    cannot be represented as a finite real.
    """


class ResultIsZero(DecompositionError):
    """The decomposition is valid but mathematically empty."""


class UnsupportedOperation(DecompositionError, NotImplementedError):
    """Complex-valued or block-sparse Hermitian paths are not supported."""


class RankError(UnsupportedOperation, InvalidState):
    """Input tensor is not matrix-like (rank != 2)."""


class InvalidArgument(DecompositionError, ValueError):
    """Malformed configuration value."""
