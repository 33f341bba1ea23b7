"""MPS building blocks: the local effective operator."""

from tndecomp.mps.localop import Direction, LocalOp

__all__ = ["Direction", "LocalOp"]
