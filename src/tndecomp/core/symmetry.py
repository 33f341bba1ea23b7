"""Abelian groups whose elements label the charge sectors of an index.

A charge is a plain integer. Each group is defined by :meth:`reduce`, which
maps any integer onto the canonical representative of its class: fusion is
addition followed by ``reduce`` and the dual is negation followed by
``reduce``. Everything works on numpy arrays; nothing here touches JAX.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np


class BaseSymmetry(ABC):
    """An abelian group of integer charges.

    Subclasses implement :meth:`reduce` and :attr:`order`, and must be
    hashable since they are part of every TensorIndex's identity.
    """

    @abstractmethod
    def reduce(self, charges: np.ndarray) -> np.ndarray:
        """Canonical representative of each charge."""

    @property
    @abstractmethod
    def order(self) -> int | None:
        """Number of distinct charges, or None for an infinite group."""

    def identity(self) -> int:
        return 0

    def fuse(self, charges_a: np.ndarray, charges_b: np.ndarray) -> np.ndarray:
        """Element-wise (broadcasting) group product of two charge arrays."""
        return self.reduce(np.asarray(charges_a) + np.asarray(charges_b))

    def dual(self, charges: np.ndarray) -> np.ndarray:
        """Element-wise group inverse."""
        return self.reduce(-np.asarray(charges))

    def fuse_many(self, charge_list: Sequence[np.ndarray]) -> np.ndarray:
        if not charge_list:
            raise ValueError("charge_list must be non-empty")
        return self.reduce(np.sum(np.stack([np.asarray(c) for c in charge_list]), axis=0))

    def net_charge(self, charges: Iterable[int], flows: Iterable[int]) -> int:
        """Flow-weighted fusion of one charge per leg.

        A block of a tensor may be populated only if this equals the
        tensor's divergence.

        Args:
            charges: One charge value per leg.
            flows:   +1 (IN) or -1 (OUT) per leg.

        Returns:
            The reduced net charge as a Python int.
        """
        total = sum(int(f) * int(q) for q, f in zip(charges, flows))
        return self.reduce_scalar(total)

    def reduce_scalar(self, charge: int) -> int:
        return int(self.reduce(np.array([charge], dtype=np.int64))[0])

    def dual_scalar(self, charge: int) -> int:
        return self.reduce_scalar(-int(charge))


@dataclass(frozen=True)
class U1Symmetry(BaseSymmetry):
    """U(1): unbounded integer charges, fusion by addition.

    Conserved particle number or total Sz.

    Example:
        >>> sym = U1Symmetry()
        >>> sym.fuse(np.array([0, 1, -1]), np.array([1, -1, 0]))
        array([1, 0, -1])
    """

    def reduce(self, charges: np.ndarray) -> np.ndarray:
        return np.asarray(charges)

    @property
    def order(self) -> None:
        return None


@dataclass(frozen=True)
class ZnSymmetry(BaseSymmetry):
    """Z_n: charges modulo ``n`` (parity for n = 2).

    Example:
        >>> sym = ZnSymmetry(3)
        >>> sym.fuse(np.array([1, 2]), np.array([2, 2]))
        array([0, 1])
    """

    n: int

    def __post_init__(self) -> None:
        if self.n < 2:
            raise ValueError(f"n must be >= 2, got {self.n}")

    def reduce(self, charges: np.ndarray) -> np.ndarray:
        return np.mod(charges, self.n)

    @property
    def order(self) -> int:
        return self.n

    def __repr__(self) -> str:
        return f"ZnSymmetry({self.n})"
