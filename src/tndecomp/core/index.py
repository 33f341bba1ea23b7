"""Leg metadata: charges, flow, and the ``(label, prime)`` key.

Legs are matched for contraction by key alone. Charges and flow only have
to agree for block-sparse tensors, where a leg flowing IN on one tensor
meets the same charges flowing OUT on the other. Tags record a leg's role
("Site", "Link", ...) and travel with it through every transformation.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum

import numpy as np

from tndecomp.core.symmetry import BaseSymmetry

Label = str | int

IndexKey = tuple[Label, int]


class FlowDirection(IntEnum):
    """Sign with which a leg's charges enter the conservation sum.

    A block of a symmetric tensor may be non-zero only when
    ``sum(flow * charge)`` over its legs reduces to the divergence.
    """

    IN = 1
    OUT = -1

    def __neg__(self) -> FlowDirection:
        return FlowDirection(-int(self))


@dataclass(frozen=True, slots=True)
class TensorIndex:
    """One leg of a tensor.

    Attributes:
        symmetry: Group the charges belong to.
        charges:  int32 array with the charge of each basis state; its
                  length is the leg dimension. Stored reduced by
                  ``symmetry.reduce``, so each sector has one charge value.
        flow:     IN or OUT.
        label:    Name of the leg.
        prime:    Prime level, >= 0. ``s`` and ``s'`` are different legs.
        tags:     Role tags such as ``("Site",)``.

    Example:
        >>> s = TensorIndex(U1Symmetry(), np.array([-1, 1]), FlowDirection.IN, label="s")
        >>> s.prime_by(1).key
        ('s', 1)
    """

    symmetry: BaseSymmetry
    charges: np.ndarray
    flow: FlowDirection
    label: Label = ""
    prime: int = 0
    tags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        charges = np.asarray(self.charges)
        if charges.ndim != 1:
            raise ValueError(f"charges must be 1-D, got shape {charges.shape}")
        if self.prime < 0:
            raise ValueError(f"prime level must be >= 0, got {self.prime}")
        # frozen dataclass: normalize through object.__setattr__
        reduced = np.asarray(self.symmetry.reduce(charges)).astype(np.int32, copy=False)
        object.__setattr__(self, "charges", reduced)
        if isinstance(self.tags, str):
            object.__setattr__(self, "tags", (self.tags,))
        if not isinstance(self.flow, FlowDirection):
            object.__setattr__(self, "flow", FlowDirection(int(self.flow)))

    @property
    def dim(self) -> int:
        return len(self.charges)

    @property
    def key(self) -> IndexKey:
        return (self.label, self.prime)

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def flip(self) -> TensorIndex:
        """Same leg flowing the other way; charges are unchanged."""
        return replace(self, flow=-self.flow)

    def relabel(self, new_label: Label) -> TensorIndex:
        return replace(self, label=new_label)

    def set_prime(self, level: int) -> TensorIndex:
        return replace(self, prime=level)

    def prime_by(self, inc: int = 1) -> TensorIndex:
        return replace(self, prime=self.prime + inc)

    def sectors(self) -> list[tuple[int, int]]:
        """``(charge, multiplicity)`` pairs in order of first appearance."""
        counts: dict[int, int] = {}
        for q in self.charges.tolist():
            counts[q] = counts.get(q, 0) + 1
        return list(counts.items())

    def _identity(self) -> tuple:
        return (self.symmetry, self.charges.tobytes(), int(self.flow),
                self.label, self.prime, self.tags)

    def __hash__(self) -> int:
        return hash(self._identity())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TensorIndex):
            return NotImplemented
        return self._identity() == other._identity()

    def __repr__(self) -> str:
        primes = "'" * self.prime
        return (
            f"TensorIndex({self.label!r}{primes}, dim={self.dim}, "
            f"{self.flow.name}, {self.symmetry!r}, tags={self.tags})"
        )
