"""Effective operator of one or two MPS sites sandwiched by environments.

::

    .-              -.
    |    |      |    |
    L - Op1 -- Op2 - R
    |    |      |    |
    '-              -'

Op1/Op2 are MPO tensors with unprimed (ket) and primed (bra) site legs.
L and R are environment tensors whose primed legs face the bra side. Any of
L/R may be absent, in which case it is skipped.

A LocalOp stores references to the tensors it is given and never copies
them; ``update`` simply swaps the references.
"""

from __future__ import annotations

import logging
from enum import Enum

from tndecomp.core.index import TensorIndex
from tndecomp.core.tensor import DenseTensor, Tensor, tie_prime_pair
from tndecomp.errors import InvalidArgument, InvalidState, UnsupportedOperation

logger = logging.getLogger(__name__)

# Relative size of an imaginary part tolerated by expect()
_IMAG_TOL = 1e-10


class Direction(Enum):
    """Side of a two-site wavefunction a density matrix is built for."""

    FROM_LEFT = "from_left"
    FROM_RIGHT = "from_right"


def _site_index(op: Tensor) -> TensorIndex:
    for idx in op.indices:
        if idx.prime == 0 and idx.has_tag("Site"):
            return idx
    raise InvalidState(f"operator has no unprimed 'Site' index: {op.keys()}")


def _prime_pair(tensor: Tensor) -> TensorIndex | None:
    for idx in tensor.indices:
        if idx.prime == 0 and tensor.has_index((idx.label, 1)):
            return idx
    return None


class LocalOp:
    """Two-site (or one-site) effective operator ``L * Op1 * Op2 * R``.

    Args:
        op1: Operator on the first (left) site.
        op2: Operator on the second site. Omit for a one-site LocalOp.
        L:   Left environment, or None.
        R:   Right environment, or None.

    A LocalOp constructed without arguments is null: every accessor and
    operation raises InvalidState until ``update`` is called.

    Example:
        >>> H = LocalOp(W1, W2, L, R)
        >>> energy = H.expect(phi)
        >>> rho = H.delta_rho(phi, combiner(...), Direction.FROM_LEFT)
    """

    def __init__(
        self,
        op1: Tensor | None = None,
        op2: Tensor | None = None,
        L: Tensor | None = None,
        R: Tensor | None = None,
    ) -> None:
        self._op1: Tensor | None = None
        self._op2: Tensor | None = None
        self._L: Tensor | None = None
        self._R: Tensor | None = None
        self._num_center = 0
        self._size: int | None = None
        if op1 is not None:
            self.update(op1, op2, L, R)
        elif op2 is not None:
            raise InvalidArgument("op2 given without op1")
        elif L is not None or R is not None:
            self.update_lr(L, R)

    # --- Updating ---

    def update(
        self,
        op1: Tensor,
        op2: Tensor | None = None,
        L: Tensor | None = None,
        R: Tensor | None = None,
    ) -> None:
        """Point this LocalOp at new operators and environments."""
        self._op1 = op1
        self._op2 = op2
        self._L = L
        self._R = R
        self._num_center = 2 if op2 is not None else 1
        self._size = None

    def update_lr(self, L: Tensor | None, R: Tensor | None) -> None:
        """Environment-only view (``num_center == 0``); site operators are dropped."""
        self._op1 = None
        self._op2 = None
        self._L = L
        self._R = R
        self._num_center = 0
        self._size = None

    # --- Accessors ---

    def __bool__(self) -> bool:
        return any(
            t is not None for t in (self._op1, self._op2, self._L, self._R)
        )

    def _require(self, tensor: Tensor | None, name: str) -> Tensor:
        if not self:
            raise InvalidState("LocalOp is default constructed")
        if tensor is None:
            raise InvalidState(f"LocalOp has no {name}")
        return tensor

    @property
    def op1(self) -> Tensor:
        return self._require(self._op1, "op1")

    @property
    def op2(self) -> Tensor:
        return self._require(self._op2, "op2")

    @property
    def L(self) -> Tensor:
        return self._require(self._L, "L")

    @property
    def R(self) -> Tensor:
        return self._require(self._R, "R")

    @property
    def l_is_null(self) -> bool:
        return self._L is None

    @property
    def r_is_null(self) -> bool:
        return self._R is None

    @property
    def num_center(self) -> int:
        return self._num_center

    @num_center.setter
    def num_center(self, value: int) -> None:
        if value not in (1, 2):
            raise InvalidArgument(f"num_center must be 1 or 2, got {value}")
        if value != self._num_center:
            self._num_center = value
            self._size = None

    def _site_ops(self) -> list[Tensor]:
        """Site operators in multiplication order (Op2 before Op1)."""
        if self._num_center == 2:
            return [self.op2, self.op1]
        if self._num_center == 1:
            return [self.op1]
        return []

    # --- Operator methods ---

    def product(self, phi: Tensor) -> Tensor:
        """Apply the effective operator to ``phi``.

        Multiplies L first when present, otherwise R, then the site
        operators, then the remaining environment. The primed output legs
        are unprimed so the result has the same keys as ``phi``.
        """
        if not self:
            raise InvalidState("LocalOp is null")
        phip = phi
        if self.l_is_null:
            if not self.r_is_null:
                phip = phip * self._R
            for op in self._site_ops():
                phip = phip * op
        else:
            phip = phip * self._L
            for op in self._site_ops():
                phip = phip * op
            if not self.r_is_null:
                phip = phip * self._R
        return phip.map_prime(1, 0)

    def expect(self, phi: Tensor) -> float:
        """Real expectation value ``<phi|H|phi>`` (not normalised by ``<phi|phi>``).

        Raises:
            UnsupportedOperation: If the result has a non-negligible
                imaginary part (operator not Hermitian).
        """
        phip = self.product(phi)
        value = complex((phip.dagger() * phi).item())
        if abs(value.imag) > _IMAG_TOL * max(1.0, abs(value.real)):
            raise UnsupportedOperation(
                f"expectation value {value} is not real; operator is not Hermitian"
            )
        return value.real

    def delta_rho(
        self,
        AA: Tensor,
        combine: Tensor,
        direction: Direction,
    ) -> Tensor:
        """Density-matrix correction from applying one side of the operator.

        ``AA`` is multiplied by L and Op1 (``FROM_LEFT``) or R and Op2
        (``FROM_RIGHT``), unprimed, and fused with ``combine``. Squaring the
        result against its own conjugate over every leg but the combined one
        gives a matrix ``M(c, c')``; ``(M + M^dagger) / 2`` is returned.
        """
        drho = AA
        if direction is Direction.FROM_LEFT:
            if not self.l_is_null:
                drho = drho * self._L
            drho = drho * self.op1
        elif direction is Direction.FROM_RIGHT:
            if not self.r_is_null:
                drho = drho * self._R
            drho = drho * self.op2
        else:
            raise InvalidArgument(f"unknown direction {direction!r}")

        drho = combine * drho.noprime()
        common = [key for key in combine.keys() if drho.has_index(key)]
        if len(common) != 1:
            raise InvalidState(
                f"combiner shares {len(common)} legs with the product, expected 1"
            )
        ci = common[0]
        drho = drho * drho.prime(ci).dagger()
        return (drho + drho.swap_prime(0, 1).dagger()) / 2.0

    def diag(self) -> DenseTensor:
        """Diagonal of the effective operator, as a real DenseTensor.

        Site operators are tied on their 'Site' leg pair, environments on
        their first unprimed/primed leg pair (or multiplied in whole when
        they have none).
        """
        if not self:
            raise InvalidState("LocalOp is null")
        diag: Tensor | None = None
        for op in reversed(self._site_ops()):
            tied = tie_prime_pair(op, _site_index(op).key).noprime()
            diag = tied if diag is None else diag * tied

        for env in (self._L, self._R):
            if env is None:
                continue
            pair = _prime_pair(env)
            if pair is None:
                factor = env.to_dense_tensor()
            else:
                factor = tie_prime_pair(env, pair.key).noprime()
            diag = factor if diag is None else diag * factor

        return diag.dagger().take_real().to_dense_tensor()

    def size(self) -> int:
        """Linear dimension of the operator as a square matrix (memoised)."""
        if not self:
            raise InvalidState("LocalOp is default constructed")
        if self._size is None:
            size = 1
            for env in (self._L, self._R):
                if env is None:
                    continue
                primed = next((idx for idx in env.indices if idx.prime > 0), None)
                if primed is not None:
                    size *= primed.dim
            for op in self._site_ops():
                size *= _site_index(op).dim
            self._size = int(size)
            logger.debug("LocalOp size = %d", self._size)
        return self._size

    def __repr__(self) -> str:
        if not self:
            return "LocalOp(null)"
        return (
            f"LocalOp(num_center={self._num_center}, "
            f"L={'-' if self._L is None else self._L.keys()}, "
            f"R={'-' if self._R is None else self._R.keys()})"
        )
