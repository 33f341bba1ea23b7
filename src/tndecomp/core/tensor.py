"""Dense and block-sparse tensors with keyed legs and a separate scale.

A tensor is a buffer plus one TensorIndex per leg. Legs are addressed by
their ``(label, prime)`` key (or by a bare label, meaning prime 0), so leg
order never matters to callers: ``permute_to`` puts legs in any order and
``contract`` matches them by key.

Every tensor also carries a ``LogScale``. ``data`` and ``blocks`` expose the
raw buffer; ``todense()`` folds the scale in. Scaling a tensor only touches
the LogScale, which keeps long chains of contractions in range.

- :class:`DenseTensor` stores one JAX array.
- :class:`SymmetricTensor` stores one array per charge sector allowed by
  its divergence; every other sector is zero.

Both are JAX pytree nodes whose leaves are the arrays; keys, charges,
divergence and scale travel as static aux data.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, NamedTuple

import jax
import jax.numpy as jnp
import numpy as np

from tndecomp.core.index import FlowDirection, IndexKey, Label, TensorIndex
from tndecomp.core.scale import LogScale

# Block key: tuple of one charge value per leg identifying a charge sector
BlockKey = tuple[int, ...]

# Anything that names a leg: the index itself, its key, or a bare label (prime 0)
IndexRef = TensorIndex | tuple | Label


def _compute_valid_blocks(
    indices: tuple[TensorIndex, ...],
    divergence: int | None = None,
) -> list[BlockKey]:
    """Charge tuples (one per leg) whose flow-weighted fusion equals ``divergence``.

    Partial net charges are propagated leg by leg; the charge on the last
    leg is then solved for rather than enumerated.

    Args:
        indices:    Tuple of TensorIndex objects, one per tensor leg.
        divergence: Required net charge. Defaults to the group identity.

    Returns:
        Valid BlockKey tuples in sorted order.
    """
    if not indices:
        return [()] if not divergence else []

    sym = indices[0].symmetry
    target = sym.identity() if divergence is None else sym.reduce_scalar(divergence)

    # partial net charge -> charge tuples reaching it
    partial: dict[int, list[BlockKey]] = {sym.identity(): [()]}
    for idx in indices[:-1]:
        flow = int(idx.flow)
        grown: dict[int, list[BlockKey]] = {}
        for q in sorted(set(idx.charges.tolist())):
            for net, combos in partial.items():
                grown.setdefault(sym.reduce_scalar(net + flow * q), []).extend(
                    combo + (q,) for combo in combos
                )
        partial = grown

    last = indices[-1]
    # Reduced class -> charges on the last leg that represent it
    last_by_class: dict[int, list[int]] = {}
    for q in sorted(set(last.charges.tolist())):
        last_by_class.setdefault(sym.reduce_scalar(q), []).append(q)

    valid: list[BlockKey] = []
    for net, combos in partial.items():
        needed = sym.reduce_scalar(int(last.flow) * (target - net))
        for q in last_by_class.get(needed, []):
            valid.extend(combo + (q,) for combo in combos)
    return sorted(valid)


class _Sector(NamedTuple):
    key: BlockKey
    positions: tuple[np.ndarray, ...]

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(len(p) for p in self.positions)

    @property
    def grid(self) -> tuple[np.ndarray, ...]:
        """Open mesh selecting this sector inside the dense tensor."""
        return np.ix_(*self.positions)


def _sector(indices: tuple[TensorIndex, ...], key: BlockKey) -> _Sector:
    """Positions along each leg of the states carrying ``key``'s charges."""
    return _Sector(
        key,
        tuple(np.flatnonzero(idx.charges == q) for idx, q in zip(indices, key)),
    )


def _populated_sectors(
    indices: tuple[TensorIndex, ...],
    divergence: int | None,
) -> list[_Sector]:
    """Allowed sectors with no zero-length leg, sorted by key."""
    sectors = (_sector(indices, key) for key in _compute_valid_blocks(indices, divergence))
    return [s for s in sectors if all(s.shape)]


def _as_key(ref: IndexRef) -> IndexKey:
    if isinstance(ref, TensorIndex):
        return ref.key
    if isinstance(ref, tuple):
        return (ref[0], int(ref[1]))
    return (ref, 0)


def _reference_scale(*scales: LogScale) -> LogScale:
    """Largest-magnitude non-zero scale; used to combine buffers safely."""
    nonzero = [s for s in scales if not s.is_zero()]
    if not nonzero:
        return LogScale()
    return max(nonzero, key=lambda s: s.log_num).abs()


# ---------- Tensor Protocol ----------

class Tensor:
    """Operations shared by DenseTensor and SymmetricTensor.

    Leg bookkeeping (lookup, labels, prime levels) and scale arithmetic are
    written once here against ``_with_indices``/``_with_scale``; storage
    subclasses supply the rest.
    """

    @property
    def indices(self) -> tuple[TensorIndex, ...]:
        raise NotImplementedError

    @property
    def scale(self) -> LogScale:
        raise NotImplementedError

    @property
    def ndim(self) -> int:
        return len(self.indices)

    @property
    def dtype(self) -> Any:
        raise NotImplementedError

    def todense(self) -> jax.Array:
        raise NotImplementedError

    def conj(self) -> Tensor:
        raise NotImplementedError

    def dagger(self) -> Tensor:
        raise NotImplementedError

    def transpose(self, axes: tuple[int, ...]) -> Tensor:
        raise NotImplementedError

    def norm(self) -> jax.Array:
        raise NotImplementedError

    def to_dense_tensor(self) -> DenseTensor:
        raise NotImplementedError

    def is_complex(self) -> bool:
        return bool(jnp.issubdtype(self.dtype, jnp.complexfloating))

    def _with_indices(self, indices: tuple[TensorIndex, ...]) -> Tensor:
        raise NotImplementedError

    def _with_scale(self, scale: LogScale) -> Tensor:
        raise NotImplementedError

    # --- Index lookup ---

    def labels(self) -> tuple[Label, ...]:
        """Return the label of each leg in order."""
        return tuple(idx.label for idx in self.indices)

    def keys(self) -> tuple[IndexKey, ...]:
        """Return the ``(label, prime)`` key of each leg in order."""
        return tuple(idx.key for idx in self.indices)

    def axis(self, ref: IndexRef) -> int:
        """Position of the leg named by ``ref``.

        Raises:
            KeyError: If no leg matches.
        """
        key = _as_key(ref)
        for i, idx in enumerate(self.indices):
            if idx.key == key:
                return i
        raise KeyError(f"Index {key!r} not found in tensor with keys {self.keys()}")

    def index(self, ref: IndexRef) -> TensorIndex:
        return self.indices[self.axis(ref)]

    def has_index(self, ref: IndexRef) -> bool:
        key = _as_key(ref)
        return any(idx.key == key for idx in self.indices)

    def permute_to(self, keys: Sequence[IndexRef]) -> Tensor:
        """Transpose so the legs appear in the order given by ``keys``."""
        axes = tuple(self.axis(k) for k in keys)
        if len(axes) != self.ndim:
            raise ValueError(
                f"permute_to needs all {self.ndim} legs, got {len(axes)}"
            )
        if axes == tuple(range(self.ndim)):
            return self
        return self.transpose(axes)

    # --- Labels and prime levels ---

    def relabel(self, old: Label, new: Label) -> Tensor:
        """Rename one label at every prime level.

        Raises:
            KeyError: If no leg carries ``old``.
        """
        if old not in self.labels():
            raise KeyError(f"Label {old!r} not found in tensor with labels {self.labels()}")
        return self.relabels({old: new})

    def relabels(self, mapping: dict[Label, Label]) -> Tensor:
        """Rename several labels at once, {old: new}."""
        return self._with_indices(tuple(
            idx.relabel(mapping[idx.label]) if idx.label in mapping else idx
            for idx in self.indices
        ))

    def prime(self, *refs: IndexRef, inc: int = 1) -> Tensor:
        """Raise the prime level of the given legs (all legs if none given)."""
        keys = {_as_key(r) for r in refs}
        return self._with_indices(tuple(
            idx.prime_by(inc) if not keys or idx.key in keys else idx
            for idx in self.indices
        ))

    def noprime(self, *refs: IndexRef) -> Tensor:
        """Reset the prime level of the given legs (all legs if none given) to 0."""
        keys = {_as_key(r) for r in refs}
        return self._with_indices(tuple(
            idx.set_prime(0) if not keys or idx.key in keys else idx
            for idx in self.indices
        ))

    def map_prime(self, old: int, new: int) -> Tensor:
        """Move every leg at prime level ``old`` to level ``new``."""
        return self._with_indices(tuple(
            idx.set_prime(new) if idx.prime == old else idx
            for idx in self.indices
        ))

    def swap_prime(self, a: int, b: int) -> Tensor:
        """Exchange prime levels ``a`` and ``b`` on every leg."""
        def swap(idx: TensorIndex) -> TensorIndex:
            if idx.prime == a:
                return idx.set_prime(b)
            if idx.prime == b:
                return idx.set_prime(a)
            return idx
        return self._with_indices(tuple(swap(idx) for idx in self.indices))

    # --- Scale ---

    def scale_to(self, new_scale: LogScale | float) -> Tensor:
        """Rescale the raw storage so that ``scale == new_scale``.

        The represented value does not change.
        """
        raise NotImplementedError

    def __mul__(self, other: Any) -> Tensor:
        if isinstance(other, Tensor):
            from tndecomp.contraction.contractor import contract

            return contract(self, other)
        if isinstance(other, complex) or (
            hasattr(other, "dtype") and jnp.iscomplexobj(other)
        ):
            return self._map_buffers(lambda a: a * other)
        return self._with_scale(self.scale * float(other))

    def __rmul__(self, other: Any) -> Tensor:
        if isinstance(other, Tensor):
            return NotImplemented
        return self.__mul__(other)

    def __truediv__(self, other: Any) -> Tensor:
        return self._with_scale(self.scale / float(other))

    def __neg__(self) -> Tensor:
        return self._with_scale(-self.scale)

    def __sub__(self, other: Tensor) -> Tensor:
        return self + (-other)

    def _map_buffers(self, fn) -> Tensor:
        raise NotImplementedError

    def take_real(self) -> Tensor:
        """Drop the imaginary part of every buffer."""
        return self._map_buffers(jnp.real)

    def item(self) -> Any:
        """Value of a rank-0 tensor."""
        if self.ndim != 0:
            raise ValueError(f"item() requires a rank-0 tensor, got rank {self.ndim}")
        return self.todense().item()


# ---------- DenseTensor ----------

@jax.tree_util.register_pytree_node_class
class DenseTensor(Tensor):
    """One JAX array, its legs and a scale; no symmetry is exploited.

    Charges on the legs are carried along (so a dense tensor can be cut into
    blocks later) but not enforced.

    Args:
        data:    Array with one axis per index, each of the index's dimension.
        indices: One TensorIndex per leg, with distinct keys.
        scale:   Factor multiplying ``data``. Defaults to 1.

    Example:
        >>> t = DenseTensor(jnp.ones((2, 3)), (idx_a, idx_b), LogScale.from_real(2.0))
        >>> float(t.todense()[0, 0])
        2.0
    """

    def __init__(
        self,
        data: jax.Array,
        indices: tuple[TensorIndex, ...],
        scale: LogScale | None = None,
    ) -> None:
        data = jnp.asarray(data)
        indices = tuple(indices)
        dims = tuple(idx.dim for idx in indices)
        if data.shape != dims:
            raise ValueError(f"data shape {data.shape} does not match index dims {dims}")
        keys = [idx.key for idx in indices]
        if len(set(keys)) != len(keys):
            raise ValueError(f"duplicate index keys {keys}")
        self._data = data
        self._indices = indices
        self._scale = LogScale() if scale is None else scale

    # --- Pytree interface ---

    def tree_flatten(self) -> tuple[tuple[jax.Array], tuple[Any, ...]]:
        return (self._data,), (self._indices, self._scale)

    @classmethod
    def tree_unflatten(
        cls,
        aux: tuple[Any, ...],
        children: tuple[jax.Array],
    ) -> DenseTensor:
        indices, scale = aux
        obj = object.__new__(cls)
        obj._data = children[0]
        obj._indices = indices
        obj._scale = scale
        return obj

    # --- Tensor interface ---

    @property
    def indices(self) -> tuple[TensorIndex, ...]:
        return self._indices

    @property
    def data(self) -> jax.Array:
        """Raw buffer, not including ``scale``."""
        return self._data

    @property
    def scale(self) -> LogScale:
        return self._scale

    @property
    def ndim(self) -> int:
        return self._data.ndim

    @property
    def dtype(self) -> Any:
        return self._data.dtype

    def todense(self) -> jax.Array:
        if self._scale == LogScale():
            return self._data
        return self._data * self._scale.real()

    def _with_indices(self, indices: tuple[TensorIndex, ...]) -> DenseTensor:
        return DenseTensor(self._data, indices, self._scale)

    def _with_scale(self, scale: LogScale) -> DenseTensor:
        return DenseTensor(self._data, self._indices, scale)

    def _map_buffers(self, fn) -> DenseTensor:
        return DenseTensor(fn(self._data), self._indices, self._scale)

    def conj(self) -> DenseTensor:
        return DenseTensor(jnp.conj(self._data), self._indices, self._scale)

    def dagger(self) -> DenseTensor:
        """Complex conjugate with every leg's flow reversed."""
        return DenseTensor(
            jnp.conj(self._data),
            tuple(idx.flip() for idx in self._indices),
            self._scale,
        )

    def transpose(self, axes: tuple[int, ...]) -> DenseTensor:
        return DenseTensor(
            jnp.transpose(self._data, axes),
            tuple(self._indices[i] for i in axes),
            self._scale,
        )

    def norm(self) -> jax.Array:
        """Frobenius norm."""
        return jnp.linalg.norm(self._data.ravel()) * abs(self._scale.real0())

    def scale_to(self, new_scale: LogScale | float) -> DenseTensor:
        if not isinstance(new_scale, LogScale):
            new_scale = LogScale.from_real(new_scale)
        if self._scale == new_scale:
            return self
        if new_scale.is_zero():
            raise ZeroDivisionError("cannot scale a tensor to zero")
        factor = (self._scale / new_scale).real()
        return DenseTensor(self._data * factor, self._indices, new_scale)

    def to_dense_tensor(self) -> DenseTensor:
        return self

    def __add__(self, other: Tensor) -> DenseTensor:
        if not isinstance(other, DenseTensor):
            return NotImplemented
        if set(other.keys()) != set(self.keys()):
            raise ValueError(
                f"cannot add tensors with keys {self.keys()} and {other.keys()}"
            )
        other = other.permute_to(self.keys())
        ref = _reference_scale(self._scale, other._scale)
        data = (
            self._data * (self._scale / ref).real()
            + other._data * (other._scale / ref).real()
        )
        return DenseTensor(data, self._indices, ref)

    def __repr__(self) -> str:
        return (
            f"DenseTensor(shape={self._data.shape}, dtype={self.dtype}, "
            f"keys={self.keys()}, scale={self._scale!r})"
        )


# ---------- SymmetricTensor ----------

@jax.tree_util.register_pytree_node_class
class SymmetricTensor(Tensor):
    """Block-sparse tensor holding one dense array per allowed charge sector.

    A block is addressed by a ``BlockKey``, one charge per leg, and spans
    every state of each leg carrying that charge. A block may be stored only
    if its flow-weighted charges fuse to the tensor's ``divergence``::

        fuse_i(flow_i * charge_i) == divergence

    Absent blocks are exactly zero. Blocks are kept in sorted key order, so
    iteration is deterministic. The block arrays are the pytree leaves; the
    sorted keys, indices, divergence and scale are static aux data.

    Args:
        blocks:     BlockKey -> array for each stored sector.
        indices:    One TensorIndex per leg.
        divergence: Net charge of the tensor. Defaults to the identity.
        scale:      Overall factor shared by every block. Defaults to 1.

    Raises:
        ValueError: If a block breaks charge conservation or two legs share
            a key.

    Example:
        >>> t = SymmetricTensor.zeros(indices=(idx_in, idx_out))
        >>> t.n_blocks
        3
    """

    def __init__(
        self,
        blocks: dict[BlockKey, jax.Array],
        indices: tuple[TensorIndex, ...],
        divergence: int | None = None,
        scale: LogScale | None = None,
    ) -> None:
        indices = tuple(indices)
        if divergence is None:
            divergence = indices[0].symmetry.identity() if indices else 0
        elif indices:
            divergence = indices[0].symmetry.reduce_scalar(divergence)
        self._indices = indices
        self._blocks: dict[BlockKey, jax.Array] = dict(sorted(blocks.items()))
        self._divergence = int(divergence)
        self._scale = LogScale() if scale is None else scale
        self._validate()

    def _validate(self) -> None:
        keys = [idx.key for idx in self._indices]
        if len(set(keys)) != len(keys):
            raise ValueError(f"duplicate index keys {keys}")
        if not self._indices:
            return
        sym = self._indices[0].symmetry
        flows = [int(idx.flow) for idx in self._indices]
        for key, block in self._blocks.items():
            if len(key) != len(self._indices):
                raise ValueError(
                    f"Block key {key} has {len(key)} charges for {len(self._indices)} legs"
                )
            expected = _sector(self._indices, key).shape
            if tuple(block.shape) != expected:
                raise ValueError(
                    f"Block {key} has shape {tuple(block.shape)}, sector sizes are {expected}"
                )
            net = sym.net_charge(key, flows)
            if net != self._divergence:
                raise ValueError(
                    f"Block {key} breaks charge conservation: net charge {net}, "
                    f"divergence {self._divergence}"
                )

    @classmethod
    def _unchecked(
        cls,
        blocks: dict[BlockKey, jax.Array],
        indices: tuple[TensorIndex, ...],
        divergence: int,
        scale: LogScale,
    ) -> SymmetricTensor:
        obj = object.__new__(cls)
        obj._indices = indices
        obj._blocks = blocks
        obj._divergence = divergence
        obj._scale = scale
        return obj

    # --- Pytree interface ---

    def tree_flatten(self) -> tuple[list[jax.Array], tuple[Any, ...]]:
        keys = tuple(self._blocks)
        return list(self._blocks.values()), (keys, self._indices, self._divergence, self._scale)

    @classmethod
    def tree_unflatten(
        cls,
        aux: tuple[Any, ...],
        children: list[jax.Array],
    ) -> SymmetricTensor:
        keys, indices, divergence, scale = aux
        return cls._unchecked(dict(zip(keys, children)), indices, divergence, scale)

    # --- Factory methods ---

    @classmethod
    def zeros(
        cls,
        indices: tuple[TensorIndex, ...],
        dtype: Any = jnp.float64,
        divergence: int | None = None,
    ) -> SymmetricTensor:
        """Tensor with every allowed sector present and filled with zeros."""
        blocks = {
            s.key: jnp.zeros(s.shape, dtype=dtype)
            for s in _populated_sectors(indices, divergence)
        }
        return cls(blocks, indices, divergence)

    @classmethod
    def random_normal(
        cls,
        indices: tuple[TensorIndex, ...],
        key: jax.Array,
        dtype: Any = jnp.float64,
        stddev: float = 1.0,
        divergence: int | None = None,
    ) -> SymmetricTensor:
        """Tensor with every allowed sector drawn from N(0, stddev**2).

        Sector ``i`` (in sorted order) uses ``jax.random.fold_in(key, i)``.

        Args:
            indices:    One TensorIndex per leg.
            key:        JAX PRNG key.
            dtype:      Block dtype.
            stddev:     Standard deviation of the entries.
            divergence: Net charge of the tensor.
        """
        blocks = {
            s.key: jax.random.normal(jax.random.fold_in(key, i), s.shape, dtype=dtype) * stddev
            for i, s in enumerate(_populated_sectors(indices, divergence))
        }
        return cls(blocks, indices, divergence)

    @classmethod
    def from_dense(
        cls,
        data: jax.Array,
        indices: tuple[TensorIndex, ...],
        tol: float = 1e-12,
        divergence: int | None = None,
    ) -> SymmetricTensor:
        """Cut a dense array into the allowed sectors of ``indices``.

        Args:
            data:       Array whose shape matches the index dimensions.
            indices:    One TensorIndex per leg.
            tol:        Largest magnitude tolerated outside the allowed sectors.
            divergence: Net charge of the tensor.

        Raises:
            ValueError: On a shape mismatch, or if an entry outside every
                allowed sector exceeds ``tol``.
        """
        dims = tuple(idx.dim for idx in indices)
        data_np = np.asarray(data)
        if data_np.shape != dims:
            raise ValueError(
                f"data.shape {data_np.shape} does not match index dims {dims}"
            )

        covered = np.zeros(dims, dtype=bool)
        blocks: dict[BlockKey, jax.Array] = {}
        for s in _populated_sectors(indices, divergence):
            blocks[s.key] = jnp.asarray(data_np[s.grid])
            covered[s.grid] = True

        stray = np.abs(data_np[~covered])
        if np.any(stray > tol):
            raise ValueError(
                f"data has {int(np.sum(stray > tol))} non-zero elements outside "
                f"symmetry-allowed sectors (largest {stray.max():.3e})"
            )
        return cls(blocks, indices, divergence)

    # --- Tensor interface ---

    @property
    def indices(self) -> tuple[TensorIndex, ...]:
        return self._indices

    @property
    def scale(self) -> LogScale:
        return self._scale

    @property
    def divergence(self) -> int:
        return self._divergence

    @property
    def dtype(self) -> Any:
        if not self._blocks:
            return jnp.float64
        return next(iter(self._blocks.values())).dtype

    @property
    def n_blocks(self) -> int:
        return len(self._blocks)

    @property
    def blocks(self) -> dict[BlockKey, jax.Array]:
        """Stored blocks by key, raw (``scale`` not applied)."""
        return self._blocks

    def _raw_dense(self) -> jax.Array:
        result = np.zeros(tuple(idx.dim for idx in self._indices), dtype=np.dtype(self.dtype))
        for key, block in self._blocks.items():
            result[_sector(self._indices, key).grid] = np.asarray(block)
        return jnp.asarray(result)

    def todense(self) -> jax.Array:
        """Full dense array with the scale applied; allocates every zero sector."""
        raw = self._raw_dense()
        if self._scale == LogScale():
            return raw
        return raw * self._scale.real()

    def to_dense_tensor(self) -> DenseTensor:
        """Same tensor stored densely, scale kept separate."""
        return DenseTensor(self._raw_dense(), self._indices, self._scale)

    def _with_indices(self, indices: tuple[TensorIndex, ...]) -> SymmetricTensor:
        keys = [idx.key for idx in indices]
        if len(set(keys)) != len(keys):
            raise ValueError(f"duplicate index keys {keys}")
        return self._unchecked(self._blocks, indices, self._divergence, self._scale)

    def _with_scale(self, scale: LogScale) -> SymmetricTensor:
        return self._unchecked(self._blocks, self._indices, self._divergence, scale)

    def _map_buffers(self, fn) -> SymmetricTensor:
        return self._unchecked(
            {k: fn(v) for k, v in self._blocks.items()},
            self._indices, self._divergence, self._scale,
        )

    def conj(self) -> SymmetricTensor:
        """Complex conjugate of every block."""
        return self._map_buffers(jnp.conj)

    def dagger(self) -> SymmetricTensor:
        """Conjugate transpose: conjugated blocks, reversed flows.

        Charges are kept, so block keys are unchanged; the divergence becomes
        its dual.
        """
        sym = self._indices[0].symmetry if self._indices else None
        divergence = sym.dual_scalar(self._divergence) if sym else self._divergence
        return self._unchecked(
            {k: jnp.conj(v) for k, v in self._blocks.items()},
            tuple(idx.flip() for idx in self._indices),
            divergence,
            self._scale,
        )

    def transpose(self, axes: tuple[int, ...]) -> SymmetricTensor:
        """Reorder legs; block keys are permuted along with the blocks."""
        new_indices = tuple(self._indices[i] for i in axes)
        new_blocks: dict[BlockKey, jax.Array] = {}
        for key, block in self._blocks.items():
            new_blocks[tuple(key[i] for i in axes)] = jnp.transpose(block, axes)
        new_blocks = {k: new_blocks[k] for k in sorted(new_blocks)}
        return self._unchecked(new_blocks, new_indices, self._divergence, self._scale)

    def norm(self) -> jax.Array:
        """Frobenius norm across all blocks."""
        if not self._blocks:
            return jnp.zeros((), dtype=jnp.float64)
        sq_norms = [jnp.sum(jnp.abs(v) ** 2) for v in self._blocks.values()]
        return jnp.sqrt(sum(sq_norms)) * abs(self._scale.real0())

    def block_shapes(self) -> dict[BlockKey, tuple[int, ...]]:
        """Stored block shapes by key."""
        return {k: v.shape for k, v in self._blocks.items()}

    def scale_to(self, new_scale: LogScale | float) -> SymmetricTensor:
        if not isinstance(new_scale, LogScale):
            new_scale = LogScale.from_real(new_scale)
        if self._scale == new_scale:
            return self
        if new_scale.is_zero():
            raise ZeroDivisionError("cannot scale a tensor to zero")
        factor = (self._scale / new_scale).real()
        return self._unchecked(
            {k: v * factor for k, v in self._blocks.items()},
            self._indices, self._divergence, new_scale,
        )

    def item(self) -> Any:
        if self.ndim != 0:
            raise ValueError(f"item() requires a rank-0 tensor, got rank {self.ndim}")
        block = self._blocks.get(())
        if block is None:
            return 0.0
        return (block * self._scale.real()).item()

    def __add__(self, other: Tensor) -> SymmetricTensor:
        if not isinstance(other, SymmetricTensor):
            return NotImplemented
        if set(other.keys()) != set(self.keys()):
            raise ValueError(
                f"cannot add tensors with keys {self.keys()} and {other.keys()}"
            )
        if other._divergence != self._divergence:
            raise ValueError(
                f"cannot add tensors with divergence {self._divergence} "
                f"and {other._divergence}"
            )
        other = other.permute_to(self.keys())
        ref = _reference_scale(self._scale, other._scale)
        a = (self._scale / ref).real()
        b = (other._scale / ref).real()
        blocks: dict[BlockKey, jax.Array] = {}
        for key in sorted(set(self._blocks) | set(other._blocks)):
            if key in self._blocks and key in other._blocks:
                blocks[key] = self._blocks[key] * a + other._blocks[key] * b
            elif key in self._blocks:
                blocks[key] = self._blocks[key] * a
            else:
                blocks[key] = other._blocks[key] * b
        return self._unchecked(blocks, self._indices, self._divergence, ref)

    def __repr__(self) -> str:
        total_elements = sum(v.size for v in self._blocks.values())
        return (
            f"SymmetricTensor(ndim={self.ndim}, n_blocks={self.n_blocks}, "
            f"nnz={total_elements}, dtype={self.dtype}, keys={self.keys()}, "
            f"divergence={self._divergence}, scale={self._scale!r})"
        )


# ---------- Special tensors ----------

def combiner(
    indices: Sequence[TensorIndex],
    label: Label = "cmb",
    tags: tuple[str, ...] = ("Link",),
    block_sparse: bool = False,
) -> Tensor:
    """Build a tensor that fuses several legs into a single combined leg.

    Contracting ``combiner(T.indices[:k]) * T`` replaces the first ``k`` legs
    of T with one leg of dimension ``prod(dims)``, states in row-major order.
    The combiner's input legs are flipped copies of ``indices`` so they
    contract against the originals. The combined leg flows IN and carries
    the net flow-weighted charge of each product state.

    Args:
        indices:      Legs to combine, as they appear on the tensor to be combined.
        label:        Label of the combined leg.
        tags:         Tags of the combined leg.
        block_sparse: Return a SymmetricTensor instead of a DenseTensor.

    Returns:
        Combiner tensor with legs ``(*flipped(indices), combined)``.
    """
    if not indices:
        raise ValueError("combiner needs at least one index")
    sym = indices[0].symmetry
    fused = np.array([sym.identity()], dtype=np.int32)
    for idx in indices:
        effective = int(idx.flow) * idx.charges
        fused = sym.fuse(fused[:, None], effective[None, :]).ravel()
    combined = TensorIndex(
        sym, fused.astype(np.int32), FlowDirection.IN, label=label, tags=tags
    )
    dims = tuple(idx.dim for idx in indices)
    total = int(np.prod(dims))
    data = jnp.eye(total, dtype=jnp.float64).reshape(dims + (total,))
    legs = tuple(idx.flip() for idx in indices) + (combined,)
    if block_sparse:
        return SymmetricTensor.from_dense(data, legs)
    return DenseTensor(data, legs)


def tie_prime_pair(tensor: Tensor, ref: IndexRef) -> DenseTensor:
    """Contract a prime-0/prime-1 leg pair with a Kronecker delta.

    Equivalent to ``T * delta(s, s', s'')`` followed by dropping the prime on
    ``s''``: the result keeps only the diagonal ``T[.., s, .., s, ..]`` and
    carries a single prime-0 copy of the leg, moved to the last position.

    Symmetric tensors are densified first; the diagonal of a block-sparse
    operator is generally not charge-conserving on its own.
    """
    dense = tensor.to_dense_tensor()
    label, _ = _as_key(ref)
    a = dense.axis((label, 0))
    b = dense.axis((label, 1))
    diagonal = jnp.diagonal(dense.data, axis1=a, axis2=b)
    kept = tuple(idx for i, idx in enumerate(dense.indices) if i not in (a, b))
    return DenseTensor(diagonal, kept + (dense.indices[a],), dense.scale)
