r"""Contraction of tensors by matching ``(label, prime)`` keys.

Primary API::

    contract(\*tensors, output_keys=None, optimize="auto") -> Tensor

A key shared by two tensors is summed over; a key appearing once is an
output leg. Priming a leg therefore takes it out of a contraction without
renaming it. ``A * B`` on two tensors is shorthand for ``contract(A, B)``.

Keys are translated to an einsum subscript string (:func:`plan_contraction`)
which opt_einsum executes on the JAX backend. Block-sparse tensors are folded
in pairwise, each pair matched block by block on the charges of their shared
legs. Scales multiply; block-sparse divergences fuse.

Lower-level API::

    contract_with_subscripts(tensors, subscripts, output_indices, optimize) -> Tensor
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from functools import reduce
from typing import Any, NamedTuple

import numpy as np
import opt_einsum

from tndecomp.core.index import IndexKey, TensorIndex
from tndecomp.core.scale import LogScale
from tndecomp.core.tensor import (
    BlockKey,
    DenseTensor,
    IndexRef,
    SymmetricTensor,
    Tensor,
    _as_key,
)


class ContractionPlan(NamedTuple):
    """Einsum subscripts and the metadata of the legs they produce."""

    subscripts: str
    output_indices: tuple[TensorIndex, ...]


def plan_contraction(
    tensors: Sequence[Tensor],
    output_keys: Sequence[IndexRef] | None = None,
) -> ContractionPlan:
    """Translate the index keys of ``tensors`` into einsum subscripts.

    Every distinct key gets one einsum symbol, assigned in order of first
    appearance. Keys seen twice are summed; keys seen once are output legs,
    ordered as they appear across the tensors unless ``output_keys`` says
    otherwise.

    Args:
        tensors:     Tensors to contract.
        output_keys: Explicit order of the output legs (indices, keys or
                     bare labels).

    Returns:
        ContractionPlan(subscripts, output_indices).

    Raises:
        ValueError: If a key appears more than twice, or an output key is
            not a free leg.
    """
    counts: Counter[IndexKey] = Counter(
        idx.key for tensor in tensors for idx in tensor.indices
    )
    for key, count in counts.items():
        if count > 2:
            raise ValueError(
                f"Index {key!r} appears {count} times across tensors; "
                f"a key may be shared by at most two legs"
            )

    symbols: dict[IndexKey, str] = {}
    first_seen: dict[IndexKey, TensorIndex] = {}
    for tensor in tensors:
        for idx in tensor.indices:
            if idx.key not in symbols:
                symbols[idx.key] = opt_einsum.get_symbol(len(symbols))
                first_seen[idx.key] = idx

    free = [key for key in first_seen if counts[key] == 1]
    if output_keys is None:
        ordered = free
    else:
        ordered = [_as_key(ref) for ref in output_keys]
        for key in ordered:
            if key not in free:
                raise ValueError(
                    f"output_keys contains {key!r} which is not a free index. "
                    f"Free indices are: {free}"
                )

    inputs = ",".join(
        "".join(symbols[idx.key] for idx in tensor.indices) for tensor in tensors
    )
    output = "".join(symbols[key] for key in ordered)
    return ContractionPlan(
        f"{inputs}->{output}", tuple(first_seen[key] for key in ordered)
    )


def _combined_scale(tensors: Sequence[Tensor]) -> LogScale:
    return reduce(lambda a, b: a * b, (t.scale for t in tensors), LogScale())


# ---------- Dense contraction ----------

def _contract_dense(
    tensors: Sequence[DenseTensor],
    subscripts: str,
    output_indices: tuple[TensorIndex, ...],
    optimize: str = "auto",
) -> DenseTensor:
    """Contract the raw buffers with opt_einsum; the scales multiply."""
    result = opt_einsum.contract(
        subscripts, *(t.data for t in tensors), optimize=optimize, backend="jax"
    )
    return DenseTensor(result, output_indices, _combined_scale(tensors))


# ---------- Symmetric (block-sparse) contraction ----------

def _contract_block_pair(
    left: tuple[str, dict[BlockKey, Any]],
    right: tuple[str, dict[BlockKey, Any]],
    keep: str,
    optimize: str,
) -> dict[BlockKey, Any]:
    """Contract two block dicts whose legs are named by einsum symbols.

    Only block pairs that agree on the charges of every shared symbol
    contribute. Blocks of the result are accumulated per ``keep`` key.
    """
    left_subs, left_blocks = left
    right_subs, right_blocks = right
    shared = [c for c in left_subs if c in right_subs]
    right_pos = [right_subs.index(c) for c in shared]
    left_pos = [left_subs.index(c) for c in shared]

    by_shared: dict[BlockKey, list[tuple[BlockKey, Any]]] = defaultdict(list)
    for key, block in right_blocks.items():
        by_shared[tuple(key[p] for p in right_pos)].append((key, block))

    expr = f"{left_subs},{right_subs}->{keep}"
    out: dict[BlockKey, Any] = {}
    for lkey, lblock in left_blocks.items():
        matches = by_shared.get(tuple(lkey[p] for p in left_pos), [])
        for rkey, rblock in matches:
            charge = dict(zip(left_subs, lkey))
            charge.update(zip(right_subs, rkey))
            okey = tuple(charge[c] for c in keep)
            value = opt_einsum.contract(
                expr, lblock, rblock, optimize=optimize, backend="jax"
            )
            out[okey] = out[okey] + value if okey in out else value
    return out


def _contract_symmetric(
    tensors: Sequence[SymmetricTensor],
    subscripts: str,
    output_indices: tuple[TensorIndex, ...],
    optimize: str = "auto",
) -> SymmetricTensor:
    """Contract block-sparse tensors by folding them in from the left.

    A symbol is summed as soon as neither the output nor a later tensor
    needs it. The divergences of the inputs fuse into the result's; blocks
    whose charges do not fuse to it are dropped.
    """
    input_part, output_part = subscripts.split("->")
    input_subs = input_part.split(",")

    subs, blocks = input_subs[0], dict(tensors[0].blocks)
    for i in range(1, len(tensors)):
        later = output_part + "".join(input_subs[i + 1:])
        merged = subs + "".join(c for c in input_subs[i] if c not in subs)
        keep = "".join(
            c for c in merged
            if c in later or not (c in subs and c in input_subs[i])
        )
        blocks = _contract_block_pair(
            (subs, blocks), (input_subs[i], tensors[i].blocks), keep, optimize
        )
        subs = keep

    if subs != output_part:
        perm = [subs.index(c) for c in output_part]
        blocks = {
            tuple(key[p] for p in perm): opt_einsum.contract(
                f"{subs}->{output_part}", block, backend="jax"
            )
            for key, block in blocks.items()
        }

    sym = next(
        (t.indices[0].symmetry for t in tensors if t.indices),
        output_indices[0].symmetry if output_indices else None,
    )
    if sym is None:
        divergence = 0
    else:
        divergence = int(sym.fuse_many(
            [np.array([t.divergence]) for t in tensors]
        )[0])
        flows = [int(idx.flow) for idx in output_indices]
        blocks = {
            key: block for key, block in blocks.items()
            if sym.net_charge(key, flows) == divergence
        }

    return SymmetricTensor(
        blocks, output_indices, divergence, _combined_scale(tensors)
    )


# ---------- Public API ----------

def contract(
    *tensors: Tensor,
    output_keys: Sequence[IndexRef] | None = None,
    optimize: str = "auto",
) -> Tensor:
    """Contract tensors over every ``(label, prime)`` key they share.

    Args:
        *tensors:    One or more tensors of the same kind.
        output_keys: Order of the output legs, given as indices,
                     ``(label, prime)`` keys or bare labels (prime 0).
                     Defaults to the order in which free legs appear.
        optimize:    opt_einsum path optimizer strategy.

    Returns:
        The contracted tensor.

    Raises:
        ValueError: If no tensor is given or a key appears more than twice.
        TypeError:  If DenseTensor and SymmetricTensor are mixed.

    Example:
        >>> # A has legs (i, j), B has legs (j, k')
        >>> contract(A, B).keys()
        (('i', 0), ('k', 1))
    """
    if not tensors:
        raise ValueError("contract() requires at least one tensor")

    plan = plan_contraction(tensors, output_keys)
    if len(tensors) == 1:
        lhs, rhs = plan.subscripts.split("->")
        if lhs == rhs:
            return tensors[0]

    return contract_with_subscripts(
        tensors, plan.subscripts, plan.output_indices, optimize
    )


def contract_with_subscripts(
    tensors: Sequence[Tensor],
    subscripts: str,
    output_indices: tuple[TensorIndex, ...],
    optimize: str = "auto",
) -> Tensor:
    """Contract tensors using an explicit einsum subscript string.

    ``output_indices`` supplies the metadata of each output leg, in
    subscript order.

    Raises:
        TypeError: If DenseTensor and SymmetricTensor are mixed.
    """
    if all(isinstance(t, DenseTensor) for t in tensors):
        return _contract_dense(list(tensors), subscripts, output_indices, optimize)  # type: ignore[arg-type]
    if all(isinstance(t, SymmetricTensor) for t in tensors):
        return _contract_symmetric(list(tensors), subscripts, output_indices, optimize)  # type: ignore[arg-type]
    types = [type(t).__name__ for t in tensors]
    raise TypeError(
        f"Cannot mix DenseTensor and SymmetricTensor in a single contraction. "
        f"Got types: {types}. Convert all tensors to the same type first."
    )
