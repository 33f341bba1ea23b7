"""Fixtures shared across the tndecomp tests."""

import jax
import numpy as np
import pytest

from tndecomp.core.index import FlowDirection, TensorIndex
from tndecomp.core.symmetry import U1Symmetry, ZnSymmetry
from tndecomp.core.tensor import DenseTensor, SymmetricTensor


def _leg(sym, charges, flow, label, **kwargs):
    return TensorIndex(sym, np.asarray(charges, dtype=np.int32), flow, label=label, **kwargs)


# --- groups and keys ---

@pytest.fixture
def u1():
    return U1Symmetry()


@pytest.fixture
def z2():
    return ZnSymmetry(2)


@pytest.fixture
def rng():
    return jax.random.PRNGKey(42)


@pytest.fixture
def rng2():
    return jax.random.PRNGKey(99)


# --- legs ---

@pytest.fixture
def u1_charges_3():
    """One state in each of the sectors -1, 0 and 1."""
    return np.array([-1, 0, 1], dtype=np.int32)


@pytest.fixture
def idx_in_3(u1, u1_charges_3):
    return _leg(u1, u1_charges_3, FlowDirection.IN, "left")


# --- dense tensors ---

@pytest.fixture
def small_dense_matrix(u1, u1_charges_3, rng):
    """Random 3x3 tensor on legs row (IN) and col (OUT)."""
    return DenseTensor(
        jax.random.normal(rng, (3, 3)),
        (
            _leg(u1, u1_charges_3, FlowDirection.IN, "row"),
            _leg(u1, u1_charges_3, FlowDirection.OUT, "col"),
        ),
    )


@pytest.fixture
def rect_dense_matrix(u1, rng):
    """Random 5x4 tensor on uncharged legs a and b."""
    return DenseTensor(
        jax.random.normal(rng, (5, 4)),
        (
            _leg(u1, np.zeros(5), FlowDirection.IN, "a"),
            _leg(u1, np.zeros(4), FlowDirection.OUT, "b"),
        ),
    )


@pytest.fixture
def symmetric_rho(u1, rng):
    """Positive semi-definite X X^T on the pair (s, s')."""
    X = jax.random.normal(rng, (4, 4))
    s = _leg(u1, np.zeros(4), FlowDirection.IN, "s", tags=("Link",))
    return DenseTensor(X @ X.T, (s, s.prime_by(1).flip()))


# --- block-sparse tensors ---

@pytest.fixture
def u1_sym_tensor_2leg(u1, u1_charges_3, rng):
    return SymmetricTensor.random_normal(
        (
            _leg(u1, u1_charges_3, FlowDirection.IN, "in"),
            _leg(u1, u1_charges_3, FlowDirection.OUT, "out"),
        ),
        rng,
    )


@pytest.fixture
def u1_block_matrix(u1, rng):
    """Legs a (IN) and b (OUT) giving blocks (0,0) 2x2, (1,1) 3x2 and (2,2) 1x3."""
    return SymmetricTensor.random_normal(
        (
            _leg(u1, [0, 0, 1, 1, 1, 2], FlowDirection.IN, "a"),
            _leg(u1, [0, 1, 1, 0, 2, 2, 2], FlowDirection.OUT, "b"),
        ),
        rng,
    )


@pytest.fixture
def u1_sym_tensor_pair(u1, rng, rng2):
    """A(p0, bond_left, bond) and B(p1, bond, bond_right) sharing ``bond``.

    The shared leg has the same charges on both sides and opposite flows.
    """
    phys = [-1, 1]
    bond = [-1, 0, 1]
    A = SymmetricTensor.random_normal(
        (
            _leg(u1, phys, FlowDirection.IN, "p0"),
            _leg(u1, bond, FlowDirection.IN, "bond_left"),
            _leg(u1, bond, FlowDirection.OUT, "bond"),
        ),
        rng,
    )
    B = SymmetricTensor.random_normal(
        (
            _leg(u1, phys, FlowDirection.IN, "p1"),
            _leg(u1, bond, FlowDirection.IN, "bond"),
            _leg(u1, bond, FlowDirection.OUT, "bond_right"),
        ),
        rng2,
    )
    return A, B
