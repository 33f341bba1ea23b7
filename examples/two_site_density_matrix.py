#!/usr/bin/env python3
"""Two-site Heisenberg dimer: effective operator, density matrix and SVD.

Builds the spin-1/2 Heisenberg MPO

    H = J * (Sz_1 Sz_2 + 0.5 * (S+_1 S-_2 + S-_1 S+_2))

on two sites, wraps it in a LocalOp with boundary environments, finds the
ground state by shifted power iteration on ``LocalOp.product`` and then:

1. splits the wavefunction with a truncated SVD,
2. forms the left reduced density matrix, adds the noise term from
   ``LocalOp.delta_rho`` and diagonalises it with ``diag_hermitian``.

The ground state is the singlet, E = -0.75 J, whose two Schmidt weights are
both 1/2.

Usage::

    python examples/two_site_density_matrix.py
"""

from __future__ import annotations

import logging

import jax.numpy as jnp
import numpy as np

from tndecomp import (
    DecompConfig,
    DenseTensor,
    Direction,
    FlowDirection,
    LocalOp,
    TensorIndex,
    U1Symmetry,
    combiner,
    diag_hermitian,
    svd,
)

J = 1.0
NOISE = 1e-4
N_ITER = 80


def _leg(label: str, dim: int, flow: FlowDirection, prime: int = 0, tag: str = "Link"):
    return TensorIndex(
        U1Symmetry(), np.zeros(dim, dtype=np.int32), flow,
        label=label, prime=prime, tags=(tag,),
    )


def heisenberg_mpo_tensor() -> np.ndarray:
    """Bulk MPO tensor W[w_left, s, s', w_right] with bond dimension 5."""
    Sz = np.diag([0.5, -0.5])
    Sp = np.array([[0.0, 1.0], [0.0, 0.0]])
    Sm = Sp.T
    Id = np.eye(2)

    W = np.zeros((5, 2, 2, 5))
    W[0, :, :, 0] = Id
    W[1, :, :, 0] = Sp
    W[2, :, :, 0] = Sm
    W[3, :, :, 0] = Sz
    W[4, :, :, 1] = 0.5 * J * Sm
    W[4, :, :, 2] = 0.5 * J * Sp
    W[4, :, :, 3] = J * Sz
    W[4, :, :, 4] = Id
    return W


def build_local_op() -> LocalOp:
    W = heisenberg_mpo_tensor()
    IN, OUT = FlowDirection.IN, FlowDirection.OUT

    def site_op(site: str, left: str, right: str) -> DenseTensor:
        s = _leg(site, 2, OUT, tag="Site")
        return DenseTensor(W, (_leg(left, 5, IN), s, s.prime_by(1).flip(), _leg(right, 5, OUT)))

    W1 = site_op("s1", "w0", "w1")
    W2 = site_op("s2", "w1", "w2")
    # Boundary vectors select the "started" row on the left, "finished" column on the right
    L = DenseTensor(jnp.eye(5)[4], (_leg("w0", 5, OUT),))
    R = DenseTensor(jnp.eye(5)[0], (_leg("w2", 5, IN),))
    return LocalOp(W1, W2, L, R)


def ground_state(H: LocalOp, shift: float = 2.0) -> DenseTensor:
    """Shifted power iteration ``phi <- (shift - H) phi``."""
    s1 = _leg("s1", 2, FlowDirection.IN, tag="Site")
    s2 = _leg("s2", 2, FlowDirection.IN, tag="Site")
    rng = np.random.default_rng(0)
    phi = DenseTensor(rng.normal(size=(2, 2)), (s1, s2))
    for _ in range(N_ITER):
        Hphi = H.product(phi).permute_to(phi.keys())
        phi = phi * shift - Hphi
        phi = phi / float(phi.norm())
    return phi


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    H = build_local_op()
    print(f"LocalOp size: {H.size()}")

    phi = ground_state(H)
    energy = H.expect(phi)
    print(f"Ground-state energy: {energy:.10f} (exact {-0.75 * J})")

    # Schmidt decomposition of the two-site wavefunction
    U, D, V, spectrum = svd(phi, "s1", "s2", DecompConfig(max_m=2, cutoff=1e-12))
    print(f"SVD: {spectrum}, weights = {np.round(spectrum.eigs, 10)}")

    # Left density matrix with the noise correction
    combine = combiner([phi.index("s1")])
    cphi = combine * phi
    rho = cphi * cphi.prime("cmb").dagger()
    drho = H.delta_rho(phi, combine, Direction.FROM_LEFT)
    rho = rho + drho * NOISE
    config = DecompConfig(truncate=True, max_m=2, cutoff=1e-12, show_eigs=True)
    U, D, spectrum = diag_hermitian(rho, config)
    print(f"diag_hermitian: {spectrum}, eigenvalues = {spectrum.eigs}")


if __name__ == "__main__":
    main()
