"""Tests for the LocalOp effective operator."""

import jax.numpy as jnp
import numpy as np
import pytest

from tndecomp.core.index import FlowDirection, TensorIndex
from tndecomp.core.tensor import DenseTensor, SymmetricTensor, combiner
from tndecomp.decomp import svd
from tndecomp.errors import InvalidArgument, InvalidState, UnsupportedOperation
from tndecomp.mps.localop import Direction, LocalOp

DIMS = {"l": 2, "s1": 2, "s2": 2, "r": 2, "wl": 3, "w12": 3, "wr": 3}


def _leg(u1, label, prime=0, flow=FlowDirection.IN):
    tags = ("Site",) if label.startswith("s") else ("Link",)
    return TensorIndex(
        u1, np.zeros(DIMS[label], dtype=np.int32), flow,
        label=label, prime=prime, tags=tags,
    )


def _symmetrize(x, a, b):
    """Make x symmetric under exchange of axes a and b."""
    return 0.5 * (x + np.swapaxes(x, a, b))


@pytest.fixture
def model(u1):
    """Real Hermitian two-site problem L * W1 * W2 * R with a random phi."""
    gen = np.random.default_rng(7)
    L = _symmetrize(gen.normal(size=(2, 3, 2)), 0, 2)
    W1 = _symmetrize(gen.normal(size=(3, 2, 2, 3)), 1, 2)
    W2 = _symmetrize(gen.normal(size=(3, 2, 2, 3)), 1, 2)
    R = _symmetrize(gen.normal(size=(2, 3, 2)), 0, 2)
    phi = gen.normal(size=(2, 2, 2, 2))

    IN, OUT = FlowDirection.IN, FlowDirection.OUT
    tensors = {
        "L": DenseTensor(L, (_leg(u1, "l", 0, OUT), _leg(u1, "wl", 0, OUT), _leg(u1, "l", 1, IN))),
        "W1": DenseTensor(W1, (_leg(u1, "wl"), _leg(u1, "s1", 0, OUT),
                               _leg(u1, "s1", 1, IN), _leg(u1, "w12", 0, OUT))),
        "W2": DenseTensor(W2, (_leg(u1, "w12"), _leg(u1, "s2", 0, OUT),
                               _leg(u1, "s2", 1, IN), _leg(u1, "wr", 0, OUT))),
        "R": DenseTensor(R, (_leg(u1, "r", 0, OUT), _leg(u1, "wr"), _leg(u1, "r", 1, IN))),
        "phi": DenseTensor(phi, (_leg(u1, "l"), _leg(u1, "s1"), _leg(u1, "s2"), _leg(u1, "r"))),
    }
    arrays = {"L": L, "W1": W1, "W2": W2, "R": R, "phi": phi}
    return tensors, arrays


@pytest.fixture
def H(model):
    t, _ = model
    return LocalOp(t["W1"], t["W2"], t["L"], t["R"])


PHI_KEYS = ("l", "s1", "s2", "r")


class TestLocalOpProduct:
    def test_matches_einsum(self, model, H):
        t, a = model
        result = H.product(t["phi"]).permute_to(PHI_KEYS)
        expected = np.einsum(
            "lstr,lwL,wsSx,xtTy,ryR->LSTR", a["phi"], a["L"], a["W1"], a["W2"], a["R"]
        )
        np.testing.assert_allclose(result.todense(), expected, atol=1e-12)

    def test_keys_unprimed(self, model, H):
        t, _ = model
        assert set(H.product(t["phi"]).keys()) == set(t["phi"].keys())

    def test_without_left_environment(self, model):
        t, a = model
        W1b = DenseTensor(a["W1"][0], t["W1"].indices[1:])
        phi = DenseTensor(a["phi"][0], t["phi"].indices[1:])
        H = LocalOp(W1b, t["W2"], None, t["R"])
        assert H.l_is_null and not H.r_is_null
        result = H.product(phi).permute_to(("s1", "s2", "r"))
        expected = np.einsum(
            "str,sSx,xtTy,ryR->STR", a["phi"][0], a["W1"][0], a["W2"], a["R"]
        )
        np.testing.assert_allclose(result.todense(), expected, atol=1e-12)

    def test_expect(self, model, H):
        t, a = model
        Hphi = np.einsum(
            "lstr,lwL,wsSx,xtTy,ryR->LSTR", a["phi"], a["L"], a["W1"], a["W2"], a["R"]
        )
        assert H.expect(t["phi"]) == pytest.approx(float(np.vdot(a["phi"], Hphi)))

    def test_expect_single_site(self, u1):
        s = _leg(u1, "s1", 0, FlowDirection.OUT)
        op = DenseTensor(jnp.diag(jnp.array([1.0, -1.0])), (s, s.prime_by(1).flip()))
        phi = DenseTensor(jnp.array([0.6, 0.8]), (s.flip(),))
        assert LocalOp(op).expect(phi) == pytest.approx(-0.28)

    def test_expect_non_hermitian_raises(self, u1):
        s = _leg(u1, "s1", 0, FlowDirection.OUT)
        op = DenseTensor(
            jnp.array([[0.0, 1.0j], [0.0, 0.0]]), (s, s.prime_by(1).flip())
        )
        phi = DenseTensor(jnp.array([1.0, 1.0]), (s.flip(),))
        with pytest.raises(UnsupportedOperation):
            LocalOp(op).expect(phi)


class TestLocalOpDeltaRho:
    def test_from_left(self, model, H):
        t, a = model
        phi = t["phi"]
        cmb = combiner([phi.index("l"), phi.index("s1")])
        rho = H.delta_rho(phi, cmb, Direction.FROM_LEFT)
        assert set(rho.keys()) == {("cmb", 0), ("cmb", 1)}

        X = np.einsum("lstr,lwL,wsSx->LStrx", a["phi"], a["L"], a["W1"]).reshape(4, -1)
        expected = X @ X.T
        result = rho.permute_to([("cmb", 0), ("cmb", 1)]).todense()
        np.testing.assert_allclose(result, expected, atol=1e-10)

    def test_from_right_is_symmetric(self, model, H):
        t, _ = model
        phi = t["phi"]
        cmb = combiner([phi.index("s2"), phi.index("r")])
        rho = H.delta_rho(phi, cmb, Direction.FROM_RIGHT)
        M = np.asarray(rho.permute_to([("cmb", 0), ("cmb", 1)]).todense())
        assert M.shape == (4, 4)
        np.testing.assert_allclose(M, M.T, atol=1e-12)
        assert np.all(np.linalg.eigvalsh(M) > -1e-10)

    def test_combiner_without_free_leg_raises(self, model, H):
        t, _ = model
        phi = t["phi"]
        cmb = combiner([phi.index("s1")], label="l")
        with pytest.raises(InvalidState):
            H.delta_rho(phi, cmb, Direction.FROM_LEFT)

    def test_unknown_direction_raises(self, model, H):
        t, _ = model
        phi = t["phi"]
        cmb = combiner([phi.index("l"), phi.index("s1")])
        with pytest.raises(InvalidArgument):
            H.delta_rho(phi, cmb, "from_left")


class TestLocalOpDiag:
    def test_matches_einsum(self, model, H):
        _, a = model
        d = H.diag()
        assert isinstance(d, DenseTensor)
        expected = np.einsum(
            "lwl,wssx,xtty,ryr->lstr", a["L"], a["W1"], a["W2"], a["R"]
        )
        np.testing.assert_allclose(
            d.permute_to(PHI_KEYS).todense(), expected, atol=1e-12
        )

    def test_matches_product_on_basis_state(self, model, H):
        t, _ = model
        phi = t["phi"]
        d = np.asarray(H.diag().permute_to(PHI_KEYS).todense())
        basis = np.zeros((2, 2, 2, 2))
        basis[1, 0, 1, 1] = 1.0
        e = DenseTensor(basis, phi.indices)
        Hv = np.asarray(H.product(e).permute_to(PHI_KEYS).todense())
        assert Hv[1, 0, 1, 1] == pytest.approx(d[1, 0, 1, 1])


class TestLocalOpState:
    def test_size(self, H):
        assert H.size() == 16
        assert H.num_center == 2

    def test_size_invalidated_by_num_center(self, H):
        assert H.size() == 16
        H.num_center = 1
        assert H.size() == 8

    def test_size_invalidated_by_update(self, model, H):
        t, _ = model
        assert H.size() == 16
        H.update(t["W1"], t["W2"], t["L"], None)
        assert H.r_is_null
        assert H.size() == 8

    def test_num_center_setter_validates(self, H):
        with pytest.raises(InvalidArgument):
            H.num_center = 3

    def test_null(self, model):
        H = LocalOp()
        assert not H
        assert repr(H) == "LocalOp(null)"
        with pytest.raises(InvalidState, match="default constructed"):
            H.op1
        with pytest.raises(InvalidState):
            H.size()
        with pytest.raises(InvalidState):
            H.product(model[0]["phi"])
        with pytest.raises(InvalidState):
            H.diag()

    def test_op2_without_op1_raises(self, model):
        with pytest.raises(InvalidArgument):
            LocalOp(op2=model[0]["W2"])

    def test_update_lr(self, model):
        t, _ = model
        H = LocalOp(L=t["L"], R=t["R"])
        assert H
        assert H.num_center == 0
        assert H.size() == 4
        assert H.L is t["L"]
        with pytest.raises(InvalidState, match="no op1"):
            H.op1

    def test_references_not_copies(self, model, H):
        t, _ = model
        assert H.op1 is t["W1"]
        assert H.op2 is t["W2"]
        assert H.R is t["R"]


# U(1) Heisenberg dimer: physical charges 2*Sz, MPO bond charges from S+/S-
SZ_CHARGES = np.array([1, -1], dtype=np.int32)
MPO_CHARGES = np.array([0, 2, -2, 0, 0], dtype=np.int32)
ONE = np.zeros(1, dtype=np.int32)


def _heisenberg_w():
    Sz = np.diag([0.5, -0.5])
    Sp = np.array([[0.0, 1.0], [0.0, 0.0]])
    W = np.zeros((5, 2, 2, 5))
    W[0, :, :, 0] = W[4, :, :, 4] = np.eye(2)
    W[1, :, :, 0] = Sp
    W[2, :, :, 0] = Sp.T
    W[3, :, :, 0] = Sz
    W[4, :, :, 1] = 0.5 * Sp.T
    W[4, :, :, 2] = 0.5 * Sp
    W[4, :, :, 3] = Sz
    return W


@pytest.fixture
def dimer(u1):
    """Block-sparse L, W1, W2, R and the singlet phi of a two-site Heisenberg model."""
    IN, OUT = FlowDirection.IN, FlowDirection.OUT

    def leg(charges, flow, label, prime=0, tag="Link"):
        return TensorIndex(u1, charges, flow, label=label, prime=prime, tags=(tag,))

    def site_op(site, left, right):
        s = leg(SZ_CHARGES, OUT, site, tag="Site")
        return SymmetricTensor.from_dense(
            _heisenberg_w(),
            (leg(MPO_CHARGES, IN, left), s, s.prime_by(1).flip(), leg(MPO_CHARGES, OUT, right)),
        )

    L = np.zeros((1, 5, 1))
    L[0, 4, 0] = 1.0
    R = np.zeros((1, 5, 1))
    R[0, 0, 0] = 1.0
    phi = np.zeros((1, 2, 2, 1))
    phi[0, 0, 1, 0] = 1.0 / np.sqrt(2.0)
    phi[0, 1, 0, 0] = -1.0 / np.sqrt(2.0)

    return {
        "L": SymmetricTensor.from_dense(
            L, (leg(ONE, OUT, "l"), leg(MPO_CHARGES, OUT, "wl"), leg(ONE, IN, "l", 1))
        ),
        "W1": site_op("s1", "wl", "w12"),
        "W2": site_op("s2", "w12", "wr"),
        "R": SymmetricTensor.from_dense(
            R, (leg(ONE, OUT, "r"), leg(MPO_CHARGES, IN, "wr"), leg(ONE, IN, "r", 1))
        ),
        "phi": SymmetricTensor.from_dense(
            phi,
            (leg(ONE, IN, "l"), leg(SZ_CHARGES, IN, "s1", tag="Site"),
             leg(SZ_CHARGES, IN, "s2", tag="Site"), leg(ONE, IN, "r")),
        ),
    }


class TestLocalOpBlockSparse:
    @pytest.fixture
    def ops(self, dimer):
        sparse = LocalOp(dimer["W1"], dimer["W2"], dimer["L"], dimer["R"])
        dense = LocalOp(*(dimer[k].to_dense_tensor() for k in ("W1", "W2", "L", "R")))
        return sparse, dense

    def test_product_matches_dense(self, dimer, ops):
        sparse, dense = ops
        phi = dimer["phi"]
        result = sparse.product(phi)
        assert isinstance(result, SymmetricTensor)
        expected = dense.product(phi.to_dense_tensor()).permute_to(PHI_KEYS).todense()
        np.testing.assert_allclose(
            result.permute_to(PHI_KEYS).todense(), expected, atol=1e-12
        )

    def test_singlet_energy(self, dimer, ops):
        sparse, dense = ops
        assert sparse.expect(dimer["phi"]) == pytest.approx(-0.75)
        assert dense.expect(dimer["phi"].to_dense_tensor()) == pytest.approx(-0.75)

    def test_delta_rho_matches_dense(self, dimer, ops):
        sparse, dense = ops
        phi = dimer["phi"]
        legs = [phi.index("l"), phi.index("s1")]
        rho = sparse.delta_rho(phi, combiner(legs, block_sparse=True), Direction.FROM_LEFT)
        assert isinstance(rho, SymmetricTensor)
        ref = dense.delta_rho(phi.to_dense_tensor(), combiner(legs), Direction.FROM_LEFT)
        order = [("cmb", 0), ("cmb", 1)]
        np.testing.assert_allclose(
            rho.permute_to(order).todense(), ref.permute_to(order).todense(), atol=1e-12
        )

    def test_diag_matches_dense(self, ops):
        sparse, dense = ops
        np.testing.assert_allclose(
            sparse.diag().permute_to(PHI_KEYS).todense(),
            dense.diag().permute_to(PHI_KEYS).todense(),
            atol=1e-12,
        )
        assert sparse.size() == dense.size() == 4

    def test_singlet_split_by_block_sparse_svd(self, dimer):
        phi = dimer["phi"]
        left = combiner([phi.index("l"), phi.index("s1")], label="cl", block_sparse=True)
        right = combiner([phi.index("s2"), phi.index("r")], label="cr", block_sparse=True)
        M = left * phi * right
        U, D, V, spectrum = svd(M, "cl", "cr")
        np.testing.assert_allclose(spectrum.eigs, [0.5, 0.5], atol=1e-12)
        assert sorted(U.index("ul").charges.tolist()) == [-1, 1]
        np.testing.assert_allclose(
            (U * D * V).permute_to(M.keys()).todense(), M.todense(), atol=1e-12
        )
