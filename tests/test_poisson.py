"""
End-to-end checks: Galerkin solves whose exact solution lies in the
discrete space, so the computed field must match it to round-off.
"""
import numpy as np
import pytest
from numpy.polynomial.legendre import leggauss
from scipy.sparse.linalg import spsolve

from pyexprfem.assembly.assembler import ExprAssembler
from pyexprfem.core.boundary import BoundaryConditions, BoxSide, DirichletValues
from pyexprfem.fem.functions import ConstantFunction, SymbolicFunction
from pyexprfem.fem.multipatch import MultiPatch
from pyexprfem.fem.tensor import TensorBSplineBasis, TensorBSplineGeometry
from pyexprfem.ufl.expressions import igrad, meas
from pyexprfem.utils.meshgen import split_interval


def _dirichlet_everywhere(mp, g):
    bcs = BoundaryConditions()
    for ps in mp.boundaries:
        bcs.add_condition(ps.patch, ps.side, "dirichlet", g)
    return bcs


def _poisson(mp, bcs, method=DirichletValues.INTERPOLATION, n_threads=1):
    """Assemble -lap(u) = -4 and return the assembler, the space and the map."""
    A = ExprAssembler()
    A.options.set_int("numThreads", n_threads)
    mb = mp.basis()
    A.set_integration_elements(mb)
    G = A.get_map(mp)
    u = A.get_space(mb)
    u.setup(bcs, method)
    f = A.get_coeff(ConstantFunction(-4.0, domain_dim=2))
    A.init_system()
    A.assemble(igrad(u, G) * igrad(u, G).tr() * meas(G), u * f * meas(G))
    return A, u, G


def _max_error(mp, u, sol, exact):
    pts = np.random.default_rng(7).random((2, 11))
    err = 0.0
    for p in range(mp.n_patches):
        field = TensorBSplineGeometry(u.space_data.fs.basis(p), sol.extract(p))
        phys = mp.patch(p).eval(pts)
        err = max(err, np.abs(field.eval(pts)[0] - exact.eval(phys)[0]).max())
    return err


def test_mass_matrix_uses_sized_rule():
    # ARRANGE: quadratic, one element, quA*2 + quB = 2 points per element
    A = ExprAssembler()
    A.options.set_int("quB", 0)
    u = A.get_space(TensorBSplineBasis.uniform([1], 2))
    A.init_system()
    # ACT
    A.assemble(u * u.tr())
    # ASSERT
    x, w = leggauss(2)
    x, w = 0.5 * (x + 1.0), 0.5 * w
    B = np.array([(1 - x) ** 2, 2 * x * (1 - x), x ** 2])
    np.testing.assert_allclose(A.matrix().toarray(), (B * w) @ B.T, rtol=1e-13)


@pytest.mark.parametrize("method", [DirichletValues.INTERPOLATION, DirichletValues.L2_PROJECTION])
def test_single_patch_reproduces_quadratic(unit_square_q2, quadratic_exact, method):
    mp = MultiPatch([unit_square_q2])
    A, u, _ = _poisson(mp, _dirichlet_everywhere(mp, quadratic_exact), method)

    K = A.matrix()
    assert abs(K - K.T).max() < 1e-12
    sol = A.get_solution(u, spsolve(K.tocsc(), A.rhs()[:, 0]))
    assert _max_error(mp, u, sol, quadratic_exact) < 1e-10


def test_two_patches_match_single_patch(two_patch_square_q2, quadratic_exact):
    mp = two_patch_square_q2
    A, u, _ = _poisson(mp, _dirichlet_everywhere(mp, quadratic_exact))
    # interface DOFs are shared
    assert u.mapper().coupled_size() > 0
    sol = A.get_solution(u, spsolve(A.matrix().tocsc(), A.rhs()[:, 0]))
    assert _max_error(mp, u, sol, quadratic_exact) < 1e-10


def test_neumann_side(unit_square_q2, quadratic_exact):
    # du/dn = 2x on the east side
    mp = MultiPatch([unit_square_q2])
    bcs = BoundaryConditions()
    for side in (BoxSide.WEST, BoxSide.SOUTH, BoxSide.NORTH):
        bcs.add_condition(0, side, "dirichlet", quadratic_exact)
    bcs.add_condition(0, BoxSide.EAST, "neumann", SymbolicFunction("2*x", domain_dim=2))

    A, u, G = _poisson(mp, bcs)
    g = A.get_bdr_function()
    A.assemble_rhs_bc(u * g * meas(G), bcs.neumann_sides())

    sol = A.get_solution(u, spsolve(A.matrix().tocsc(), A.rhs()[:, 0]))
    assert _max_error(mp, u, sol, quadratic_exact) < 1e-10


def test_threaded_assembly_matches_sequential(unit_square_q2, quadratic_exact):
    mp = MultiPatch([unit_square_q2])
    bcs = _dirichlet_everywhere(mp, quadratic_exact)
    A1, _, _ = _poisson(mp, bcs, n_threads=1)
    A3, _, _ = _poisson(mp, bcs, n_threads=3)
    np.testing.assert_allclose(A3.matrix().toarray(), A1.matrix().toarray(), atol=1e-14)
    np.testing.assert_allclose(A3.rhs(), A1.rhs(), atol=1e-14)


class TestInterfaceTerms:

    def test_coupling_between_independent_patches(self):
        mp = split_interval(0.0, 1.0, n_patches=2)
        A = ExprAssembler()
        u = A.get_space(mp.basis())
        u.setup(None, interface_strategy="none")
        A.init_system()

        A.assemble_interface_terms(u.left() * u.right().tr())

        K = A.matrix()
        assert K.shape == (4, 4)
        assert K.nnz == 1
        assert K[1, 2] == 1.0

    def test_interface_right_hand_side(self):
        mp = split_interval(0.0, 1.0, n_patches=2)
        A = ExprAssembler()
        u = A.get_space(mp.basis())
        u.setup(None, interface_strategy="none")
        A.init_system()

        A.assemble_rhs_interface(u.left() * 1.0, mp.interfaces)

        np.testing.assert_allclose(A.rhs()[:, 0], [0.0, 1.0, 0.0, 0.0])

    def test_interface_length(self, two_patch_square_q2):
        mp = two_patch_square_q2
        A = ExprAssembler()
        G = A.get_map(mp)
        u = A.get_space(mp.basis())
        A.init_system()
        A.assemble_interface_terms(u.left() * u.left().tr() * meas(G))
        # partition of unity: the entries sum to the interface length
        assert np.isclose(A.matrix().sum(), 1.0)


def test_robin_side(unit_square_q2, quadratic_exact):
    # du/dn + u = 2x + x^2 + y^2 on the east side
    mp = MultiPatch([unit_square_q2])
    bcs = BoundaryConditions()
    for side in (BoxSide.WEST, BoxSide.SOUTH, BoxSide.NORTH):
        bcs.add_condition(0, side, "dirichlet", quadratic_exact)
    bcs.add_condition(0, BoxSide.EAST, "robin", SymbolicFunction("2*x + x**2 + y**2", domain_dim=2))

    A, u, G = _poisson(mp, bcs)
    gb = A.get_bdr_function()
    A.assemble_lhs_rhs_bc(u * u.tr() * meas(G), u * gb * meas(G), bcs.robin_sides())

    sol = A.get_solution(u, spsolve(A.matrix().tocsc(), A.rhs()[:, 0]))
    assert _max_error(mp, u, sol, quadratic_exact) < 1e-10


def test_solution_values_and_gradient(unit_square_q2, quadratic_exact):
    mp = MultiPatch([unit_square_q2])
    A, u, G = _poisson(mp, _dirichlet_everywhere(mp, quadratic_exact))
    sol = A.get_solution(u, spsolve(A.matrix().tocsc(), A.rhs()[:, 0]))

    ctx = A.expr_data()
    dsol = igrad(sol, G)
    ctx.parse([sol, dsol])
    pts = np.array([[0.3, 0.8], [0.6, 0.1]])
    ctx.set_side(None)
    ctx.set_points(pts, np.ones(2))
    ctx.precompute(0)

    for k in range(2):
        x, y = pts[:, k]
        np.testing.assert_allclose(sol.eval(k), [[x ** 2 + y ** 2]], atol=1e-10)
        np.testing.assert_allclose(dsol.eval(k), [[2 * x, 2 * y]], atol=1e-9)


def test_petrov_galerkin_test_space():
    A = ExprAssembler()
    u = A.get_space(TensorBSplineBasis.uniform([1], 1))
    v = A.get_test_space(u, TensorBSplineBasis.uniform([1], 2))
    A.init_system()
    A.assemble(v * u.tr())

    K = A.matrix()
    assert K.shape == (3, 2)
    # int (1-x)^2 (1-x) dx
    assert np.isclose(K[0, 0], 0.25)
    assert A.rhs().shape == (3, 1)


def test_clean_up_drops_element_data():
    A = ExprAssembler()
    u = A.get_space(TensorBSplineBasis.uniform([2], 1))
    A.init_system()
    A.assemble(u * u.tr())
    A.clean_up()
    with pytest.raises(RuntimeError):
        u.eval(0)
