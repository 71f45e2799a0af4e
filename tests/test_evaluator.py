import numpy as np
import pytest
import scipy.sparse as sp

from pyexprfem.assembly.accumulator import SystemAccumulator, reduce_into
from pyexprfem.assembly.assembler import ExprAssembler
from pyexprfem.assembly.evaluator import ElementEvaluator
from pyexprfem.assembly.loops import run_elements
from pyexprfem.core.boundary import BoundaryConditions, BoxSide, DirichletValues
from pyexprfem.fem.tensor import TensorBSplineBasis
from pyexprfem.integration.quadrature import QuadRule
from pyexprfem.ufl.expressions import Constant


def _line(degree, n_elements=1):
    return TensorBSplineBasis.uniform([n_elements], degree)


def _west_dirichlet():
    bcs = BoundaryConditions()
    bcs.add_condition(0, BoxSide.WEST, "dirichlet")
    return bcs


def test_single_point_accumulation():
    # ARRANGE: one constant function, one quadrature point of weight 1
    A = ExprAssembler()
    u = A.get_space(_line(0))
    A.init_system()
    # ACT
    A.assemble(Constant(3.0) * u * u.tr())
    # ASSERT
    np.testing.assert_allclose(A.matrix().toarray(), [[3.0]])


def test_dirichlet_columns_move_to_rhs():
    A = ExprAssembler()
    u = A.get_space(_line(1))
    u.setup(_west_dirichlet(), DirichletValues.USER)
    A.init_system()
    A.set_fixed_dof_vector([2.0])

    A.assemble(u * u.tr())

    K, f = A.matrix().toarray(), A.rhs()
    assert K.shape == (1, 1)
    assert np.isclose(K[0, 0], 1.0 / 3.0)
    # -M[1, 0] * 2 with M[1, 0] = 1/6
    assert np.isclose(f[0, 0], -1.0 / 3.0)


def test_eliminated_rows_are_skipped():
    A = ExprAssembler()
    u = A.get_space(_line(1))
    u.setup(_west_dirichlet(), DirichletValues.HOMOGENEOUS)
    A.init_system()
    A.assemble(u * 1.0)
    assert A.rhs().shape == (1, 1)
    assert np.isclose(A.rhs()[0, 0], 0.5)


def test_matrix_only_system_rejects_vectors():
    A = ExprAssembler()
    u = A.get_space(_line(1))
    A.init_matrix()
    with pytest.raises(RuntimeError):
        A.assemble(u)


def test_scalar_expression_is_not_assembled():
    A = ExprAssembler()
    A.get_space(_line(1))
    A.init_system()
    with pytest.raises(RuntimeError):
        A.assemble(Constant(2.0))


def test_zero_measure_element_is_skipped():
    A = ExprAssembler()
    u = A.get_space(_line(1))
    A.init_system()
    ctx = A.expr_data()
    e = u * u.tr()
    ctx.parse([e])
    acc = SystemAccumulator(A.matrix().shape, A.rhs().shape)
    ev = ElementEvaluator(ctx, acc)

    degenerate = [(np.array([0.5]), np.array([0.5]))]
    assert run_elements(ctx, QuadRule([2]), degenerate, 0, [e], ev) == 0
    assert len(acc) == 0

    regular = [(np.array([0.0]), np.array([1.0]))]
    assert run_elements(ctx, QuadRule([2]), regular, 0, [e], ev) == 1
    assert len(acc) == 4


class TestAccumulator:

    def test_growth_and_duplicates(self):
        acc = SystemAccumulator((3, 3), (3, 1), capacity=2)
        for _ in range(40):
            acc.add_matrix(np.array([0, 2]), np.array([1, 2]), np.array([0.5, 1.0]))
        assert len(acc) == 80
        M = acc.to_csr().toarray()
        assert M[0, 1] == 20.0 and M[2, 2] == 40.0

    def test_rhs_uses_leading_columns(self):
        acc = SystemAccumulator((2, 2), (2, 3))
        acc.add_rhs(np.array([1, 1]), np.array([[1.0], [2.0]]))
        np.testing.assert_allclose(acc.rhs, [[0, 0, 0], [3.0, 0, 0]])

    def test_reduce_sums_workers(self):
        accs = [SystemAccumulator((2, 2), (2, 1)) for _ in range(3)]
        for a in accs:
            a.add_matrix(np.array([0]), np.array([1]), np.array([1.0]))
            a.add_rhs(np.array([0]), np.array([[1.0]]))
        mat, rhs = reduce_into(sp.csr_matrix((2, 2)), np.zeros((2, 1)), accs)
        assert mat.has_sorted_indices
        assert mat[0, 1] == 3.0
        assert rhs[0, 0] == 3.0
