import threading

import numpy as np
import pytest

from pyexprfem.core.boundary import BoxSide
from pyexprfem.fem.functions import SymbolicFunction
from pyexprfem.fem.multibasis import MultiBasis
from pyexprfem.fem.multipatch import MultiPatch
from pyexprfem.fem.tensor import TensorBSplineBasis
from pyexprfem.ufl.context import NEED, ExprContext, merge_actives, outer_normal
from pyexprfem.ufl.expressions import Constant, grad, igrad, jac, meas, nv, unv
from pyexprfem.utils.meshgen import bspline_interval, bspline_rectangle


def _quadratic_1d():
    return MultiBasis([TensorBSplineBasis.uniform([1], 2)])


def _at(ctx, pts, patch=0, side=None):
    pts = np.atleast_2d(np.asarray(pts, dtype=float))
    ctx.set_points(pts, np.ones(pts.shape[1]))
    ctx.precompute(patch, side)


class TestClassification:

    def test_kinds(self):
        ctx = ExprContext()
        u = ctx.get_space(_quadratic_1d())
        G = ctx.get_map(MultiPatch([bspline_interval()]))
        assert u.is_vector()
        assert (u * u.tr()).is_matrix()
        assert u.tr().col_var() is u
        assert not Constant(1.0).is_matrix() and not Constant(1.0).is_vector()
        assert meas(G).is_scalar()
        assert (2.0 * u).is_vector()

    def test_sum_over_different_spaces(self):
        ctx = ExprContext()
        u = ctx.get_space(_quadratic_1d())
        v = ctx.get_space(_quadratic_1d())
        u + u
        with pytest.raises(ValueError):
            u + v

    def test_contraction_over_space_index(self):
        ctx = ExprContext()
        u = ctx.get_space(_quadratic_1d())
        with pytest.raises(ValueError):
            u.tr() * u

    def test_division_by_non_scalar(self):
        ctx = ExprContext()
        u = ctx.get_space(_quadratic_1d())
        with pytest.raises(ValueError):
            Constant(1.0) / u

    def test_gradient_operand_checks(self):
        ctx = ExprContext()
        w = ctx.get_space(_quadratic_1d(), dim=2)
        with pytest.raises(ValueError):
            grad(w)
        with pytest.raises(TypeError):
            grad(Constant(1.0))


class TestEvaluation:

    def test_space_values_and_gradient(self):
        # ARRANGE
        ctx = ExprContext()
        u = ctx.get_space(_quadratic_1d())
        gu = grad(u)
        ctx.parse([u, gu])
        # ACT
        _at(ctx, [[0.5]])
        # ASSERT
        np.testing.assert_allclose(u.eval(0), [[0.25], [0.5], [0.25]])
        np.testing.assert_allclose(gu.eval(0), [[-1.0], [0.0], [1.0]])

    def test_vector_space_block_layout(self):
        ctx = ExprContext()
        w = ctx.get_space(_quadratic_1d(), dim=2)
        ctx.parse([w])
        _at(ctx, [[0.5]])
        val = w.eval(0)
        assert val.shape == (6, 2)
        np.testing.assert_allclose(val[:3, 0], [0.25, 0.5, 0.25])
        np.testing.assert_allclose(val[3:, 1], [0.25, 0.5, 0.25])
        np.testing.assert_allclose(val[:3, 1], 0.0)

    def test_physical_gradient_and_measure(self):
        ctx = ExprContext()
        G = ctx.get_map(MultiPatch([bspline_interval(0.0, 2.0, 1, 1)]))
        u = ctx.get_space(_quadratic_1d())
        e = igrad(u, G) * meas(G)
        ctx.parse([e])
        assert ctx.primary_map().flags & NEED.GRAD_TRANSFORM
        assert ctx.primary_map().flags & NEED.DERIV
        _at(ctx, [[0.5]])
        np.testing.assert_allclose(igrad(u, G).eval(0), [[-0.5], [0.0], [0.5]])
        np.testing.assert_allclose(meas(G).eval(0), [[2.0]])
        np.testing.assert_allclose(e.eval(0), [[-1.0], [0.0], [1.0]])

    def test_composed_coefficient(self):
        ctx = ExprContext()
        G = ctx.get_map(MultiPatch([bspline_interval(0.0, 2.0, 1, 1)]))
        f = ctx.get_coeff(SymbolicFunction("x**2", domain_dim=1), G)
        df = igrad(f, G)
        ctx.parse([f, df])
        _at(ctx, [[0.5]])
        # physical point x = 1
        np.testing.assert_allclose(f.eval(0), [[1.0]])
        np.testing.assert_allclose(df.eval(0), [[2.0]])
        np.testing.assert_allclose(G.eval(0), [[1.0]])

    def test_side_normals(self):
        ctx = ExprContext()
        G = ctx.get_map(MultiPatch([bspline_rectangle(0.0, 0.0, 2.0, 3.0)]))
        n, un = nv(G), unv(G)
        ctx.parse([n, meas(G)])
        _at(ctx, [[1.0], [0.5]], side=BoxSide.EAST)
        np.testing.assert_allclose(n.eval(0), [[3.0], [0.0]], atol=1e-13)
        np.testing.assert_allclose(meas(G).eval(0), [[3.0]])
        _at(ctx, [[0.5], [0.0]], side=BoxSide.SOUTH)
        np.testing.assert_allclose(n.eval(0), [[0.0], [-2.0]], atol=1e-13)
        np.testing.assert_allclose(un.eval(0), [[0.0], [-1.0]], atol=1e-13)

    def test_jacobian_and_arithmetic(self):
        ctx = ExprContext()
        G = ctx.get_map(MultiPatch([bspline_rectangle(0.0, 0.0, 2.0, 3.0)]))
        J = jac(G)
        ctx.parse([J, meas(G)])
        _at(ctx, [[0.5], [0.5]])
        np.testing.assert_allclose(J.eval(0), [[2.0, 0.0], [0.0, 3.0]], atol=1e-13)
        np.testing.assert_allclose((J.tr() - J).eval(0), 0.0, atol=1e-13)
        np.testing.assert_allclose((-meas(G) / 2.0).eval(0), [[-3.0]])

    def test_missing_data_raises(self):
        ctx = ExprContext()
        u = ctx.get_space(_quadratic_1d())
        ctx.parse([u])
        with pytest.raises(RuntimeError):
            u.eval(0)

    def test_element_data_is_thread_local(self):
        ctx = ExprContext()
        u = ctx.get_space(_quadratic_1d())
        ctx.parse([u])
        _at(ctx, [[0.5]])
        errors = []

        def worker():
            try:
                u.eval(0)
            except RuntimeError as exc:
                errors.append(exc)

        t = threading.Thread(target=worker)
        t.start()
        t.join()
        assert len(errors) == 1
        np.testing.assert_allclose(u.eval(0)[:, 0], [0.25, 0.5, 0.25])


def test_outer_normal_flips_with_orientation():
    J = np.tile(np.diag([1.0, -1.0]), (1, 1, 1))
    n = outer_normal(J, BoxSide.EAST)
    np.testing.assert_allclose(n[:, 0], [1.0, 0.0])


def test_merge_actives_union():
    acts = np.array([[0, 1], [1, 2]])
    vals = np.array([[0.4, 0.3], [0.6, 0.7]])
    union, (merged,) = merge_actives(acts, [vals])
    np.testing.assert_array_equal(union, [0, 1, 2])
    np.testing.assert_allclose(merged, [[0.4, 0.0], [0.6, 0.3], [0.0, 0.7]])
