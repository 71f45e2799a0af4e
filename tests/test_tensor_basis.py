import numpy as np
import pytest

from pyexprfem.core.boundary import BoundaryCondition, BoxSide
from pyexprfem.fem.container import ContainerBasis
from pyexprfem.fem.dirichlet import interpolate_side
from pyexprfem.fem.functions import ConstantFunction
from pyexprfem.fem.tensor import TensorBSplineBasis
from pyexprfem.utils.meshgen import bspline_rectangle


class TestTensorBSplineBasis:

    def test_sizes(self):
        b = TensorBSplineBasis.uniform([2, 3], [1, 2])
        assert b.size_cwise() == [3, 5]
        assert b.size() == 15
        assert b.domain_dim == 2
        assert b.max_degree() == 2
        assert b.num_elements() == 6
        assert b.num_elements(BoxSide.EAST) == 3

    def test_partition_of_unity(self):
        b = TensorBSplineBasis.uniform([2, 3], 2)
        pts = np.random.default_rng(1).random((2, 10))
        act, (vals, dv, d2) = b.tabulate(pts, nderiv=2)
        assert act.shape == (9, 10)
        assert dv.shape == (9, 2, 10)
        assert d2.shape == (9, 2, 2, 10)
        np.testing.assert_allclose(vals.sum(axis=0), 1.0, rtol=1e-13)
        np.testing.assert_allclose(dv.sum(axis=0), 0.0, atol=1e-11)

    def test_first_direction_runs_fastest(self):
        b = TensorBSplineBasis.uniform([1, 1], 1)
        for pt, expected in [((0.0, 0.0), 0), ((1.0, 0.0), 1), ((0.0, 1.0), 2), ((1.0, 1.0), 3)]:
            act, vals = b.eval(np.array(pt)[:, None])
            assert act[np.argmax(vals[:, 0]), 0] == expected

    def test_boundary_indices(self):
        b = TensorBSplineBasis.uniform([2, 2], 1)
        np.testing.assert_array_equal(b.boundary(BoxSide.WEST), [0, 3, 6])
        np.testing.assert_array_equal(b.boundary(BoxSide.EAST), [2, 5, 8])
        np.testing.assert_array_equal(b.boundary(BoxSide.SOUTH), [0, 1, 2])
        np.testing.assert_array_equal(b.boundary(BoxSide.NORTH), [6, 7, 8])
        np.testing.assert_array_equal(b.boundary_offset(BoxSide.WEST, 1), [1, 4, 7])

    def test_greville_flat_order(self):
        b = TensorBSplineBasis.uniform([2, 2], 1)
        g = b.greville()
        assert g.shape == (2, 9)
        np.testing.assert_allclose(g[:, 5], [1.0, 0.5])

    def test_element_iteration_on_side(self):
        b = TensorBSplineBasis.uniform([2, 2], 1)
        boxes = list(b.elements(BoxSide.EAST))
        assert len(boxes) == 2
        for lower, upper in boxes:
            assert lower[0] == upper[0] == 1.0
        assert len(b.elements()) == 4

    def test_swap_axis(self):
        b = TensorBSplineBasis.uniform([2, 3], 1)
        b.swap_axis()
        assert b.size_cwise() == [4, 3]

    def test_points_shape_checked(self):
        b = TensorBSplineBasis.uniform([1, 1], 1)
        with pytest.raises(ValueError):
            b.eval(np.zeros((3, 2)))


def test_affine_geometry():
    G = bspline_rectangle(0.0, 0.0, 2.0, 1.0, n_elements=(2, 2), degree=2)
    pts = np.array([[0.5, 0.25], [0.5, 1.0]])
    np.testing.assert_allclose(G.eval(pts), [[1.0, 0.5], [0.5, 1.0]], atol=1e-14)
    J = G.deriv(pts)
    np.testing.assert_allclose(J[:, :, 0], [[2.0, 0.0], [0.0, 1.0]], atol=1e-13)
    np.testing.assert_allclose(G.side_points(BoxSide.EAST, 3)[0], 2.0)


class TestContainerBasis:

    def test_stacked_evaluation(self):
        b1 = TensorBSplineBasis.uniform([1, 1], 1)
        b2 = TensorBSplineBasis.uniform([1, 1], 2)
        cb = ContainerBasis([b1, b2])
        assert cb.size() == 13
        assert cb.num_subspaces() == 2
        assert cb.degree(0) == 2

        pts = np.array([[0.3], [0.6]])
        act, vals = cb.eval(pts)
        assert act.shape == (13, 1)
        np.testing.assert_array_equal(np.sort(act[:4, 0]), [0, 1, 2, 3])
        assert act[4:, 0].min() == 4
        np.testing.assert_allclose(vals[:4].sum(), 1.0)
        np.testing.assert_allclose(vals[4:].sum(), 1.0)

    def test_boundary_collects_side_and_corners(self):
        cb = ContainerBasis([TensorBSplineBasis.uniform([1, 1], 1) for _ in range(9)])
        # west layer of sub-basis 1, plus the south-west (5) and north-west (7) corners
        np.testing.assert_array_equal(cb.boundary(BoxSide.WEST), [4, 6, 20, 22, 28, 30])

    def test_missing_side_basis(self):
        cb = ContainerBasis([TensorBSplineBasis.uniform([1, 1], 1)])
        with pytest.raises(IndexError):
            cb.boundary(BoxSide.EAST)

    def test_interpolation_needs_greville_points(self):
        cb = ContainerBasis([TensorBSplineBasis.uniform([1, 1], 1) for _ in range(9)])
        bc = BoundaryCondition(0, BoxSide.WEST, "dirichlet", ConstantFunction(1.0, domain_dim=2))
        with pytest.raises(ValueError, match="L2 projection"):
            interpolate_side(cb, bc)
