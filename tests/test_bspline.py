import numpy as np
import pytest

from pyexprfem.fem.bspline import BSplineBasis, find_span, make_knots


def test_make_knots_open():
    t = make_knots([0.0, 0.5, 1.0], 2)
    np.testing.assert_array_equal(t, [0, 0, 0, 0.5, 1, 1, 1])
    t2 = make_knots([0.0, 0.5, 1.0], 2, multiplicity=2)
    assert len(t2) == 8


@pytest.mark.parametrize("breaks", [[0.0], [0.0, 0.0, 1.0]])
def test_make_knots_rejects_bad_breaks(breaks):
    with pytest.raises(ValueError):
        make_knots(breaks, 1)


def test_find_span_last_point_in_last_span():
    t = make_knots([0.0, 0.5, 1.0], 2)
    assert find_span(t, 2, 0.0) == 2
    assert find_span(t, 2, 0.5) == 3
    assert find_span(t, 2, 1.0) == 3


def test_single_element_is_bernstein():
    b = BSplineBasis.uniform(1, 2)
    x = np.array([0.0, 0.3, 1.0])
    act, ders = b.tabulate(x, nderiv=2)
    np.testing.assert_array_equal(act[:, 0], [0, 1, 2])
    expected = np.array([(1 - x) ** 2, 2 * x * (1 - x), x ** 2])
    np.testing.assert_allclose(ders[0], expected, atol=1e-14)
    np.testing.assert_allclose(ders[1], [-2 * (1 - x), 2 - 4 * x, 2 * x], atol=1e-14)
    np.testing.assert_allclose(ders[2], np.array([[2.0], [-4.0], [2.0]]).repeat(3, axis=1),
                               atol=1e-12)


def test_partition_of_unity():
    b = BSplineBasis(make_knots([0.0, 0.2, 0.5, 0.7, 1.0], 3), 3)
    x = np.linspace(0.0, 1.0, 17)
    act, ders = b.tabulate(x, nderiv=1)
    np.testing.assert_allclose(ders[0].sum(axis=0), 1.0, rtol=1e-13)
    np.testing.assert_allclose(ders[1].sum(axis=0), 0.0, atol=1e-11)
    assert act.min() >= 0 and act.max() < b.size()


def test_derivative_matches_finite_difference():
    b = BSplineBasis.uniform(3, 2)
    x, h = 0.4, 1e-6
    _, d = b.tabulate([x], nderiv=1)
    _, vp = b.tabulate([x + h])
    _, vm = b.tabulate([x - h])
    np.testing.assert_allclose(d[1, :, 0], (vp[0, :, 0] - vm[0, :, 0]) / (2 * h), atol=1e-6)


def test_greville_and_counts():
    b = BSplineBasis(make_knots([0.0, 0.5, 1.0], 2), 2)
    assert b.size() == 4
    assert b.num_elements() == 2
    np.testing.assert_allclose(b.greville(), [0.0, 0.25, 0.75, 1.0])
    np.testing.assert_allclose(BSplineBasis.uniform(2, 0).greville(), [0.25, 0.75])


def test_collocation_at_greville_is_invertible():
    b = BSplineBasis.uniform(4, 3)
    C = b.collocation_matrix(b.greville())
    assert C.shape == (b.size(), b.size())
    assert abs(np.linalg.det(C)) > 1e-8


def test_uniform_refine_doubles_elements():
    b = BSplineBasis.uniform(2, 2)
    n0 = b.size()
    b.uniform_refine()
    assert b.num_elements() == 4
    assert b.size() == n0 + 2


def test_knot_vector_must_be_open():
    with pytest.raises(ValueError):
        BSplineBasis([0.0, 0.5, 1.0, 1.0], 1)
