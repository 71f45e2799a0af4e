# conftest.py
import matplotlib
import pytest

from pyexprfem.fem.functions import SymbolicFunction
from pyexprfem.utils.meshgen import bspline_rectangle, split_rectangle


@pytest.fixture(autouse=True)
def mpl_test_backend():
    """Switch to a non-interactive backend for all tests."""
    matplotlib.use('Agg')


@pytest.fixture
def quadratic_exact():
    """u = x^2 + y^2, reproduced exactly by quadratic B-splines (-lap u = -4)."""
    return SymbolicFunction("x**2 + y**2", domain_dim=2)


@pytest.fixture
def unit_square_q2():
    """Single quadratic patch on the unit square, 3x3 elements."""
    return bspline_rectangle(0.0, 0.0, 1.0, 1.0, n_elements=(3, 3), degree=2)


@pytest.fixture
def two_patch_square_q2():
    """Unit square split into two quadratic patches glued at x = 0.5."""
    return split_rectangle(0.0, 0.0, 1.0, 1.0, n_patches=2, n_elements=(2, 3), degree=2)
