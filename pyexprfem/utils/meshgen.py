"""pyexprfem.utils.meshgen
B-spline patches and multi-patch domains for quick tests.
"""
from __future__ import annotations

from typing import Sequence

import numpy as np

from pyexprfem.fem.bspline import BSplineBasis
from pyexprfem.fem.multipatch import MultiPatch
from pyexprfem.fem.tensor import TensorBSplineBasis, TensorBSplineGeometry

__all__ = ["bspline_interval", "bspline_rectangle", "split_rectangle", "split_interval"]


def _linear_map(basis: TensorBSplineBasis, box) -> TensorBSplineGeometry:
    # Greville abscissae as control points reproduce the affine map exactly
    g = basis.greville()
    sup = basis.support()
    coefs = np.empty((basis.size(), basis.domain_dim))
    for k, (a, b) in enumerate(box):
        s = (g[k] - sup[k, 0]) / (sup[k, 1] - sup[k, 0])
        coefs[:, k] = a + s * (b - a)
    return TensorBSplineGeometry(basis, coefs)


def bspline_interval(a: float = 0.0, b: float = 1.0, n_elements: int = 1,
                     degree: int = 1) -> TensorBSplineGeometry:
    """Identity-like map of ``[a, b]`` with a uniform parameter mesh on ``[0, 1]``."""
    basis = TensorBSplineBasis(BSplineBasis.uniform(n_elements, degree))
    return _linear_map(basis, [(a, b)])


def bspline_rectangle(x0: float = 0.0, y0: float = 0.0, x1: float = 1.0, y1: float = 1.0,
                      n_elements: Sequence[int] = (1, 1), degree=1) -> TensorBSplineGeometry:
    """Affine map of the unit square onto ``[x0, x1] x [y0, y1]``."""
    basis = TensorBSplineBasis.uniform(list(n_elements), degree)
    return _linear_map(basis, [(x0, x1), (y0, y1)])


def split_rectangle(x0: float = 0.0, y0: float = 0.0, x1: float = 1.0, y1: float = 1.0,
                    n_patches: int = 2, n_elements: Sequence[int] = (1, 1),
                    degree=1) -> MultiPatch:
    """Rectangle cut into ``n_patches`` vertical strips glued along x."""
    xs = np.linspace(x0, x1, n_patches + 1)
    patches = [bspline_rectangle(xs[i], y0, xs[i + 1], y1, n_elements, degree)
               for i in range(n_patches)]
    return MultiPatch(patches)


def split_interval(a: float = 0.0, b: float = 1.0, n_patches: int = 2,
                   n_elements: int = 1, degree: int = 1) -> MultiPatch:
    xs = np.linspace(a, b, n_patches + 1)
    return MultiPatch([bspline_interval(xs[i], xs[i + 1], n_elements, degree)
                       for i in range(n_patches)])
