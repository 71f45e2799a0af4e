"""pyexprfem.fem.container
Basis made of several tensor bases stacked on top of each other.
"""
from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from pyexprfem.core.boundary import BoxSide
from pyexprfem.fem.domain import DomainIterator
from pyexprfem.fem.tensor import TensorBSplineBasis


class ContainerBasis:
    """
    Stack of tensor bases sharing one parameter domain.

    Function ``j`` of sub-basis ``i`` has the index ``j + sum(size(0..i-1))``.
    For the boundary queries the sub-bases are expected in the order
    ``[interior, west, east, south, north, sw, se, nw, ne]``: a side's layer
    is the side sub-basis plus the corner sub-bases lying on that side.

    ``helpers`` optionally stores, for every sub-basis, the univariate bases
    (one per side) used to build it.
    """

    def __init__(self, bases: Sequence[TensorBSplineBasis],
                 helpers: Optional[Sequence[Sequence]] = None):
        if not bases:
            raise ValueError("ContainerBasis needs at least one sub-basis.")
        dims = {b.domain_dim for b in bases}
        if len(dims) != 1:
            raise ValueError("All sub-bases must have the same parametric dimension.")
        self.bases: List[TensorBSplineBasis] = list(bases)
        self.helpers = [list(h) for h in helpers] if helpers is not None else []

    # ---------------------------------------------------------------- props
    @property
    def domain_dim(self) -> int:
        return self.bases[0].domain_dim

    @property
    def target_dim(self) -> int:
        return 1

    def num_subspaces(self) -> int:
        return len(self.bases)

    def num_helpers(self) -> int:
        return len(self.helpers)

    def piece(self, i: int) -> TensorBSplineBasis:
        return self.bases[i]

    def _shifts(self) -> np.ndarray:
        return np.concatenate([[0], np.cumsum([b.size() for b in self.bases])]).astype(np.int64)

    def size(self) -> int:
        return int(self._shifts()[-1])

    def degree(self, direction: int) -> int:
        return max(b.degree(direction) for b in self.bases)

    def max_degree(self) -> int:
        return max(b.max_degree() for b in self.bases)

    def support(self) -> np.ndarray:
        return self.bases[0].support()

    def elements(self, side: Optional[BoxSide] = None) -> DomainIterator:
        return self.bases[0].elements(side)

    def num_elements(self, side: Optional[BoxSide] = None) -> int:
        return self.bases[0].num_elements(side)

    # ----------------------------------------------------------- evaluation
    def tabulate(self, points, nderiv: int = 0):
        shifts = self._shifts()
        acts, tabs = [], []
        for i, b in enumerate(self.bases):
            a, t = b.tabulate(points, nderiv)
            acts.append(a + shifts[i])
            tabs.append(t)
        out = [np.concatenate([t[o] for t in tabs], axis=0) for o in range(nderiv + 1)]
        return np.concatenate(acts, axis=0), out

    def active(self, points) -> np.ndarray:
        return self.tabulate(points, 0)[0]

    def eval(self, points):
        act, (vals,) = self.tabulate(points, 0)
        return act, vals

    def deriv(self, points):
        act, (_, dv) = self.tabulate(points, 1)
        return act, dv

    def deriv2(self, points):
        act, (_, _, d2) = self.tabulate(points, 2)
        return act, d2

    # ------------------------------------------------------------- boundary
    def boundary_offset(self, side: BoxSide, offset: int = 0) -> np.ndarray:
        side = BoxSide(side)
        shifts = self._shifts()
        sid = int(side)
        if sid >= len(self.bases):
            raise IndexError(f"No sub-basis stored for side {side.name.lower()}.")
        parts = [self.bases[sid].boundary_offset(side, offset) + shifts[sid]]
        for corner in side.contained_corners():
            cid = int(corner) + 4
            if cid >= len(self.bases):
                raise IndexError(f"No sub-basis stored for corner {corner.name.lower()}.")
            parts.append(self.bases[cid].boundary_offset(side, offset) + shifts[cid])
        return np.concatenate(parts)

    def boundary(self, side: BoxSide) -> np.ndarray:
        return self.boundary_offset(side, 0)

    # ------------------------------------------------------------ refinement
    def uniform_refine(self, num_knots: int = 1) -> None:
        for b in self.bases:
            b.uniform_refine(num_knots)
        for hs in self.helpers:
            for h in hs:
                h.uniform_refine(num_knots)

    def swap_axis(self) -> None:
        for b in self.bases:
            b.swap_axis()

    def copy(self) -> "ContainerBasis":
        return ContainerBasis([b.copy() for b in self.bases],
                              [[h.copy() for h in hs] for hs in self.helpers] or None)

    def __repr__(self):
        return f"ContainerBasis({len(self.bases)} sub-bases, size={self.size()})"
