"""pyexprfem.fem.tensor
Tensor-product B-spline bases and geometry patches.

Basis functions are enumerated with the first parametric direction running
fastest: the function with multi-index ``(i0, i1)`` has the flat index
``i0 + n0*i1``.
"""
from __future__ import annotations

from itertools import product
from typing import List, Optional, Sequence

import numpy as np

from pyexprfem.core.boundary import BoxSide
from pyexprfem.fem.bspline import BSplineBasis
from pyexprfem.fem.domain import DomainIterator


def _outer(factors: Sequence[np.ndarray]) -> np.ndarray:
    """Row-wise tensor product of ``(nq, m_d)`` factors, first factor fastest."""
    out = factors[0]
    for f in factors[1:]:
        nq = out.shape[0]
        out = (f[:, :, None] * out[:, None, :]).reshape(nq, -1)
    return out


class TensorBSplineBasis:
    """
    Tensor product of univariate :class:`BSplineBasis` objects.

    The evaluation methods take parametric points of shape ``(d, nq)`` and
    return the indices of the active functions ``(nA, nq)`` together with
    values ``(nA, nq)``, first derivatives ``(nA, d, nq)`` and second
    derivatives ``(nA, d, d, nq)``.
    """

    def __init__(self, *bases: BSplineBasis):
        if len(bases) == 1 and isinstance(bases[0], (list, tuple)):
            bases = tuple(bases[0])
        if not 1 <= len(bases) <= 3:
            raise ValueError("TensorBSplineBasis supports 1 to 3 parametric directions.")
        self.bases: List[BSplineBasis] = list(bases)

    @classmethod
    def uniform(cls, n_elements: Sequence[int], degree, box=None) -> "TensorBSplineBasis":
        """Uniform open-knot basis on ``box`` (defaults to the unit box)."""
        d = len(n_elements)
        degrees = [degree] * d if np.isscalar(degree) else list(degree)
        box = [(0.0, 1.0)] * d if box is None else box
        return cls(*[BSplineBasis.uniform(n, p, a, b)
                     for n, p, (a, b) in zip(n_elements, degrees, box)])

    # ---------------------------------------------------------------- props
    @property
    def domain_dim(self) -> int:
        return len(self.bases)

    @property
    def target_dim(self) -> int:
        return 1

    def component(self, direction: int) -> BSplineBasis:
        return self.bases[direction]

    def degree(self, direction: int) -> int:
        return self.bases[direction].degree

    def max_degree(self) -> int:
        return max(b.degree for b in self.bases)

    def size_cwise(self) -> List[int]:
        return [b.size() for b in self.bases]

    def size(self) -> int:
        return int(np.prod(self.size_cwise()))

    def support(self) -> np.ndarray:
        """Parameter box ``(d, 2)``."""
        return np.array([b.support() for b in self.bases])

    def num_elements(self, side: Optional[BoxSide] = None) -> int:
        n = [b.num_elements() for b in self.bases]
        if side is not None:
            n[BoxSide(side).direction] = 1
        return int(np.prod(n))

    def elements(self, side: Optional[BoxSide] = None) -> DomainIterator:
        return DomainIterator([b.breaks() for b in self.bases], side)

    def greville(self) -> np.ndarray:
        """Greville points ``(d, size)`` in the flat basis ordering."""
        g = [b.greville() for b in self.bases]
        mesh = np.meshgrid(*g, indexing="ij")
        return np.array([m.reshape(-1, order="F") for m in mesh])

    # ----------------------------------------------------------- evaluation
    def tabulate(self, points, nderiv: int = 0):
        """
        Active functions and their derivatives up to ``nderiv`` (<= 2).

        Returns ``(actives, [values, derivs, derivs2][:nderiv+1])``.
        """
        points = np.atleast_2d(np.asarray(points, dtype=float))
        d = self.domain_dim
        if points.shape[0] != d:
            raise ValueError(f"Expected points of shape ({d}, nq), got {points.shape}.")
        if nderiv > 2:
            raise ValueError("Derivatives up to order 2 are available.")
        nq = points.shape[1]
        acts, ders = [], []
        for k, b in enumerate(self.bases):
            act, der = b.tabulate(points[k], nderiv)
            acts.append(act.T)                        # (nq, p_k+1)
            ders.append(np.transpose(der, (0, 2, 1)))  # (nderiv+1, nq, p_k+1)

        # flat active indices, first direction fastest
        stride, gidx = 1, None
        for k, a in enumerate(acts):
            cur = a * stride
            gidx = cur if gidx is None else (cur[:, :, None] + gidx[:, None, :]).reshape(nq, -1)
            stride *= self.bases[k].size()
        actives = gidx.T

        def term(orders):
            return _outer([ders[k][o] for k, o in enumerate(orders)]).T

        out = [term([0] * d)]
        if nderiv >= 1:
            dv = np.empty((actives.shape[0], d, nq))
            for i in range(d):
                o = [0] * d
                o[i] = 1
                dv[:, i, :] = term(o)
            out.append(dv)
        if nderiv >= 2:
            d2 = np.empty((actives.shape[0], d, d, nq))
            for i, j in product(range(d), repeat=2):
                o = [0] * d
                o[i] += 1
                o[j] += 1
                d2[:, i, j, :] = term(o)
            out.append(d2)
        return actives, out

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
        """
        Indices of the functions in the ``offset``-th layer parallel to ``side``,
        ordered along the side with the lowest remaining direction fastest.
        """
        side = BoxSide(side)
        n = self.size_cwise()
        k = side.direction
        if k >= len(n):
            raise ValueError(f"Side {side.name} does not exist for a {len(n)}-D basis.")
        if not 0 <= offset < n[k]:
            raise ValueError("Boundary offset out of range.")
        fixed = offset if side.parameter == 0 else n[k] - 1 - offset
        ranges = [range(m) if i != k else [fixed] for i, m in enumerate(n)]
        idx = []
        for multi in product(*reversed(ranges)):
            multi = multi[::-1]
            flat, stride = 0, 1
            for i, m in enumerate(n):
                flat += multi[i] * stride
                stride *= m
            idx.append(flat)
        return np.array(idx, dtype=np.int64)

    def boundary(self, side: BoxSide) -> np.ndarray:
        return self.boundary_offset(side, 0)

    # ------------------------------------------------------------ refinement
    def uniform_refine(self, num_knots: int = 1) -> None:
        for b in self.bases:
            b.uniform_refine(num_knots)

    def swap_axis(self) -> None:
        """Exchange the first two parametric directions."""
        if self.domain_dim < 2:
            raise ValueError("swap_axis() needs at least two directions.")
        self.bases[0], self.bases[1] = self.bases[1], self.bases[0]

    def copy(self) -> "TensorBSplineBasis":
        return TensorBSplineBasis(*[b.copy() for b in self.bases])

    def __repr__(self):
        degs = tuple(b.degree for b in self.bases)
        return f"TensorBSplineBasis(degree={degs}, size={self.size_cwise()})"


class TensorBSplineGeometry:
    """
    Tensor B-spline map from the parameter box to ``R^g``.

    ``coefs`` holds one control point per basis function, shape ``(size, g)``.
    """

    def __init__(self, basis: TensorBSplineBasis, coefs):
        coefs = np.asarray(coefs, dtype=float)
        if coefs.ndim == 1:
            coefs = coefs[:, None]
        if coefs.shape[0] != basis.size():
            raise ValueError(f"Expected {basis.size()} control points, got {coefs.shape[0]}.")
        self.basis = basis
        self.coefs = coefs

    @property
    def domain_dim(self) -> int:
        return self.basis.domain_dim

    @property
    def target_dim(self) -> int:
        return self.coefs.shape[1]

    def support(self) -> np.ndarray:
        return self.basis.support()

    def piece(self, k: int = 0) -> "TensorBSplineGeometry":
        return self

    def eval(self, points) -> np.ndarray:
        """Mapped points ``(g, nq)``."""
        act, vals = self.basis.eval(points)
        return np.einsum("aqg,aq->gq", self.coefs[act], vals)

    def deriv(self, points) -> np.ndarray:
        """Jacobians ``(g, d, nq)``."""
        act, dv = self.basis.deriv(points)
        return np.einsum("aqg,adq->gdq", self.coefs[act], dv)

    def deriv2(self, points) -> np.ndarray:
        """Second derivatives ``(g, d, d, nq)``."""
        act, d2 = self.basis.deriv2(points)
        return np.einsum("aqg,adeq->gdeq", self.coefs[act], d2)

    def side_points(self, side: BoxSide, num: int = 3) -> np.ndarray:
        """Physical points ``(g, num)`` equally spaced along a side."""
        side = BoxSide(side)
        sup = self.support()
        d = self.domain_dim
        pts = np.empty((d, num if d > 1 else 1))
        pts[side.direction] = sup[side.direction, side.parameter]
        if d == 2:
            a = 1 - side.direction
            pts[a] = np.linspace(sup[a, 0], sup[a, 1], num)
        elif d > 2:
            raise NotImplementedError("side_points() supports 1-D and 2-D patches.")
        return self.eval(pts)

    def copy(self) -> "TensorBSplineGeometry":
        return TensorBSplineGeometry(self.basis.copy(), self.coefs.copy())

    def __repr__(self):
        return f"TensorBSplineGeometry({self.basis!r}, target_dim={self.target_dim})"
