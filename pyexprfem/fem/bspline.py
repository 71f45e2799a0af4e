"""pyexprfem.fem.bspline
Univariate B-spline bases on open (clamped) knot vectors.
"""
# pyexprfem.fem.bspline
from __future__ import annotations

import numpy as np
import numba


# -------------------------------------------------------------------------
# Kernels (The NURBS Book, algorithms A2.1 and A2.3)
# -------------------------------------------------------------------------
@numba.jit(nopython=True, cache=True)
def find_span(knots, degree, x):
    """Index ``i`` of the knot span ``[t_i, t_{i+1})`` containing ``x``."""
    low = degree
    high = len(knots) - 1 - degree
    if x <= knots[low]:
        return low
    if x >= knots[high]:
        return high - 1
    span = (low + high) // 2
    while x < knots[span] or x >= knots[span + 1]:
        if x < knots[span]:
            high = span
        else:
            low = span
        span = (low + high) // 2
    return span


@numba.jit(nopython=True, cache=True)
def basis_funs_all_ders(knots, degree, x, span, n):
    """
    Values and derivatives up to order ``n`` of the ``degree+1`` B-splines
    that are non-zero at ``x``; ``ders[k, j]`` is the k-th derivative of
    basis function ``span-degree+j``.
    """
    left = np.empty(degree)
    right = np.empty(degree)
    ndu = np.empty((degree + 1, degree + 1))
    a = np.empty((2, degree + 1))
    ders = np.zeros((n + 1, degree + 1))
    ne = min(n, degree)

    ndu[0, 0] = 1.0
    for j in range(degree):
        left[j] = x - knots[span - j]
        right[j] = knots[span + 1 + j] - x
        saved = 0.0
        for r in range(j + 1):
            # lower triangle: knot differences
            ndu[j + 1, r] = 1.0 / (right[r] + left[j - r])
            temp = ndu[r, j] * ndu[j + 1, r]
            ndu[r, j + 1] = saved + right[r] * temp
            saved = left[j - r] * temp
        ndu[j + 1, j + 1] = saved

    for j in range(degree + 1):
        ders[0, j] = ndu[j, degree]

    for r in range(degree + 1):
        s1 = 0
        s2 = 1
        a[0, 0] = 1.0
        for k in range(1, ne + 1):
            d = 0.0
            rk = r - k
            pk = degree - k
            if r >= k:
                a[s2, 0] = a[s1, 0] * ndu[pk + 1, rk]
                d = a[s2, 0] * ndu[rk, pk]
            j1 = 1 if rk > -1 else -rk
            j2 = k - 1 if r - 1 <= pk else degree - r
            for jj in range(j1, j2 + 1):
                a[s2, jj] = (a[s1, jj] - a[s1, jj - 1]) * ndu[pk + 1, rk + jj]
                d += a[s2, jj] * ndu[rk + jj, pk]
            if r <= pk:
                a[s2, k] = -a[s1, k - 1] * ndu[pk + 1, r]
                d += a[s2, k] * ndu[r, pk]
            ders[k, r] = d
            tmp = s1
            s1 = s2
            s2 = tmp

    fac = degree
    for k in range(1, ne + 1):
        for j in range(degree + 1):
            ders[k, j] *= fac
        fac *= degree - k
    return ders


@numba.jit(nopython=True, cache=True)
def tabulate_1d(knots, degree, xs, nderiv):
    """Spans ``(nq,)`` and derivatives ``(nq, nderiv+1, degree+1)`` at the points ``xs``."""
    nq = xs.shape[0]
    spans = np.empty(nq, dtype=np.int64)
    ders = np.zeros((nq, nderiv + 1, degree + 1))
    for q in range(nq):
        s = find_span(knots, degree, xs[q])
        spans[q] = s
        ders[q, :, :] = basis_funs_all_ders(knots, degree, xs[q], s, nderiv)
    return spans, ders


# -------------------------------------------------------------------------
# Knot vector helpers
# -------------------------------------------------------------------------
def make_knots(breaks, degree: int, multiplicity: int = 1) -> np.ndarray:
    """Open knot vector with the given breakpoints and interior multiplicity."""
    breaks = np.asarray(breaks, dtype=float)
    if breaks.ndim != 1 or len(breaks) < 2:
        raise ValueError("At least two breakpoints are needed.")
    if np.any(np.diff(breaks) <= 0):
        raise ValueError("Breakpoints must be strictly increasing.")
    if not 1 <= multiplicity <= degree + 1:
        raise ValueError("Interior multiplicity must be in [1, degree+1].")
    return np.concatenate([np.full(degree + 1, breaks[0]),
                           np.repeat(breaks[1:-1], multiplicity),
                           np.full(degree + 1, breaks[-1])])


class BSplineBasis:
    """
    B-spline basis of a given degree on an open knot vector.

    Parameters
    ----------
    knots : array_like
        Non-decreasing knot vector whose first and last values are repeated
        ``degree+1`` times.
    degree : int
        Polynomial degree (>= 0).
    """

    def __init__(self, knots, degree: int):
        knots = np.ascontiguousarray(knots, dtype=float)
        degree = int(degree)
        if degree < 0:
            raise ValueError("Degree must be non-negative.")
        if knots.ndim != 1 or len(knots) < 2 * (degree + 1):
            raise ValueError("Knot vector too short for the requested degree.")
        if np.any(np.diff(knots) < 0):
            raise ValueError("Knot vector must be non-decreasing.")
        if np.any(knots[:degree + 1] != knots[0]) or np.any(knots[-degree - 1:] != knots[-1]):
            raise ValueError("Knot vector must be open (clamped).")
        self.knots = knots
        self.p = degree

    @classmethod
    def uniform(cls, n_elements: int, degree: int, a: float = 0.0, b: float = 1.0) -> "BSplineBasis":
        return cls(make_knots(np.linspace(a, b, n_elements + 1), degree), degree)

    # ---------------------------------------------------------------- props
    @property
    def degree(self) -> int:
        return self.p

    def size(self) -> int:
        return len(self.knots) - self.p - 1

    def breaks(self) -> np.ndarray:
        return np.unique(self.knots)

    def num_elements(self) -> int:
        return len(self.breaks()) - 1

    def support(self) -> tuple:
        return float(self.knots[0]), float(self.knots[-1])

    def greville(self) -> np.ndarray:
        """Knot averages; for degree 0 the midpoints of the knot spans."""
        t, p = self.knots, self.p
        if p == 0:
            return 0.5 * (t[:-1] + t[1:])
        return np.array([t[i + 1:i + p + 1].mean() for i in range(self.size())])

    # ----------------------------------------------------------- evaluation
    def tabulate(self, xs, nderiv: int = 0):
        """
        Active indices ``(p+1, nq)`` and derivatives ``(nderiv+1, p+1, nq)``.
        """
        xs = np.ascontiguousarray(np.atleast_1d(xs), dtype=float)
        spans, ders = tabulate_1d(self.knots, self.p, xs, int(nderiv))
        actives = spans[None, :] - self.p + np.arange(self.p + 1)[:, None]
        return actives, np.transpose(ders, (1, 2, 0))

    def collocation_matrix(self, xs) -> np.ndarray:
        """Dense matrix ``C[i, j] = B_j(x_i)``."""
        xs = np.atleast_1d(xs)
        act, vals = self.tabulate(xs, 0)
        C = np.zeros((len(xs), self.size()))
        cols = np.arange(len(xs))
        for a in range(self.p + 1):
            C[cols, act[a]] = vals[0, a]
        return C

    # ------------------------------------------------------------ refinement
    def uniform_refine(self, num_knots: int = 1) -> None:
        """Insert ``num_knots`` equally spaced knots in every element."""
        br = self.breaks()
        new = [np.linspace(br[i], br[i + 1], num_knots + 2)[1:-1] for i in range(len(br) - 1)]
        self.knots = np.sort(np.concatenate([self.knots] + new))

    def copy(self) -> "BSplineBasis":
        return BSplineBasis(self.knots.copy(), self.p)

    def __repr__(self):
        return f"BSplineBasis(degree={self.p}, size={self.size()}, elements={self.num_elements()})"
