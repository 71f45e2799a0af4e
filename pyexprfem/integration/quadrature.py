"""pyexprfem.integration.quadrature
Tensor Gauss–Legendre rules sized from the basis degree.
"""
# pyexprfem.integration.quadrature
from __future__ import annotations

from functools import lru_cache
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.polynomial.legendre import leggauss


# -------------------------------------------------------------------------
# 1‑D Gauss–Legendre
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def gauss_legendre(order: int):
    """Nodes and weights on [-1, 1]."""
    if order < 1:
        raise ValueError(order)
    return leggauss(order)  # (points, weights)


def num_nodes(degree: int, quA: float, quB: int) -> int:
    """Points per direction: ``round(quA*degree + quB)``, at least one."""
    return max(1, int(quA * degree + quB + 0.5))


class QuadRule:
    """
    Tensor Gauss–Legendre rule on the reference box ``[-1, 1]^d``.

    In ``fixed_dir`` (the normal direction of a side) the rule has a single
    node with unit weight.
    """

    def __init__(self, nodes: Sequence[int], fixed_dir: Optional[int] = None):
        self.nodes = [int(n) for n in nodes]
        self.fixed_dir = fixed_dir
        if fixed_dir is not None:
            self.nodes[fixed_dir] = 1
        self._ref = [gauss_legendre(n) for n in self.nodes]

    @property
    def dim(self) -> int:
        return len(self.nodes)

    def num_points(self) -> int:
        return int(np.prod(self.nodes))

    def map_to(self, lower, upper) -> Tuple[np.ndarray, np.ndarray]:
        """
        Points ``(d, nq)`` and weights ``(nq,)`` of the rule mapped to the box
        ``[lower, upper]``; both are empty when the box has zero length in a
        non-fixed direction.
        """
        lower = np.asarray(lower, dtype=float)
        upper = np.asarray(upper, dtype=float)
        pts_1d, w_1d = [], []
        for k, (x, w) in enumerate(self._ref):
            if k == self.fixed_dir:
                pts_1d.append(np.array([lower[k]]))
                w_1d.append(np.ones(1))
                continue
            h = 0.5 * (upper[k] - lower[k])
            if h <= 0.0:
                return np.empty((self.dim, 0)), np.empty(0)
            pts_1d.append(lower[k] + h * (x + 1.0))
            w_1d.append(h * w)
        mesh = np.meshgrid(*pts_1d, indexing="ij")
        points = np.array([m.reshape(-1, order="F") for m in mesh])
        weights = w_1d[0]
        for w in w_1d[1:]:
            weights = (w[:, None] * weights[None, :]).reshape(-1)
        return points, weights

    def __repr__(self):
        return f"QuadRule(nodes={self.nodes}, fixed_dir={self.fixed_dir})"


def get_rule(basis, options, fixed_dir: Optional[int] = None) -> QuadRule:
    """Rule for ``basis`` using the ``quA``/``quB`` entries of ``options``."""
    quA = options.get_real("quA")
    quB = options.get_int("quB")
    nodes = [num_nodes(basis.degree(k), quA, quB) for k in range(basis.domain_dim)]
    return QuadRule(nodes, fixed_dir)
