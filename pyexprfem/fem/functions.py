"""pyexprfem.fem.functions
Coefficient functions: symbolic formulas, constants and per-patch collections.

Every function takes points of shape ``(d, nq)`` and returns values
``(t, nq)``, first derivatives ``(t, d, nq)`` and second derivatives
``(t, d, d, nq)`` where ``t`` is the target dimension.
"""
# functions.py
from __future__ import annotations

from typing import List, Sequence, Union

import numpy as np
import sympy as sp

_COORDS = sp.symbols("x y z")


def _broadcast(val, nq: int) -> np.ndarray:
    # lambdify returns a plain scalar for constant expressions
    return np.broadcast_to(np.asarray(val, dtype=float), (nq,))


class SymbolicFunction:
    """
    Function given by SymPy formulas in the variables ``x, y, z``.

    >>> f = SymbolicFunction("x**2 + y**2", domain_dim=2)
    >>> g = SymbolicFunction(["y", "-x"], domain_dim=2)   # vector-valued
    """

    def __init__(self, formulas: Union[str, sp.Expr, Sequence], domain_dim: int = 2):
        if isinstance(formulas, (str, sp.Expr)) or np.isscalar(formulas):
            formulas = [formulas]
        if not 1 <= domain_dim <= 3:
            raise ValueError("domain_dim must be 1, 2 or 3.")
        self._dim = int(domain_dim)
        syms = _COORDS[:self._dim]
        self.exprs = [sp.sympify(f) for f in formulas]
        free = set().union(*(e.free_symbols for e in self.exprs))
        if not free <= set(syms):
            raise ValueError(f"Formulas may only use the variables {syms}, got {free}.")
        self._f = [sp.lambdify(syms, e, "numpy") for e in self.exprs]
        self._df = [[sp.lambdify(syms, sp.diff(e, s), "numpy") for s in syms] for e in self.exprs]
        self._d2f = [[[sp.lambdify(syms, sp.diff(e, s, r), "numpy") for r in syms] for s in syms]
                     for e in self.exprs]

    @property
    def domain_dim(self) -> int:
        return self._dim

    @property
    def target_dim(self) -> int:
        return len(self.exprs)

    def piece(self, k: int = 0) -> "SymbolicFunction":
        return self

    def _args(self, points):
        points = np.atleast_2d(np.asarray(points, dtype=float))
        if points.shape[0] != self._dim:
            raise ValueError(f"Expected points of shape ({self._dim}, nq), got {points.shape}.")
        return [points[i] for i in range(self._dim)], points.shape[1]

    def eval(self, points) -> np.ndarray:
        args, nq = self._args(points)
        return np.array([_broadcast(f(*args), nq) for f in self._f])

    def deriv(self, points) -> np.ndarray:
        args, nq = self._args(points)
        return np.array([[_broadcast(g(*args), nq) for g in row] for row in self._df])

    def deriv2(self, points) -> np.ndarray:
        args, nq = self._args(points)
        return np.array([[[_broadcast(h(*args), nq) for h in col] for col in row]
                         for row in self._d2f])

    def __repr__(self):
        return f"SymbolicFunction({[str(e) for e in self.exprs]})"


class ConstantFunction:
    """Function with the same value everywhere."""

    def __init__(self, value, domain_dim: int = 2):
        self.value = np.atleast_1d(np.asarray(value, dtype=float))
        self._dim = int(domain_dim)

    @property
    def domain_dim(self) -> int:
        return self._dim

    @property
    def target_dim(self) -> int:
        return self.value.shape[0]

    def piece(self, k: int = 0) -> "ConstantFunction":
        return self

    def eval(self, points) -> np.ndarray:
        nq = np.atleast_2d(points).shape[1]
        return np.repeat(self.value[:, None], nq, axis=1)

    def deriv(self, points) -> np.ndarray:
        nq = np.atleast_2d(points).shape[1]
        return np.zeros((self.target_dim, self._dim, nq))

    def deriv2(self, points) -> np.ndarray:
        nq = np.atleast_2d(points).shape[1]
        return np.zeros((self.target_dim, self._dim, self._dim, nq))

    def __repr__(self):
        return f"ConstantFunction({self.value.tolist()})"


class PiecewiseFunction:
    """One function per patch."""

    def __init__(self, pieces: Sequence):
        self.pieces: List = list(pieces)
        if not self.pieces:
            raise ValueError("PiecewiseFunction needs at least one piece.")

    @property
    def domain_dim(self) -> int:
        return self.pieces[0].domain_dim

    @property
    def target_dim(self) -> int:
        return self.pieces[0].target_dim

    def piece(self, k: int):
        return self.pieces[k]

    def __repr__(self):
        return f"PiecewiseFunction({len(self.pieces)} pieces)"
