"""pyexprfem.assembly.evaluator
Quadrature-weighted local matrices and their scatter into the global system.
"""
from __future__ import annotations

import logging

import numpy as np

from pyexprfem.assembly.accumulator import SystemAccumulator

logger = logging.getLogger(__name__)


def _global_indices(space):
    """Global indices of the local rows of ``space`` (component-major)."""
    d = space.data()
    m = space.mapper()
    return np.concatenate([m.local_to_global(d.actives, d.patch, r) for r in range(space.dim)])


class ElementEvaluator:
    """
    Evaluates expressions on the current element of a context and pushes the
    result into an accumulator.

    Free rows receive the contribution; eliminated (boundary) rows are
    skipped. In the matrix case, columns of eliminated trial DOFs are moved
    to the right-hand side with the prescribed values (symmetric
    elimination); zero local entries are not stored.
    """

    def __init__(self, ctx, accumulator: SystemAccumulator, has_matrix: bool = True,
                 has_rhs: bool = True):
        self.ctx = ctx
        self.acc = accumulator
        self.has_matrix = has_matrix
        self.has_rhs = has_rhs

    def local(self, expr) -> np.ndarray:
        """``sum_k w_k * expr.eval(k)`` over the current quadrature points."""
        w = self.ctx.weights()
        loc = w[0] * expr.eval(0)
        for k in range(1, len(w)):
            loc = loc + w[k] * expr.eval(k)
        return np.atleast_2d(loc)

    def evaluate(self, expr) -> np.ndarray:
        if len(self.ctx.weights()) == 0:
            return np.zeros((0, 0))
        loc = self.local(expr)
        if expr.is_matrix():
            self.push(loc, expr.row_var(), expr.col_var())
        elif expr.is_vector():
            self.push(loc, expr.row_var(), None)
        else:
            raise RuntimeError(f"Expression {expr!r} is neither matrix- nor vector-valued.")
        return loc

    def push(self, loc: np.ndarray, v, u=None) -> None:
        if not v.is_valid():
            raise RuntimeError(f"The row space {v!r} is not registered.")
        rows = _global_indices(v)
        if loc.shape[0] != len(rows):
            raise RuntimeError(f"Invalid local block: {loc.shape[0]} rows for {len(rows)} DOFs.")
        rfree = v.mapper().is_free_index(rows)
        rows, loc = rows[rfree], loc[rfree]

        if u is None:
            if not self.has_rhs:
                raise RuntimeError("The right-hand side is not initialized.")
            self.acc.add_rhs(rows, loc)
            return

        if not self.has_matrix:
            raise RuntimeError("The matrix is not initialized.")
        if not u.is_valid():
            raise RuntimeError(f"The column space {u!r} is not registered.")
        cols = _global_indices(u)
        if loc.shape[1] != len(cols):
            raise RuntimeError(f"Invalid local block: {loc.shape[1]} columns for {len(cols)} DOFs.")
        cmap = u.mapper()
        fixed = u.fixed_part()
        if len(fixed) != cmap.boundary_size():
            raise RuntimeError("Invalid values for the fixed part: "
                               f"{len(fixed)} != {cmap.boundary_size()}.")
        cfree = cmap.is_free_index(cols)

        block = loc[:, cfree]
        nz = block != 0
        ii, jj = np.nonzero(nz)
        self.acc.add_matrix(rows[ii], cols[cfree][jj], block[nz])

        if self.has_rhs and not np.all(cfree):
            bnd = loc[:, ~cfree]
            if np.any(bnd != 0):
                vals = np.asarray(fixed).reshape(len(fixed), -1)[cmap.global_to_bindex(cols[~cfree])]
                self.acc.add_rhs(rows, -(bnd @ vals))
