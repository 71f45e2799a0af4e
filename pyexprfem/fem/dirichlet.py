"""pyexprfem.fem.dirichlet
Values of eliminated (Dirichlet) DOFs.
"""
from __future__ import annotations

import logging

import numpy as np

from pyexprfem.core.boundary import DirichletValues
from pyexprfem.integration.quadrature import QuadRule, num_nodes

logger = logging.getLogger(__name__)


def _side_values(bc, points: np.ndarray, geometry) -> np.ndarray:
    """Dirichlet data ``(t, n)`` at parametric points of the side."""
    f = bc.function.piece(bc.patch)
    if bc.parametric:
        return f.eval(points)
    if geometry is None:
        raise ValueError("Non-parametric Dirichlet data needs a geometry map.")
    return f.eval(geometry.piece(bc.patch).eval(points))


def _side_lookup(basis, idx: np.ndarray) -> np.ndarray:
    lookup = np.full(basis.size(), -1, dtype=np.int64)
    lookup[idx] = np.arange(len(idx))
    return lookup


def interpolate_side(basis, bc, geometry=None) -> np.ndarray:
    """Collocation of the side data at the Greville points of the side functions."""
    if not hasattr(basis, "greville"):
        raise ValueError(f"Interpolation is not available for {type(basis).__name__}; "
                         "use L2 projection (DirichletValues 102).")
    idx = basis.boundary(bc.side)
    pts = basis.greville()[:, idx]
    act, (vals,) = basis.tabulate(pts, 0)
    cols = _side_lookup(basis, idx)[act]
    rows = np.broadcast_to(np.arange(pts.shape[1]), act.shape)
    mask = cols >= 0
    C = np.zeros((len(idx), len(idx)))
    np.add.at(C, (rows[mask], cols[mask]), vals[mask])
    return np.linalg.solve(C, _side_values(bc, pts, geometry).T)


def project_side(basis, bc, geometry=None, quA: float = 1.0, quB: int = 1) -> np.ndarray:
    """L2 projection of the side data onto the functions of the side."""
    side = bc.side
    idx = basis.boundary(side)
    lookup = _side_lookup(basis, idx)
    rule = QuadRule([num_nodes(basis.degree(k), quA, quB) for k in range(basis.domain_dim)],
                    fixed_dir=side.direction)
    M = np.zeros((len(idx), len(idx)))
    b = None
    for lower, upper in basis.elements(side):
        pts, w = rule.map_to(lower, upper)
        if pts.shape[1] == 0:
            continue
        if geometry is not None and basis.domain_dim == 2:
            J = geometry.piece(bc.patch).deriv(pts)
            w = w * np.linalg.norm(J[:, 1 - side.direction, :], axis=0)
        g = _side_values(bc, pts, geometry)
        if b is None:
            b = np.zeros((len(idx), g.shape[0]))
        act, (vals,) = basis.tabulate(pts, 0)
        cols = lookup[act]
        for q in range(pts.shape[1]):
            sel = cols[:, q] >= 0
            c, v = cols[sel, q], vals[sel, q]
            M[np.ix_(c, c)] += w[q] * np.outer(v, v)
            b[c] += w[q] * np.outer(v, g[:, q])
    return np.linalg.solve(M, b)


def compute_fixed_dofs(fs, mapper, bcs, unknown: int, n_comp: int,
                       method: DirichletValues, geometry=None, options=None) -> np.ndarray:
    """
    Fixed-DOF vector of length ``mapper.boundary_size()``.

    Homogeneous and user-defined values start as zeros; interpolation and
    L2 projection are computed side by side from the Dirichlet functions.
    Records without a function are homogeneous.
    """
    fixed = np.zeros(mapper.boundary_size())
    if bcs is None or method in (DirichletValues.HOMOGENEOUS, DirichletValues.USER):
        return fixed
    quA = options.get_real("quA") if options is not None else 1.0
    quB = options.get_int("quB") if options is not None else 1
    for bc in bcs.dirichlet_sides(unknown):
        if bc.function is None:
            continue
        basis = fs.basis(bc.patch)
        idx = basis.boundary(bc.side)
        if method == DirichletValues.INTERPOLATION:
            coef = interpolate_side(basis, bc, geometry)
        else:
            coef = project_side(basis, bc, geometry, quA, quB)
        for c in bc.components(n_comp):
            col = c if coef.shape[1] > 1 else 0
            fixed[mapper.bindex(idx, bc.patch, c)] = coef[:, col]
        logger.debug("Dirichlet values on %r computed (%s)", bc.patch_side, method.name.lower())
    return fixed
