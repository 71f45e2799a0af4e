"""pyexprfem.ufl.context
Registry of value sources (maps, spaces, functions) and their per-element caches.

The context knows *what* an expression needs (``parse`` records flags per
source) and computes it for the current quadrature points (``precompute``).
Cached element data lives in ``threading.local`` storage so that worker
threads of the domain loop never share it; the registry and the flags are
shared and read-only during the element loop.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import IntFlag
from typing import Iterable, List, Optional

import numpy as np

from pyexprfem.core.boundary import BoxSide

logger = logging.getLogger(__name__)


class NEED(IntFlag):
    VALUE = 1
    DERIV = 2
    DERIV2 = 4
    MEASURE = 8
    NORMAL = 16
    GRAD_TRANSFORM = 32


_EVAL_ORDER = {"map": 0, "space": 1, "function": 2, "mutable": 2}


@dataclass(eq=False)
class Source:
    """A registered value source; ``map_source`` makes a function a composition."""
    kind: str
    obj: object = None
    map_source: Optional["Source"] = None
    parametric: bool = True
    flags: NEED = NEED(0)

    def __repr__(self):
        return f"Source({self.kind}, {type(self.obj).__name__}, flags={int(self.flags)})"


@dataclass
class ElementData:
    """Values of one source at the current quadrature points."""
    patch: int = -1
    side: Optional[BoxSide] = None
    actives: Optional[np.ndarray] = None      # (nA,)
    values: Optional[np.ndarray] = None       # (nA, nq) or (t, nq)
    derivs: Optional[np.ndarray] = None       # (nA, d, nq) or (t, d, nq)
    derivs2: Optional[np.ndarray] = None
    jacobians: Optional[np.ndarray] = None    # (nq, g, d)
    jac_inv: Optional[np.ndarray] = None      # (nq, d, g)
    measures: Optional[np.ndarray] = None     # (nq,)
    normals: Optional[np.ndarray] = None      # (g, nq)


# -------------------------------------------------------------------------
# Geometry helpers
# -------------------------------------------------------------------------
def volume_measure(jac: np.ndarray) -> np.ndarray:
    """|det J| for square Jacobians, sqrt(det(J^T J)) otherwise; ``jac`` is (nq, g, d)."""
    _, g, d = jac.shape
    if g == d:
        return np.abs(np.linalg.det(jac))
    return np.sqrt(np.linalg.det(np.einsum("qgi,qgj->qij", jac, jac)))


def outer_normal(jac: np.ndarray, side: BoxSide) -> np.ndarray:
    """
    Outer normal ``(g, nq)`` on ``side``; its length is the side measure.
    """
    nq, g, d = jac.shape
    sgn = 1.0 if (side.direction + side.parameter) % 2 == 1 else -1.0
    if g == d:
        sgn = sgn * np.sign(np.linalg.det(jac))
    else:
        sgn = sgn * np.ones(nq)
    if d == 1 and g == 1:
        return sgn[None, :].astype(float)
    if d == 2 and g == 2:
        t = jac[:, :, 1 - side.direction]
        return np.stack([t[:, 1], -t[:, 0]]) * sgn
    raise NotImplementedError(f"Outer normals for {d}-D patches in R^{g} are not available.")


def merge_actives(actives: np.ndarray, tabs: List[np.ndarray]):
    """
    Union of the active functions over all points.

    Tabulations are re-indexed onto the union; functions inactive at a point
    get zero entries there.
    """
    if np.all(actives == actives[:, :1]):
        return actives[:, 0].copy(), tabs
    union = np.unique(actives)
    out = []
    for t in tabs:
        u = np.zeros((len(union),) + t.shape[1:])
        for q in range(actives.shape[1]):
            pos = np.searchsorted(union, actives[:, q])
            u[pos, ..., q] = t[:, ..., q]
        out.append(u)
    return union, out


class ExprContext:
    """
    Expression evaluation context.

    ``iface()`` returns the second-side context used by interface integrals:
    it shares the registry with its parent but has its own side, points and
    element data.
    """

    def __init__(self, parent: Optional["ExprContext"] = None):
        self._parent = parent
        self._sources: List[Source] = parent._sources if parent is not None else []
        self._local = threading.local()
        self._iface: Optional[ExprContext] = None
        self._mutable: Optional[Source] = None
        self.multi_basis = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    @property
    def root(self) -> "ExprContext":
        return self if self._parent is None else self._parent.root

    def _register(self, kind: str, obj, map_source: Optional[Source] = None) -> Source:
        for s in self._sources:
            if s.kind == kind and s.obj is obj and s.map_source is map_source:
                return s
        s = Source(kind, obj, map_source)
        self._sources.append(s)
        logger.debug("Registered %r", s)
        return s

    def sources(self, kind: Optional[str] = None) -> List[Source]:
        return [s for s in self._sources if kind is None or s.kind == kind]

    def primary_map(self) -> Optional[Source]:
        maps = self.sources("map")
        return maps[0] if maps else None

    def get_map(self, domain):
        from pyexprfem.ufl.expressions import GeometryMap
        return GeometryMap(self, self._register("map", domain))

    def get_space(self, basis, dim: int = 1):
        """Unbound space handle; the assembler attaches its DOF data."""
        from pyexprfem.ufl.expressions import Space
        return Space(self, self._register("space", basis), dim)

    def get_coeff(self, function, geometry=None):
        """Coefficient on the parameter domain, or on the physical domain of ``geometry``."""
        from pyexprfem.ufl.expressions import Variable
        ms = geometry.source if geometry is not None else None
        return Variable(self, self._register("function", function, ms), function.target_dim)

    def get_mut_var(self, dim: int = 1):
        """Variable bound to the function set by :meth:`set_mut_source`."""
        from pyexprfem.ufl.expressions import Variable
        root = self.root
        if root._mutable is None:
            root._mutable = Source("mutable")
            root._sources.append(root._mutable)
        return Variable(self, root._mutable, dim)

    def set_mut_source(self, function, parametric: bool = False) -> None:
        root = self.root
        if root._mutable is None:
            return
        root._mutable.obj = function
        root._mutable.parametric = bool(parametric)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------
    def require(self, source: Source, flags: NEED) -> None:
        if flags & (NEED.MEASURE | NEED.NORMAL | NEED.GRAD_TRANSFORM):
            flags |= NEED.DERIV
        source.flags |= flags
        if source.kind == "mutable" and source.map_source is None:
            source.map_source = self.primary_map()
        if source.kind in ("function", "mutable") and source.map_source is not None:
            source.map_source.flags |= NEED.VALUE

    def parse(self, exprs: Iterable) -> None:
        """Record the evaluation flags of every source used by ``exprs``."""
        exprs = list(exprs)
        for s in self._sources:
            s.flags = NEED(0)
        for e in exprs:
            e.parse(self)
        logger.debug("Parsed %d expression(s): %s", len(exprs),
                     [s for s in self._sources if s.flags])

    # ------------------------------------------------------------------
    # Per-thread element state
    # ------------------------------------------------------------------
    def _loc(self):
        loc = self._local
        if not hasattr(loc, "data"):
            loc.data = {}
            loc.points = np.empty((0, 0))
            loc.weights = np.empty(0)
            loc.side = None
        return loc

    def set_points(self, points: np.ndarray, weights: np.ndarray) -> None:
        loc = self._loc()
        loc.points = np.asarray(points, dtype=float)
        loc.weights = np.asarray(weights, dtype=float)

    def points(self) -> np.ndarray:
        return self._loc().points

    def weights(self) -> np.ndarray:
        return self._loc().weights

    def set_side(self, side: Optional[BoxSide]) -> None:
        self._loc().side = None if side is None else BoxSide(side)

    def side(self) -> Optional[BoxSide]:
        return self._loc().side

    def iface(self) -> "ExprContext":
        if self._iface is None:
            self._iface = ExprContext(parent=self)
        return self._iface

    def data(self, source: Source) -> ElementData:
        try:
            return self._loc().data[source]
        except KeyError:
            raise RuntimeError(f"No element data for {source!r}; "
                               "was precompute() called after parse()?") from None

    def clean_up(self) -> None:
        self._local = threading.local()
        if self._iface is not None:
            self._iface.clean_up()

    # ------------------------------------------------------------------
    # Precomputation
    # ------------------------------------------------------------------
    def precompute(self, patch: int, side: Optional[BoxSide] = None) -> None:
        """Evaluate every flagged source at the current points of ``patch``."""
        loc = self._loc()
        if side is not None:
            loc.side = BoxSide(side)
        side = loc.side
        pts = loc.points
        for s in sorted(self._sources, key=lambda s: _EVAL_ORDER[s.kind]):
            if not s.flags:
                continue
            if s.kind == "map":
                d = self._compute_map(s, patch, side, pts)
            elif s.kind == "space":
                d = self._compute_space(s, patch, pts)
            else:
                d = self._compute_function(s, patch, pts, loc)
            d.patch, d.side = patch, side
            loc.data[s] = d

    def _compute_map(self, s: Source, patch: int, side, pts) -> ElementData:
        geo = s.obj.piece(patch)
        d = ElementData()
        if s.flags & NEED.VALUE:
            d.values = geo.eval(pts)
        if s.flags & NEED.DERIV:
            d.jacobians = np.moveaxis(geo.deriv(pts), 2, 0)
            if s.flags & NEED.GRAD_TRANSFORM:
                d.jac_inv = np.linalg.pinv(d.jacobians)
            if s.flags & (NEED.MEASURE | NEED.NORMAL):
                if side is None:
                    d.measures = volume_measure(d.jacobians)
                else:
                    d.normals = outer_normal(d.jacobians, side)
                    d.measures = np.linalg.norm(d.normals, axis=0)
        if s.flags & NEED.DERIV2:
            d.derivs2 = geo.deriv2(pts)
        return d

    def _compute_space(self, s: Source, patch: int, pts) -> ElementData:
        basis = s.obj.basis(patch)
        nder = 2 if s.flags & NEED.DERIV2 else 1 if s.flags & NEED.DERIV else 0
        act, tabs = basis.tabulate(pts, nder)
        act, tabs = merge_actives(act, tabs)
        d = ElementData(actives=act, values=tabs[0])
        if nder >= 1:
            d.derivs = tabs[1]
        if nder == 2:
            d.derivs2 = tabs[2]
        return d

    def _compute_function(self, s: Source, patch: int, pts, loc) -> ElementData:
        if s.obj is None:
            raise RuntimeError("The boundary function is not set; call set_mut_source().")
        x = pts
        if not (s.kind == "mutable" and s.parametric):
            if s.map_source is not None:
                x = loc.data[s.map_source].values
            elif s.kind == "mutable":
                raise RuntimeError("A non-parametric boundary function needs a registered map.")
        f = s.obj.piece(patch)
        d = ElementData(values=f.eval(x))
        if s.flags & (NEED.DERIV | NEED.DERIV2):
            d.derivs = f.deriv(x)
        if s.flags & NEED.DERIV2:
            d.derivs2 = f.deriv2(x)
        return d

    def __repr__(self):
        kind = "iface" if self._parent is not None else "primary"
        return f"ExprContext({kind}, {len(self._sources)} sources)"
