"""pyexprfem.ufl.expressions
Expression tree of variational forms.

Every node answers ``eval(k)`` (dense value at quadrature point ``k`` of the
current element), ``row_var()``/``col_var()`` (the test/trial spaces its
rows/columns run over), ``is_matrix()``/``is_vector()`` and
``parse(ctx)`` (register what must be precomputed).

Space values are laid out component-major: row ``r*nA + i`` is component
``r`` of active function ``i``.
"""
from __future__ import annotations

import numpy as np

from pyexprfem.ufl.context import NEED

LEFT, RIGHT = "left", "right"


def _as_expr(other):
    if isinstance(other, Expression):
        return other
    return Constant(other)


def _var_key(v):
    if v is None:
        return None
    owner = v.space_data if v.space_data is not None else v.source
    return id(owner), v.side


class Expression:
    """Base class for any object in a symbolic form expression."""

    def eval(self, k: int) -> np.ndarray:
        raise NotImplementedError(f"{self.__class__.__name__}.eval")

    def row_var(self):
        return None

    def col_var(self):
        return None

    def is_scalar(self) -> bool:
        return False

    def is_matrix(self) -> bool:
        return self.row_var() is not None and self.col_var() is not None

    def is_vector(self) -> bool:
        return self.row_var() is not None and self.col_var() is None

    def children(self):
        return ()

    def parse(self, ctx) -> None:
        for c in self.children():
            c.parse(ctx)

    def tr(self):
        return Transpose(self)

    @property
    def T(self):
        """Shorthand for :meth:`tr`."""
        return Transpose(self)

    def __add__(self, other): return Sum(self, _as_expr(other))
    def __radd__(self, other): return Sum(_as_expr(other), self)
    def __sub__(self, other): return Sub(self, _as_expr(other))
    def __rsub__(self, other): return Sub(_as_expr(other), self)
    def __mul__(self, other): return Prod(self, _as_expr(other))
    def __rmul__(self, other): return Prod(_as_expr(other), self)
    def __truediv__(self, other): return Div(self, _as_expr(other))
    def __neg__(self): return Prod(Constant(-1.0), self)

    def __hash__(self):
        return id(self)

    def __repr__(self):
        return f"{self.__class__.__name__}()"


# -------------------------------------------------------------------------
# Leaves
# -------------------------------------------------------------------------
class Constant(Expression):
    def __init__(self, value):
        v = np.asarray(value, dtype=float)
        self.scalar = v.ndim == 0
        self.value = v.reshape(1, 1) if v.ndim == 0 else (v[:, None] if v.ndim == 1 else v)

    def eval(self, k): return self.value
    def is_scalar(self): return self.scalar
    def __repr__(self): return f"Constant({self.value.squeeze().tolist()})"


class _Leaf(Expression):
    """Expression bound to a source of an evaluation context."""

    def __init__(self, ctx, source, side: str = LEFT):
        self.ctx = ctx
        self.source = source
        self.side = side

    def data(self):
        ctx = self.ctx if self.side == LEFT else self.ctx.iface()
        return ctx.data(self.source)

    def parse_with(self, ctx, flags=NEED(0)) -> None:
        ctx.require(self.source, NEED.VALUE | flags)

    def parse(self, ctx) -> None:
        self.parse_with(ctx)

    def _on(self, side: str):
        raise NotImplementedError

    def left(self):
        return self._on(LEFT)

    def right(self):
        return self._on(RIGHT)


class GeometryMap(_Leaf):
    """The geometry map ``G``; evaluates to the physical point ``(g, 1)``."""

    def eval(self, k):
        return self.data().values[:, k][:, None]

    def _on(self, side):
        return GeometryMap(self.ctx, self.source, side)

    def __repr__(self):
        return f"G[{self.side}]"


class Space(_Leaf):
    """
    Test/trial space handle.

    ``space_data`` (see :mod:`pyexprfem.ufl.functionspace`) carries the DOF
    mapper, the fixed DOFs and the block id; it is attached on registration
    with an assembler.
    """

    def __init__(self, ctx, source, dim: int = 1, space_data=None, side: str = LEFT):
        super().__init__(ctx, source, side)
        self.dim = int(dim)
        self.space_data = space_data

    @property
    def id(self) -> int:
        return self.space_data.id if self.space_data is not None else 0

    def is_valid(self) -> bool:
        return self.space_data is not None

    def mapper(self):
        return self.space_data.mapper

    def fixed_part(self) -> np.ndarray:
        return self.space_data.fixed_dofs

    def setup(self, bcs=None, dirichlet_values=101, interface_strategy: str = "conforming"):
        """Rebuild the DOF numbering with Dirichlet elimination (see SpaceData.setup)."""
        if self.space_data is None:
            raise RuntimeError("Space is not registered with an assembler.")
        geo = self.ctx.primary_map()
        self.space_data.setup(bcs, dirichlet_values, interface_strategy,
                              geometry=geo.obj if geo is not None else None)

    def row_var(self):
        return self

    def eval(self, k):
        vals = self.data().values[:, k]
        if self.dim == 1:
            return vals[:, None]
        n = len(vals)
        out = np.zeros((self.dim * n, self.dim))
        for r in range(self.dim):
            out[r * n:(r + 1) * n, r] = vals
        return out

    def eval_grad(self, k):
        return self.data().derivs[:, :, k]

    def eval_igrad(self, k, G):
        return self.data().derivs[:, :, k] @ G._on(self.side).data().jac_inv[k]

    def _on(self, side):
        return Space(self.ctx, self.source, self.dim, self.space_data, side)

    def __repr__(self):
        return f"Space(id={self.id}, dim={self.dim}, {self.side})"


class Variable(_Leaf):
    """
    Coefficient function.

    When its source carries a map (``get_coeff(f, G)``) the function is a
    composition evaluated at physical points and its derivatives are
    physical derivatives.
    """

    def __init__(self, ctx, source, dim: int = 1, side: str = LEFT):
        super().__init__(ctx, source, side)
        self.dim = int(dim)

    def is_scalar(self):
        return self.dim == 1

    def is_physical(self) -> bool:
        s = self.source
        if s.kind == "mutable":
            return not s.parametric and s.map_source is not None
        return s.map_source is not None

    def eval(self, k):
        return self.data().values[:, k][:, None]

    def eval_grad(self, k):
        return self.data().derivs[:, :, k]

    def eval_igrad(self, k, G):
        dv = self.data().derivs[:, :, k]
        if self.is_physical():
            return dv
        return dv @ G._on(self.side).data().jac_inv[k]

    def _on(self, side):
        return Variable(self.ctx, self.source, self.dim, side)

    def __repr__(self):
        return f"Variable({self.source.kind}, dim={self.dim})"


class Solution(Expression):
    """
    Discrete field ``sum_j c_j phi_j`` of a space; free coefficients come
    from ``coefs`` (indexed by global DOF), eliminated ones from the fixed
    DOFs of the space.
    """

    def __init__(self, space: Space, coefs, column: int = 0):
        if not isinstance(space, Space):
            raise TypeError("Solution needs a Space.")
        self.space = space
        self.coefs = coefs
        self.column = column

    def _lookup(self, gl: np.ndarray) -> np.ndarray:
        sd = self.space.space_data
        c = np.asarray(self.coefs)
        c = c if c.ndim == 1 else c[:, self.column]
        free = sd.mapper.is_free_index(gl)
        out = np.empty(len(gl))
        out[free] = c[gl[free]]
        if np.any(~free):
            fixed = np.asarray(sd.fixed_dofs).reshape(len(sd.fixed_dofs), -1)
            out[~free] = fixed[sd.mapper.global_to_bindex(gl[~free]), 0]
        return out

    def _local_coefs(self):
        d = self.space.data()
        m = self.space.mapper()
        return np.stack([self._lookup(m.local_to_global(d.actives, d.patch, c))
                         for c in range(self.space.dim)], axis=1)

    def extract(self, patch: int) -> np.ndarray:
        """Coefficients ``(size, dim)`` of every basis function of ``patch``."""
        m = self.space.mapper()
        idx = np.arange(m.patch_size(patch))
        return np.stack([self._lookup(m.local_to_global(idx, patch, c))
                         for c in range(self.space.dim)], axis=1)

    def is_scalar(self):
        return self.space.dim == 1

    def parse(self, ctx):
        self.space.parse_with(ctx)

    def parse_with(self, ctx, flags=NEED(0)):
        self.space.parse_with(ctx, flags)

    def eval(self, k):
        vals = self.space.data().values[:, k]
        return (vals @ self._local_coefs())[:, None]

    def eval_grad(self, k):
        return self._local_coefs().T @ self.space.data().derivs[:, :, k]

    def eval_igrad(self, k, G):
        return self.eval_grad(k) @ G._on(self.space.side).data().jac_inv[k]

    def __repr__(self):
        return f"Solution({self.space!r})"


# -------------------------------------------------------------------------
# Geometric quantities
# -------------------------------------------------------------------------
class _OfMap(Expression):
    need = NEED(0)

    def __init__(self, G: GeometryMap):
        if not isinstance(G, GeometryMap):
            raise TypeError(f"{self.__class__.__name__} needs a GeometryMap.")
        self.G = G

    def parse(self, ctx):
        self.G.parse_with(ctx, self.need)

    def __repr__(self):
        return f"{self.__class__.__name__.lower()}({self.G!r})"


class Jac(_OfMap):
    need = NEED.DERIV

    def eval(self, k): return self.G.data().jacobians[k]


class Meas(_OfMap):
    """Volume element in the interior, length element on a side."""
    need = NEED.MEASURE

    def is_scalar(self): return True
    def eval(self, k): return np.array([[self.G.data().measures[k]]])


class Normal(_OfMap):
    """Outer normal, scaled by the side measure."""
    need = NEED.NORMAL

    def eval(self, k): return self.G.data().normals[:, k][:, None]


class UnitNormal(_OfMap):
    need = NEED.NORMAL

    def eval(self, k):
        n = self.G.data().normals[:, k]
        return (n / np.linalg.norm(n))[:, None]


# -------------------------------------------------------------------------
# Operators
# -------------------------------------------------------------------------
class Transpose(Expression):
    def __init__(self, a): self.a = a
    def children(self): return (self.a,)
    def eval(self, k): return self.a.eval(k).T
    def row_var(self): return self.a.col_var()
    def col_var(self): return self.a.row_var()
    def is_scalar(self): return self.a.is_scalar()
    def __repr__(self): return f"{self.a!r}.tr()"


class _Additive(Expression):
    symbol = "+"

    def __init__(self, a, b):
        if _var_key(a.row_var()) != _var_key(b.row_var()) or \
                _var_key(a.col_var()) != _var_key(b.col_var()):
            raise ValueError(f"Operands of '{self.symbol}' run over different spaces: {a!r}, {b!r}")
        self.a, self.b = a, b

    def children(self): return (self.a, self.b)
    def row_var(self): return self.a.row_var()
    def col_var(self): return self.a.col_var()
    def is_scalar(self): return self.a.is_scalar() and self.b.is_scalar()
    def __repr__(self): return f"({self.a!r} {self.symbol} {self.b!r})"


class Sum(_Additive):
    def eval(self, k): return self.a.eval(k) + self.b.eval(k)


class Sub(_Additive):
    symbol = "-"

    def eval(self, k): return self.a.eval(k) - self.b.eval(k)


class Prod(Expression):
    """Scalar scaling if one operand is scalar, matrix product otherwise."""

    def __init__(self, a, b):
        self.a, self.b = a, b
        if a.is_scalar():
            self._vars = (b.row_var(), b.col_var())
        elif b.is_scalar():
            self._vars = (a.row_var(), a.col_var())
        else:
            if a.col_var() is not None or b.row_var() is not None:
                raise ValueError(f"Cannot contract over a space index: {a!r} * {b!r}")
            self._vars = (a.row_var(), b.col_var())

    def children(self): return (self.a, self.b)
    def row_var(self): return self._vars[0]
    def col_var(self): return self._vars[1]
    def is_scalar(self): return self.a.is_scalar() and self.b.is_scalar()

    def eval(self, k):
        av, bv = self.a.eval(k), self.b.eval(k)
        if self.a.is_scalar() or self.b.is_scalar():
            return av * bv
        return av @ bv

    def __repr__(self): return f"({self.a!r} * {self.b!r})"


class Div(Expression):
    def __init__(self, a, b):
        if not b.is_scalar():
            raise ValueError(f"Division by a non-scalar expression: {b!r}")
        self.a, self.b = a, b

    def children(self): return (self.a, self.b)
    def row_var(self): return self.a.row_var()
    def col_var(self): return self.a.col_var()
    def is_scalar(self): return self.a.is_scalar()
    def eval(self, k): return self.a.eval(k) / self.b.eval(k)[0, 0]
    def __repr__(self): return f"({self.a!r} / {self.b!r})"


class Grad(Expression):
    """Parametric gradient: ``(nA, d)`` for a scalar space, ``(t, d)`` for a function."""

    def __init__(self, a):
        if not hasattr(a, "eval_grad"):
            raise TypeError(f"grad() is not defined for {a!r}")
        if isinstance(a, Space) and a.dim != 1:
            raise ValueError("grad() is implemented for scalar spaces only.")
        self.a = a

    def parse(self, ctx): self.a.parse_with(ctx, NEED.DERIV)
    def row_var(self): return self.a.row_var()
    def eval(self, k): return self.a.eval_grad(k)
    def __repr__(self): return f"grad({self.a!r})"


class IGrad(Expression):
    """Physical gradient with respect to the map ``G``."""

    def __init__(self, a, G: GeometryMap):
        if not hasattr(a, "eval_igrad"):
            raise TypeError(f"igrad() is not defined for {a!r}")
        if isinstance(a, Space) and a.dim != 1:
            raise ValueError("igrad() is implemented for scalar spaces only.")
        if not isinstance(G, GeometryMap):
            raise TypeError("igrad() needs a GeometryMap.")
        self.a, self.G = a, G

    def parse(self, ctx):
        self.a.parse_with(ctx, NEED.DERIV)
        self.G.parse_with(ctx, NEED.GRAD_TRANSFORM)

    def row_var(self): return self.a.row_var()
    def eval(self, k): return self.a.eval_igrad(k, self.G)
    def __repr__(self): return f"igrad({self.a!r}, {self.G!r})"


def grad(a): return Grad(a)
def igrad(a, G): return IGrad(a, G)
def jac(G): return Jac(G)
def meas(G): return Meas(G)
def nv(G): return Normal(G)
def unv(G): return UnitNormal(G)
