"""pyexprfem.core.dofmapper
Local-to-global degree-of-freedom numbering for multi-patch, multi-component spaces.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class DofMapper:
    """
    Maps ``(local basis index, patch, component)`` to a global DOF index.

    The global indices are partitioned into

    * **free** indices, numbered component by component; inside a component
      the interior (uncoupled) DOFs come first, then the coupled ones, i.e.
      DOFs glued across patch interfaces,
    * **boundary** (eliminated) indices, numbered after *all* free indices.

    A numeric ``shift`` is added to every global index; it places the space
    inside a block system. ``global_to_bindex`` and ``bindex`` always
    return shift-independent positions in ``[0, boundary_size())``.

    Typical use::

        m = DofMapper([9, 9], n_comp=1)
        m.match_dofs(0, [2, 5, 8], 1, [0, 3, 6])   # glue an interface
        m.mark_boundary(0, [0, 3, 6])              # eliminate a side
        m.finalize()
        m.index(4, patch=0)

    Parameters
    ----------
    sizes : sequence of int
        Number of basis functions of every patch.
    n_comp : int
        Number of vector components sharing the same basis.
    """

    def __init__(self, sizes: Sequence[int] = (), n_comp: int = 1):
        if n_comp < 1:
            raise ValueError("A DofMapper needs at least one component.")
        self._sizes = [int(s) for s in sizes]
        self._offsets = np.concatenate([[0], np.cumsum(self._sizes)]).astype(np.int64)
        self._ncomp = int(n_comp)
        total = int(self._offsets[-1])
        self._parent = [np.arange(total, dtype=np.int64) for _ in range(self._ncomp)]
        self._elim = [np.zeros(total, dtype=bool) for _ in range(self._ncomp)]
        self._index = None
        self._free = 0
        self._coupled = 0
        self._bnd = 0
        self._comp_free: List[int] = []
        self._comp_coupled: List[int] = []
        self._shift = 0

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def _check_open(self):
        if self._index is not None:
            raise RuntimeError("DofMapper is finalized; it cannot be modified anymore.")

    def _comps(self, comp: int) -> Iterable[int]:
        if comp == -1:
            return range(self._ncomp)
        if not 0 <= comp < self._ncomp:
            raise IndexError(f"Component {comp} out of range [0, {self._ncomp}).")
        return (comp,)

    def _flat(self, patch: int, i) -> np.ndarray:
        i = np.asarray(i, dtype=np.int64)
        if not 0 <= patch < len(self._sizes):
            raise IndexError(f"Patch {patch} out of range [0, {len(self._sizes)}).")
        if i.size and (i.min() < 0 or i.max() >= self._sizes[patch]):
            raise IndexError(f"Local index out of range for patch {patch}.")
        return self._offsets[patch] + i

    def _find(self, c: int, g: int) -> int:
        parent = self._parent[c]
        root = g
        while parent[root] != root:
            root = parent[root]
        while parent[g] != root:
            parent[g], g = root, parent[g]
        return int(root)

    def _union(self, c: int, a: int, b: int) -> None:
        ra, rb = self._find(c, a), self._find(c, b)
        if ra == rb:
            return
        lo, hi = min(ra, rb), max(ra, rb)
        self._parent[c][hi] = lo
        self._elim[c][lo] |= self._elim[c][hi]

    def match_dof(self, patch1: int, i1: int, patch2: int, i2: int, comp: int = -1) -> None:
        """Declare basis function ``i1`` of ``patch1`` and ``i2`` of ``patch2`` identical."""
        self.match_dofs(patch1, [i1], patch2, [i2], comp)

    def match_dofs(self, patch1: int, idx1, patch2: int, idx2, comp: int = -1) -> None:
        self._check_open()
        g1, g2 = self._flat(patch1, idx1), self._flat(patch2, idx2)
        if g1.shape != g2.shape:
            raise ValueError("match_dofs(): index lists have different lengths.")
        for c in self._comps(comp):
            for a, b in zip(g1.tolist(), g2.tolist()):
                self._union(c, a, b)

    def mark_boundary(self, patch: int, indices, comp: int = -1) -> None:
        """Eliminate the given basis functions (Dirichlet DOFs)."""
        self._check_open()
        g = self._flat(patch, indices)
        for c in self._comps(comp):
            for a in g.tolist():
                self._elim[c][self._find(c, a)] = True

    def eliminate_dof(self, i: int, patch: int, comp: int = -1) -> None:
        self.mark_boundary(patch, [i], comp)

    def finalize(self) -> None:
        """Number every DOF class; the mapper becomes read-only afterwards."""
        if self._index is not None:
            return
        total = int(self._offsets[-1])
        index = np.full((self._ncomp, total), -1, dtype=np.int64)

        roots, coupled_roots = [], []
        for c in range(self._ncomp):
            r = np.array([self._find(c, g) for g in range(total)], dtype=np.int64)
            counts = np.bincount(r, minlength=total)
            roots.append(r)
            coupled_roots.append(counts > 1)

        cur = 0
        self._comp_free, self._comp_coupled = [], []
        for c in range(self._ncomp):
            r, elim, multi = roots[c], self._elim[c], coupled_roots[c]
            start, ncoupled = cur, 0
            # interior free DOFs first, then the coupled classes
            for g in range(total):
                if r[g] == g and not elim[g] and not multi[g]:
                    index[c, g] = cur
                    cur += 1
            for g in range(total):
                if r[g] == g and not elim[g] and multi[g]:
                    index[c, g] = cur
                    cur += 1
                    ncoupled += 1
            self._comp_free.append(cur - start)
            self._comp_coupled.append(ncoupled)
        self._coupled = sum(self._comp_coupled)
        self._free = cur

        for c in range(self._ncomp):
            r, elim = roots[c], self._elim[c]
            for g in range(total):
                if r[g] == g and elim[g]:
                    index[c, g] = cur
                    cur += 1
        self._bnd = cur - self._free

        for c in range(self._ncomp):
            index[c] = index[c, roots[c]]
        self._index = index
        logger.debug("DofMapper finalized: %d free (%d coupled), %d boundary",
                     self._free, self._coupled, self._bnd)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def is_finalized(self) -> bool:
        return self._index is not None

    def _check_final(self):
        if self._index is None:
            raise RuntimeError("DofMapper is not finalized; call finalize() first.")

    def index(self, i: int, patch: int = 0, comp: int = 0) -> int:
        self._check_final()
        return int(self._index[comp, self._flat(patch, i)] + self._shift)

    def local_to_global(self, indices, patch: int = 0, comp: int = 0) -> np.ndarray:
        """Vectorized :meth:`index`."""
        self._check_final()
        return self._index[comp, self._flat(patch, indices)] + self._shift

    def is_free_index(self, gl):
        return np.asarray(gl) < self._shift + self._free

    def is_boundary_index(self, gl):
        return np.asarray(gl) >= self._shift + self._free

    def is_coupled_index(self, gl):
        gl = np.asarray(gl) - self._shift
        out = np.zeros(gl.shape, dtype=bool)
        stop = 0
        for nf, nc in zip(self._comp_free, self._comp_coupled):
            stop += nf
            out |= (gl < stop) & (gl >= stop - nc)
        return out

    def global_to_bindex(self, gl):
        """Position of a boundary global index inside the fixed-DOF vector."""
        b = np.asarray(gl) - self._shift - self._free
        if np.any(b < 0) or np.any(b >= self._bnd):
            raise IndexError("global_to_bindex(): index is not a boundary index.")
        return int(b) if np.ndim(b) == 0 else b

    def bindex(self, i, patch: int = 0, comp: int = 0):
        return self.global_to_bindex(self.local_to_global(i, patch, comp))

    def free_size(self) -> int:
        self._check_final()
        return self._free

    def component_free_size(self, comp: int) -> int:
        self._check_final()
        return self._comp_free[comp]

    def coupled_size(self) -> int:
        self._check_final()
        return self._coupled

    def boundary_size(self) -> int:
        self._check_final()
        return self._bnd

    def size(self) -> int:
        return self.free_size() + self.boundary_size()

    def first_index(self) -> int:
        return self._shift

    @property
    def shift(self) -> int:
        return self._shift

    def set_shift(self, shift: int) -> None:
        self._shift = int(shift)

    @property
    def num_patches(self) -> int:
        return len(self._sizes)

    @property
    def num_components(self) -> int:
        return self._ncomp

    def patch_size(self, patch: int) -> int:
        return self._sizes[patch]

    def __repr__(self):
        if self._index is None:
            return f"DofMapper(patches={len(self._sizes)}, comps={self._ncomp}, open)"
        return (f"DofMapper(free={self._free}, coupled={self._coupled}, "
                f"boundary={self._bnd}, shift={self._shift})")
