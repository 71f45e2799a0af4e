"""pyexprfem.fem.multipatch
Multi-patch geometry with automatic detection of conforming interfaces.
"""
from __future__ import annotations

import logging
from typing import List, Sequence

import numpy as np

from pyexprfem.core.boundary import BoundaryInterface, BoxSide, PatchSide
from pyexprfem.core.topology import BoxTopology
from pyexprfem.fem.multibasis import MultiBasis

logger = logging.getLogger(__name__)


class MultiPatch:
    """
    Collection of geometry patches (e.g. :class:`TensorBSplineGeometry`).

    ``compute_topology`` pairs patch sides whose images coincide; all
    unpaired sides become boundary sides.
    """

    def __init__(self, patches: Sequence, compute_topology: bool = True, tol: float = 1e-10):
        self.patches: List = list(patches)
        if not self.patches:
            raise ValueError("MultiPatch needs at least one patch.")
        if len({p.domain_dim for p in self.patches}) != 1:
            raise ValueError("All patches must have the same parametric dimension.")
        self.topology = BoxTopology.disconnected(self.domain_dim, len(self.patches))
        if compute_topology:
            self.compute_topology(tol)

    @property
    def domain_dim(self) -> int:
        return self.patches[0].domain_dim

    @property
    def target_dim(self) -> int:
        return self.patches[0].target_dim

    def n_patches(self) -> int:
        return len(self.patches)

    n_pieces = n_patches

    def patch(self, k: int):
        return self.patches[k]

    def piece(self, k: int):
        return self.patches[k]

    @property
    def interfaces(self) -> List[BoundaryInterface]:
        return self.topology.interfaces

    @property
    def boundaries(self) -> List[PatchSide]:
        return self.topology.boundaries

    def compute_topology(self, tol: float = 1e-10) -> BoxTopology:
        """Detect interfaces by comparing the images of the patch sides."""
        d = self.domain_dim
        if d > 2:
            raise NotImplementedError("compute_topology() supports 1-D and 2-D patches.")
        topo = BoxTopology.disconnected(d, len(self.patches))
        sides = [(PatchSide(p, s), self.patches[p].side_points(s))
                 for p in range(len(self.patches)) for s in BoxSide.sides(d)]
        matched = set()
        for a in range(len(sides)):
            ps1, x1 = sides[a]
            if ps1 in matched:
                continue
            for b in range(a + 1, len(sides)):
                ps2, x2 = sides[b]
                if ps2 in matched or ps2.patch == ps1.patch:
                    continue
                if np.allclose(x1, x2, atol=tol, rtol=0.0):
                    rev = False
                elif d == 2 and np.allclose(x1, x2[:, ::-1], atol=tol, rtol=0.0):
                    rev = True
                else:
                    continue
                topo.add_interface(BoundaryInterface(ps1, ps2, rev))
                matched.update((ps1, ps2))
                break
        self.topology = topo
        logger.info("Topology: %d interfaces, %d boundary sides",
                    len(topo.interfaces), len(topo.boundaries))
        return topo

    def basis(self) -> MultiBasis:
        """Copies of the patch bases sharing this topology."""
        return MultiBasis([p.basis.copy() for p in self.patches], self.topology)

    def __repr__(self):
        return f"MultiPatch({len(self.patches)} patches, {self.topology!r})"
