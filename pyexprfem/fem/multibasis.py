"""pyexprfem.fem.multibasis
Per-patch bases of a multi-patch discretization and their DOF mappers.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np

from pyexprfem.core.boundary import BoundaryConditions
from pyexprfem.core.dofmapper import DofMapper
from pyexprfem.core.topology import BoxTopology

logger = logging.getLogger(__name__)

INTERFACE_STRATEGIES = ("conforming", "none")


class MultiBasis:
    """
    One basis per patch plus the patch topology.

    Any basis kind exposing ``size``, ``degree``, ``tabulate``, ``elements``,
    ``support`` and ``boundary`` may be stored (tensor or container bases).
    """

    def __init__(self, bases: Sequence, topology: Optional[BoxTopology] = None):
        self.bases: List = list(bases)
        if not self.bases:
            raise ValueError("MultiBasis needs at least one basis.")
        dim = self.bases[0].domain_dim
        self.topology = topology if topology is not None else \
            BoxTopology.disconnected(dim, len(self.bases))
        if self.topology.n_boxes != len(self.bases):
            raise ValueError("Topology and basis list describe a different number of patches.")

    @property
    def domain_dim(self) -> int:
        return self.bases[0].domain_dim

    @property
    def target_dim(self) -> int:
        return self.bases[0].target_dim

    def n_pieces(self) -> int:
        return len(self.bases)

    def __len__(self) -> int:
        return len(self.bases)

    def basis(self, k: int):
        return self.bases[k]

    piece = basis

    def size(self, k: Optional[int] = None) -> int:
        if k is not None:
            return self.bases[k].size()
        return sum(b.size() for b in self.bases)

    def degree(self, direction: int) -> int:
        return max(b.degree(direction) for b in self.bases)

    def max_degree(self) -> int:
        return max(b.max_degree() for b in self.bases)

    def total_elements(self) -> int:
        return sum(b.num_elements() for b in self.bases)

    def uniform_refine(self, num_knots: int = 1) -> None:
        for b in self.bases:
            b.uniform_refine(num_knots)

    def copy(self) -> "MultiBasis":
        topo = BoxTopology(self.topology.dim, self.topology.n_boxes,
                           list(self.topology.boundaries), list(self.topology.interfaces))
        return MultiBasis([b.copy() for b in self.bases], topo)

    # ------------------------------------------------------------------ DOFs
    def get_mapper(self, bcs: Optional[BoundaryConditions] = None, unknown: int = 0,
                   n_comp: int = 1, interface_strategy: str = "conforming",
                   finalize: bool = True) -> DofMapper:
        """
        DOF mapper of this basis.

        ``interface_strategy="conforming"`` glues the matching functions of
        every interface; ``"none"`` keeps the patches independent. The
        Dirichlet sides of ``bcs`` that belong to ``unknown`` are eliminated.
        """
        if interface_strategy not in INTERFACE_STRATEGIES:
            raise ValueError(f"interface_strategy must be one of {INTERFACE_STRATEGIES}")
        mapper = DofMapper([b.size() for b in self.bases], n_comp)

        if interface_strategy == "conforming":
            for iface in self.topology.interfaces:
                p1, p2 = iface.first.patch, iface.second.patch
                i1 = self.bases[p1].boundary(iface.first.side)
                i2 = self.bases[p2].boundary(iface.second.side)
                if len(i1) != len(i2):
                    raise ValueError(f"Non-conforming interface between patches {p1} and {p2}.")
                if iface.reversed:
                    i2 = i2[::-1]
                mapper.match_dofs(p1, i1, p2, i2)

        if bcs is not None:
            for bc in bcs.dirichlet_sides(unknown):
                if bc.component >= n_comp:
                    raise ValueError(f"BC component {bc.component} exceeds the space dimension.")
                idx = self.bases[bc.patch].boundary(bc.side)
                mapper.mark_boundary(bc.patch, idx, bc.component)

        if finalize:
            mapper.finalize()
        return mapper

    def __repr__(self):
        return f"MultiBasis({len(self.bases)} patches, size={self.size()})"
