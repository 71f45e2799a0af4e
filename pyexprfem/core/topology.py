"""pyexprfem.core.topology
Connectivity of a multi-patch domain: boundary sides and interfaces.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from pyexprfem.core.boundary import BoundaryInterface, BoxSide, PatchSide


@dataclass(slots=True)
class BoxTopology:
    """Every side of every box is either a boundary side or part of one interface."""
    dim: int
    n_boxes: int = 0
    boundaries: List[PatchSide] = field(default_factory=list)
    interfaces: List[BoundaryInterface] = field(default_factory=list)

    @classmethod
    def disconnected(cls, dim: int, n_boxes: int) -> "BoxTopology":
        """All sides of all boxes on the boundary."""
        return cls(dim, n_boxes,
                   [PatchSide(p, s) for p in range(n_boxes) for s in BoxSide.sides(dim)])

    def add_interface(self, iface: BoundaryInterface) -> None:
        for ps in (iface.first, iface.second):
            if ps in self.boundaries:
                self.boundaries.remove(ps)
        self.interfaces.append(iface)

    def is_boundary(self, ps: PatchSide) -> bool:
        return ps in self.boundaries

    def find_interface(self, ps: PatchSide) -> Optional[BoundaryInterface]:
        for iface in self.interfaces:
            if ps in (iface.first, iface.second):
                return iface
        return None

    def __repr__(self):
        return (f"BoxTopology(dim={self.dim}, boxes={self.n_boxes}, "
                f"boundaries={len(self.boundaries)}, interfaces={len(self.interfaces)})")
