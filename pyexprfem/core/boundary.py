"""pyexprfem.core.boundary
Patch sides, interfaces and boundary-condition records.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterator, List, Optional, Sequence

import numpy as np


class BoxSide(IntEnum):
    """Side of the parametric box: ``west`` is ``u=lower``, ``east`` is ``u=upper``, …"""
    WEST = 1
    EAST = 2
    SOUTH = 3
    NORTH = 4
    FRONT = 5
    BACK = 6

    @property
    def direction(self) -> int:
        """Parametric direction that is fixed on this side."""
        return (int(self) - 1) // 2

    @property
    def parameter(self) -> int:
        """0 if the side sits on the lower bound of its direction, 1 otherwise."""
        return (int(self) - 1) % 2

    @property
    def opposite(self) -> "BoxSide":
        return BoxSide(int(self) + 1 if self.parameter == 0 else int(self) - 1)

    def contained_corners(self) -> List["BoxCorner"]:
        """Corners of a 2-D box lying on this side."""
        if self.direction > 1:
            raise ValueError("contained_corners() is defined for 2-D boxes only.")
        return [c for c in BoxCorner if c.on_side(self)]

    @staticmethod
    def sides(dim: int) -> List["BoxSide"]:
        return [BoxSide(i) for i in range(1, 2 * dim + 1)]


class BoxCorner(IntEnum):
    """Corners of a 2-D parametric box."""
    SOUTHWEST = 1
    SOUTHEAST = 2
    NORTHWEST = 3
    NORTHEAST = 4

    def parameters(self) -> tuple[int, int]:
        i = int(self) - 1
        return i % 2, i // 2

    def on_side(self, side: BoxSide) -> bool:
        return self.parameters()[side.direction] == side.parameter


@dataclass(frozen=True)
class PatchSide:
    """A side of a given patch."""
    patch: int
    side: BoxSide

    def __repr__(self):
        return f"PatchSide({self.patch}, {self.side.name.lower()})"


@dataclass(frozen=True)
class BoundaryInterface:
    """
    Conforming interface between two patch sides.

    ``reversed`` is True when the running parameter along the first side
    increases in the opposite direction of the running parameter along the
    second side (only meaningful for 2-D patches).
    """
    first: PatchSide
    second: PatchSide
    reversed: bool = False

    def map_points(self, points: np.ndarray, support1: np.ndarray,
                   support2: np.ndarray) -> np.ndarray:
        """
        Map parametric points lying on ``first`` to the matching parametric
        points on ``second``.

        points   : (d, nq) points on the first side.
        support1 : (d, 2) parameter box of the first patch.
        support2 : (d, 2) parameter box of the second patch.
        """
        points = np.asarray(points, dtype=float)
        d = points.shape[0]
        dir1, dir2 = self.first.side.direction, self.second.side.direction
        out = np.empty_like(points)
        out[dir2, :] = support2[dir2, self.second.side.parameter]
        if d == 2:
            a1, a2 = 1 - dir1, 1 - dir2
            s = (points[a1] - support1[a1, 0]) / (support1[a1, 1] - support1[a1, 0])
            if self.reversed:
                s = 1.0 - s
            out[a2] = support2[a2, 0] + s * (support2[a2, 1] - support2[a2, 0])
        elif d > 2:
            raise NotImplementedError("Interfaces are supported for 1-D and 2-D patches only.")
        return out


class DirichletValues(IntEnum):
    """Method used to compute the values of eliminated Dirichlet DOFs."""
    HOMOGENEOUS = 100
    INTERPOLATION = 101
    L2_PROJECTION = 102
    USER = 103


_BC_KINDS = ("dirichlet", "neumann", "robin")


@dataclass
class BoundaryCondition:
    """
    One boundary condition imposed on a patch side.

    ``component == -1`` means the condition applies to every component of
    the unknown. ``parametric`` tells whether ``function`` is given on the
    parameter domain or on the physical domain.
    """
    patch: int
    side: BoxSide
    kind: str
    function: Any = None
    unknown: int = 0
    component: int = -1
    parametric: bool = False

    def __post_init__(self):
        kind = self.kind.lower()
        if kind not in _BC_KINDS:
            raise ValueError(f"BC kind must be one of {_BC_KINDS}, not '{self.kind}'")
        self.kind = kind
        self.side = BoxSide(self.side)

    @property
    def patch_side(self) -> PatchSide:
        return PatchSide(self.patch, self.side)

    def components(self, n_comp: int) -> List[int]:
        return list(range(n_comp)) if self.component == -1 else [self.component]


@dataclass
class BoundaryConditions:
    """Container of boundary conditions, grouped by kind on request."""
    conditions: List[BoundaryCondition] = field(default_factory=list)

    def add_condition(self, patch: int, side, kind: str, function=None, unknown: int = 0,
                      component: int = -1, parametric: bool = False) -> BoundaryCondition:
        bc = BoundaryCondition(patch, BoxSide(side), kind, function, unknown, component, parametric)
        self.conditions.append(bc)
        return bc

    def _of_kind(self, kind: str, unknown: Optional[int]) -> List[BoundaryCondition]:
        return [bc for bc in self.conditions
                if bc.kind == kind and (unknown is None or bc.unknown == unknown)]

    def dirichlet_sides(self, unknown: Optional[int] = None) -> List[BoundaryCondition]:
        return self._of_kind("dirichlet", unknown)

    def neumann_sides(self, unknown: Optional[int] = None) -> List[BoundaryCondition]:
        return self._of_kind("neumann", unknown)

    def robin_sides(self, unknown: Optional[int] = None) -> List[BoundaryCondition]:
        return self._of_kind("robin", unknown)

    def __iter__(self) -> Iterator[BoundaryCondition]:
        return iter(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)

    def __repr__(self):
        counts = {k: len(self._of_kind(k, None)) for k in _BC_KINDS}
        return f"BoundaryConditions({counts})"


def as_boundary_records(bcs: Sequence) -> List:
    """Accept boundary-condition records, patch sides or a container."""
    if bcs is None:
        return []
    if isinstance(bcs, (BoundaryCondition, PatchSide)):
        return [bcs]
    out = []
    for item in bcs:
        if not isinstance(item, (BoundaryCondition, PatchSide)):
            raise TypeError(f"Expected BoundaryCondition or PatchSide, got {type(item)}")
        out.append(item)
    return out
