"""pyexprfem.fem.domain
Element iterators over a patch or one of its sides.
"""
from __future__ import annotations

from itertools import product
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from pyexprfem.core.boundary import BoxSide


class DomainIterator:
    """
    Walks the elements (knot-span boxes) of a tensor mesh.

    With a ``side`` the iterator visits the boundary elements of that side:
    the fixed direction collapses to ``lower == upper`` on the side's bound.
    Elements are ordered with the first direction fastest.

    Iteration yields ``(lower, upper)`` pairs; :meth:`strided` hands every
    worker its own share of the elements.
    """

    def __init__(self, breaks: Sequence[np.ndarray], side: Optional[BoxSide] = None):
        self.breaks = [np.asarray(b, dtype=float) for b in breaks]
        self.side = None if side is None else BoxSide(side)
        axes: List[List[Tuple[float, float]]] = []
        for k, br in enumerate(self.breaks):
            if self.side is not None and self.side.direction == k:
                v = br[-1] if self.side.parameter else br[0]
                axes.append([(v, v)])
            else:
                axes.append(list(zip(br[:-1], br[1:])))
        self._boxes = []
        for cells in product(*reversed(axes)):
            cells = cells[::-1]
            self._boxes.append((np.array([c[0] for c in cells]),
                                np.array([c[1] for c in cells])))

    def strided(self, start: int, step: int) -> List[Tuple[np.ndarray, np.ndarray]]:
        """Elements ``start, start+step, ...`` (worker ``start`` of ``step``)."""
        return self._boxes[start::step]

    def __iter__(self) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        return iter(self._boxes)

    def __len__(self) -> int:
        return len(self._boxes)

    def __repr__(self):
        where = "interior" if self.side is None else self.side.name.lower()
        return f"DomainIterator({len(self._boxes)} elements, {where})"
