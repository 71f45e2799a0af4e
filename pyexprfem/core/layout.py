"""pyexprfem.core.layout
Block layout of multi-space systems.
"""
from __future__ import annotations

from typing import List, Sequence


def block_offsets(first_index: int, sizes: Sequence[int]) -> List[int]:
    """
    Starting global index of every block.

    Block ``i`` starts where block ``i-1`` ends, i.e.
    ``offsets[i] = offsets[i-1] + sizes[i-1]`` with ``offsets[0] = first_index``.

    >>> block_offsets(0, [2, 3, 4])
    [0, 2, 5]
    """
    offsets = []
    cur = int(first_index)
    for s in sizes:
        if s < 0:
            raise ValueError("Block sizes must be non-negative.")
        offsets.append(cur)
        cur += int(s)
    return offsets
