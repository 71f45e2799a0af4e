"""pyexprfem.assembly.accumulator
Per-worker triplet and right-hand-side buffers.
"""
from __future__ import annotations

from typing import Iterable, Optional, Tuple

import numpy as np
import scipy.sparse as sp


class SystemAccumulator:
    """
    Growable COO triplets ``(rows, cols, data)`` plus a dense right-hand side
    of the global shape. Every worker thread owns one; :func:`reduce_into`
    merges them into the global system after the parallel region.
    """

    def __init__(self, shape: Tuple[int, int], rhs_shape: Tuple[int, int], capacity: int = 0):
        self.shape = (int(shape[0]), int(shape[1]))
        cap = max(int(capacity), 16)
        self._rows = np.empty(cap, dtype=np.int64)
        self._cols = np.empty(cap, dtype=np.int64)
        self._data = np.empty(cap)
        self._n = 0
        self.rhs = np.zeros(rhs_shape)

    def __len__(self) -> int:
        return self._n

    def _grow(self, extra: int) -> None:
        need = self._n + extra
        cap = len(self._data)
        if need <= cap:
            return
        while cap < need:
            cap *= 2
        for name in ("_rows", "_cols", "_data"):
            old = getattr(self, name)
            new = np.empty(cap, dtype=old.dtype)
            new[:self._n] = old[:self._n]
            setattr(self, name, new)

    def add_matrix(self, rows, cols, vals) -> None:
        n = len(vals)
        if n == 0:
            return
        self._grow(n)
        s = slice(self._n, self._n + n)
        self._rows[s] = rows
        self._cols[s] = cols
        self._data[s] = vals
        self._n += n

    def add_rhs(self, rows, vals) -> None:
        """Add ``vals`` (n, m) to the first ``m`` columns of ``rhs[rows]``."""
        vals = np.asarray(vals)
        np.add.at(self.rhs, (rows, slice(0, vals.shape[1])), vals)

    def triplets(self):
        n = self._n
        return self._rows[:n], self._cols[:n], self._data[:n]

    def to_csr(self) -> sp.csr_matrix:
        r, c, v = self.triplets()
        return sp.csr_matrix((v, (r, c)), shape=self.shape)


def reduce_into(matrix: Optional[sp.spmatrix], rhs: Optional[np.ndarray],
                accumulators: Iterable[SystemAccumulator]):
    """
    Sum the accumulators into ``matrix`` and ``rhs``. Duplicate entries are
    summed and the result is compressed (CSR with sorted indices).
    """
    accumulators = list(accumulators)
    if matrix is not None:
        rows, cols, data = [], [], []
        for acc in accumulators:
            r, c, v = acc.triplets()
            rows.append(r)
            cols.append(c)
            data.append(v)
        if rows:
            new = sp.csr_matrix((np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                                shape=matrix.shape)
            matrix = (matrix + new).tocsr()
        matrix.sum_duplicates()
        matrix.sort_indices()
    if rhs is not None and rhs.size:
        for acc in accumulators:
            rhs += acc.rhs
    return matrix, rhs
