"""pyexprfem.io.visualization
Matplotlib views of assembled systems and multi-patch domains.
"""
from __future__ import annotations

from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import LineCollection


def plot_sparsity(matrix, *, block_sizes: Optional[Sequence[int]] = None, ax=None,
                  markersize: float = 2.0, show: bool = False):
    """
    Spy plot of a sparse matrix, with dashed separators between blocks.

    Args:
        matrix: scipy sparse matrix (e.g. ``ExprAssembler.matrix()``).
        block_sizes (list, optional): sizes of the diagonal blocks.
        ax (Axes, optional): axes to draw into; a new figure is made otherwise.
        show (bool, optional): If True, calls plt.show() at the end.

    Returns:
        The matplotlib Axes.
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(6, 6))
    if matrix.shape[0] and matrix.shape[1]:
        ax.spy(matrix, markersize=markersize)
    if block_sizes:
        for b in np.cumsum(block_sizes)[:-1]:
            ax.axhline(b - 0.5, color="red", linestyle="--", lw=0.8)
            ax.axvline(b - 0.5, color="red", linestyle="--", lw=0.8)
    ax.set_title(f"Sparsity pattern ({matrix.nnz} nonzeros)")
    if show:
        plt.show()
    return ax


def plot_multipatch(mp, *, n_samples: int = 20, ax=None, show: bool = False):
    """
    Draw the knot lines of every 2-D patch of a :class:`MultiPatch`.
    Interfaces are drawn in red.
    """
    if mp.domain_dim != 2 or mp.target_dim != 2:
        raise ValueError("plot_multipatch() draws planar 2-D patches only.")
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 8))
    segments = []
    for patch in mp.patches:
        sup = patch.support()
        for k in range(2):
            other = 1 - k
            for v in patch.basis.component(k).breaks():
                pts = np.empty((2, n_samples))
                pts[k] = v
                pts[other] = np.linspace(sup[other, 0], sup[other, 1], n_samples)
                segments.append(patch.eval(pts).T)
    ax.add_collection(LineCollection(segments, colors="k", linewidths=0.8))
    iface_segments = [mp.patch(i.first.patch).side_points(i.first.side, n_samples).T
                      for i in mp.interfaces]
    if iface_segments:
        ax.add_collection(LineCollection(iface_segments, colors="red", linewidths=1.5))
    ax.autoscale()
    ax.set_aspect("equal", "box")
    ax.set_title("Multi-patch domain")
    if show:
        plt.show()
    return ax
