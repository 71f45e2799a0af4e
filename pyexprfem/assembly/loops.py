"""pyexprfem.assembly.loops
Element loops over the domain, boundary sides and interfaces.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Sequence

from pyexprfem.core.boundary import BoundaryCondition, BoundaryInterface
from pyexprfem.integration.quadrature import get_rule

logger = logging.getLogger(__name__)


def run_elements(ctx, rule, elements: Iterable, patch: int, exprs: Sequence, evaluator,
                 iface: Optional[BoundaryInterface] = None, support1=None, support2=None) -> int:
    """
    Visit ``elements`` (pairs of box corners) of ``patch``: map the rule,
    precompute and evaluate every expression. Elements whose mapped point
    set is empty are skipped. Returns the number of visited elements.
    """
    count = 0
    for lower, upper in elements:
        points, weights = rule.map_to(lower, upper)
        if points.shape[1] == 0:
            logger.debug("Skipping zero-measure element [%s, %s]", lower, upper)
            continue
        ctx.set_points(points, weights)
        ctx.precompute(patch)
        if iface is not None:
            other = ctx.iface()
            other.set_points(iface.map_points(points, support1, support2), weights)
            other.precompute(iface.second.patch, iface.second.side)
        for e in exprs:
            evaluator.evaluate(e)
        count += 1
    return count


def domain_loop(ctx, mbasis, options, exprs: Sequence,
                make_evaluator: Callable[[], object], n_threads: int = 1) -> List:
    """
    Integrate ``exprs`` over every patch of ``mbasis``.

    With ``n_threads > 1`` worker ``t`` visits the elements ``t, t+n, ...``
    of every patch with its own rule and evaluator. Returns the evaluators.
    """
    n_threads = max(1, int(n_threads))
    ctx.set_side(None)

    def work(t: int):
        ev = make_evaluator()
        ctx.set_side(None)
        visited = 0
        for patch in range(mbasis.n_pieces()):
            basis = mbasis.basis(patch)
            rule = get_rule(basis, options)
            visited += run_elements(ctx, rule, basis.elements().strided(t, n_threads),
                                    patch, exprs, ev)
        logger.debug("Worker %d visited %d elements", t, visited)
        return ev

    if n_threads == 1:
        return [work(0)]
    with ThreadPoolExecutor(max_workers=n_threads) as executor:
        futures = [executor.submit(work, t) for t in range(n_threads)]
        return [f.result() for f in futures]


def boundary_loop(ctx, mbasis, options, records: Sequence, exprs: Sequence, evaluator) -> int:
    """Integrate ``exprs`` over the given boundary sides (sequential)."""
    count = 0
    for rec in records:
        patch, side = rec.patch, rec.side
        if isinstance(rec, BoundaryCondition):
            ctx.set_mut_source(rec.function, rec.parametric)
        basis = mbasis.basis(patch)
        rule = get_rule(basis, options, fixed_dir=side.direction)
        ctx.set_side(side)
        count += run_elements(ctx, rule, basis.elements(side), patch, exprs, evaluator)
    ctx.set_side(None)
    return count


def interface_loop(ctx, mbasis, options, ifaces: Sequence[BoundaryInterface],
                   exprs: Sequence, evaluator) -> int:
    """Integrate ``exprs`` over interfaces; ``.right()`` leaves see the second patch."""
    count = 0
    for iface in ifaces:
        p1, p2 = iface.first.patch, iface.second.patch
        b1, b2 = mbasis.basis(p1), mbasis.basis(p2)
        rule = get_rule(b1, options, fixed_dir=iface.first.side.direction)
        ctx.set_side(iface.first.side)
        ctx.iface().set_side(iface.second.side)
        count += run_elements(ctx, rule, b1.elements(iface.first.side), p1, exprs, evaluator,
                              iface, b1.support(), b2.support())
    ctx.set_side(None)
    ctx.iface().set_side(None)
    return count
