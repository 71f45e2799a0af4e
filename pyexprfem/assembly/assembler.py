"""pyexprfem.assembly.assembler
Expression assembler: registration, system sizing and assembly entry points.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from pyexprfem.assembly.accumulator import SystemAccumulator, reduce_into
from pyexprfem.assembly.evaluator import ElementEvaluator
from pyexprfem.assembly.loops import boundary_loop, domain_loop, interface_loop
from pyexprfem.core.boundary import DirichletValues, as_boundary_records
from pyexprfem.core.layout import block_offsets
from pyexprfem.core.options import OptionList
from pyexprfem.fem.multibasis import MultiBasis
from pyexprfem.fem.multipatch import MultiPatch
from pyexprfem.ufl.context import ExprContext
from pyexprfem.ufl.expressions import Expression, Solution, Space
from pyexprfem.ufl.functionspace import SpaceData

logger = logging.getLogger(__name__)


class AssemblerState(Enum):
    UNCONFIGURED = 0
    SPACES_REGISTERED = 1
    SYSTEM_INITIALIZED = 2
    ASSEMBLED = 3


def _flatten(exprs) -> List[Expression]:
    out = []
    for e in exprs:
        if isinstance(e, (list, tuple)):
            out.extend(_flatten(e))
        elif isinstance(e, Expression):
            out.append(e)
        else:
            raise TypeError(f"Cannot assemble object of type {type(e).__name__}")
    return out


class ExprAssembler:
    """
    Assembles matrices and right-hand sides from form expressions.

    The system has ``r_blocks`` test-space blocks and ``c_blocks`` trial-space
    blocks; their DOFs are laid out one after the other in block order.

    Typical use::

        A = ExprAssembler()
        A.set_integration_elements(mb)
        G = A.get_map(mp)
        u = A.get_space(mb)
        u.setup(bcs, DirichletValues.INTERPOLATION)
        A.init_system()
        A.assemble(igrad(u, G) * igrad(u, G).tr() * meas(G), u * ff * meas(G))
        K, f = A.matrix(), A.rhs()
    """

    def __init__(self, r_blocks: int = 1, c_blocks: int = 1):
        if r_blocks < 1 or c_blocks < 1:
            raise ValueError("An assembler needs at least one row and one column block.")
        self._ctx = ExprContext()
        self._options = self.default_options()
        self._vrow: List[Optional[Space]] = [None] * r_blocks
        self._vcol: List[Optional[Space]] = [None] * c_blocks
        self._sdata: List[SpaceData] = []
        self._matrix = sp.csr_matrix((0, 0))
        self._rhs = np.zeros((0, 0))
        self._matrix_ready = False
        self._rhs_ready = False
        self._reserve = 0
        self.state = AssemblerState.UNCONFIGURED

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------
    @staticmethod
    def default_options() -> OptionList:
        opt = OptionList()
        opt.add_int("DirichletValues", "Method for computation of Dirichlet DoF values [100..103]", 101)
        opt.add_real("quA", "Number of quadrature points: quA*deg + quB", 1.0)
        opt.add_int("quB", "Number of quadrature points: quA*deg + quB", 1)
        opt.add_real("bdA", "Estimated nonzeros per column of the matrix: bdA*deg + bdB", 2.0)
        opt.add_int("bdB", "Estimated nonzeros per column of the matrix: bdA*deg + bdB", 1)
        opt.add_real("bdO", "Overhead of sparse mem. allocation: (1+bdO)(bdA*deg + bdB) [0..1]", 0.333)
        opt.add_int("numThreads", "Number of worker threads of the domain loop", 1)
        return opt

    @property
    def options(self) -> OptionList:
        return self._options

    def set_options(self, opt: OptionList) -> None:
        """Copy the values of ``opt`` (declared keys only)."""
        self._options.update({e.name: e.value for e in opt})

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def expr_data(self) -> ExprContext:
        return self._ctx

    def set_integration_elements(self, mbasis) -> None:
        self._ctx.multi_basis = mbasis if isinstance(mbasis, MultiBasis) else MultiBasis([mbasis])

    def integration_elements(self) -> MultiBasis:
        if self._ctx.multi_basis is None:
            raise RuntimeError("Integration elements are not set.")
        return self._ctx.multi_basis

    def _registered(self) -> None:
        if self.state == AssemblerState.UNCONFIGURED:
            self.state = AssemblerState.SPACES_REGISTERED

    def get_map(self, domain):
        if not isinstance(domain, MultiPatch):
            domain = MultiPatch([domain])
        return self._ctx.get_map(domain)

    def get_space(self, basis, dim: int = 1, id: int = 0) -> Space:
        """Register ``basis`` as test and trial space of block ``id``."""
        if basis.target_dim != 1:
            raise ValueError("Expecting scalar source space.")
        if not (0 <= id < len(self._vrow) and id < len(self._vcol)):
            raise ValueError(f"Given ID {id} exceeds the number of row/col blocks.")
        if not isinstance(basis, MultiBasis):
            basis = MultiBasis([basis])
        sd = SpaceData(basis, dim, id)
        self._sdata.append(sd)
        u = self._ctx.get_space(basis, dim)
        u.space_data = sd
        self._vrow[id] = self._vcol[id] = u
        if self._ctx.multi_basis is None:
            self._ctx.multi_basis = basis
        self._registered()
        logger.debug("Registered space %d (dim=%d, %d DOFs)", id, dim, basis.size())
        return u

    register_space = get_space

    def get_test_space(self, trial: Space, basis, dim: Optional[int] = None) -> Space:
        """Register a test space distinct from ``trial`` in the same block."""
        if basis.target_dim != 1:
            raise ValueError("Expecting scalar source space.")
        if not isinstance(basis, MultiBasis):
            basis = MultiBasis([basis])
        sd = SpaceData(basis, trial.dim if dim is None else dim, trial.id)
        self._sdata.append(sd)
        v = self._ctx.get_space(basis, sd.dim)
        v.space_data = sd
        self._vrow[trial.id] = v
        self._registered()
        return v

    register_test_space = get_test_space

    def trial_space(self, id: int = 0) -> Space:
        if self._vcol[id] is None:
            raise RuntimeError(f"Trial space of block {id} is not registered.")
        return self._vcol[id]

    def test_space(self, id: int = 0) -> Space:
        if self._vrow[id] is None:
            raise RuntimeError(f"Test space of block {id} is not registered.")
        return self._vrow[id]

    def get_coeff(self, function, geometry=None):
        return self._ctx.get_coeff(function, geometry)

    def get_bdr_function(self, dim: int = 1):
        return self._ctx.get_mut_var(dim)

    def get_solution(self, space: Space, coefs, column: int = 0) -> Solution:
        return Solution(space, coefs, column)

    # ------------------------------------------------------------------
    # Sizes
    # ------------------------------------------------------------------
    @staticmethod
    def _last_mapper(blocks, kind: str):
        last = blocks[-1]
        if last is None:
            raise RuntimeError(f"The {kind} space of block {len(blocks) - 1} is not registered.")
        m = last.mapper()
        if not m.is_finalized():
            raise RuntimeError(f"The DOF numbering of the {kind} space is not finalized.")
        return m

    def num_dofs(self) -> int:
        m = self._last_mapper(self._vcol, "trial")
        return m.first_index() + m.free_size()

    def num_test_dofs(self) -> int:
        m = self._last_mapper(self._vrow, "test")
        return m.first_index() + m.free_size()

    def num_blocks(self) -> int:
        return sum(self.test_space(i).dim for i in range(len(self._vrow)))

    def reset_dimensions(self) -> None:
        """Shift every block to start where the previous one ends."""
        for blocks, kind in ((self._vcol, "trial"), (self._vrow, "test")):
            for i, s in enumerate(blocks):
                if s is None:
                    raise RuntimeError(f"The {kind} space of block {i} is not registered.")
                if not s.mapper().is_finalized():
                    raise RuntimeError(f"The DOF numbering of {kind} block {i} is not finalized.")
        cols = self._vcol
        offs = block_offsets(cols[0].mapper().first_index(), [s.mapper().free_size() for s in cols])
        for s, o in zip(cols[1:], offs[1:]):
            s.mapper().set_shift(o)
        rows = self._vrow
        offs = block_offsets(rows[0].mapper().first_index(), [s.mapper().free_size() for s in rows])
        for i in range(1, len(rows)):
            if i >= len(cols) or rows[i].space_data is not cols[i].space_data:
                rows[i].mapper().set_shift(offs[i])

    finalize_numbering = reset_dimensions

    def _estimate_nonzeros(self) -> int:
        """Nonzeros per column: numBlocks * prod(bdA*deg + bdB) * (1 + bdO)."""
        mb = self.integration_elements()
        bdA = self._options.get_real("bdA")
        bdB = self._options.get_int("bdB")
        bdO = self._options.get_real("bdO")
        nz = 1.0
        for k in range(mb.domain_dim):
            nz *= bdA * mb.degree(k) + bdB
        return int(self.num_blocks() * nz * (1.0 + bdO))

    # ------------------------------------------------------------------
    # System initialization
    # ------------------------------------------------------------------
    def init_matrix(self) -> None:
        self.reset_dimensions()
        rows, cols = self.num_test_dofs(), self.num_dofs()
        self._matrix = sp.csr_matrix((rows, cols))
        self._matrix_ready = True
        if rows == 0 or cols == 0:
            logger.warning(" No internal DOFs, zero sized system.")
            self._reserve = 0
        else:
            self._reserve = self._estimate_nonzeros() * cols
        self.state = AssemblerState.SYSTEM_INITIALIZED
        logger.info("Matrix initialized: %d x %d, reserving %d nonzeros", rows, cols, self._reserve)

    def init_vector(self, num_rhs: int = 1) -> None:
        self.reset_dimensions()
        self._rhs = np.zeros((self.num_test_dofs(), int(num_rhs)))
        self._rhs_ready = True
        self.state = AssemblerState.SYSTEM_INITIALIZED

    def init_system(self, num_rhs: int = 1) -> None:
        self.init_matrix()
        self.init_vector(num_rhs)

    def _check_initialized(self) -> None:
        # the rhs has one row per test DOF
        if self._matrix_ready:
            ok = self._matrix.shape[1] == self.num_dofs()
        elif self._rhs_ready:
            ok = self._rhs.shape[0] == self.num_test_dofs()
        else:
            ok = False
        if not ok:
            raise RuntimeError("System not initialized")

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------
    def _new_evaluator(self, n_workers: int = 1) -> ElementEvaluator:
        acc = SystemAccumulator(self._matrix.shape, self._rhs.shape, self._reserve // n_workers)
        return ElementEvaluator(self._ctx, acc, self._matrix_ready, self._rhs_ready)

    def _reduce(self, evaluators) -> None:
        mat, rhs = reduce_into(self._matrix if self._matrix_ready else None,
                               self._rhs if self._rhs_ready else None,
                               [ev.acc for ev in evaluators])
        if mat is not None:
            self._matrix = mat
        self.state = AssemblerState.ASSEMBLED

    def _prepare(self, exprs) -> List[Expression]:
        exprs = _flatten(exprs)
        self._check_initialized()
        self._ctx.parse(exprs)
        return exprs

    def assemble(self, *exprs) -> None:
        """Integrate every expression over the whole domain."""
        exprs = self._prepare(exprs)
        mb = self.integration_elements()
        n = max(1, self._options.get_int("numThreads"))
        logger.info("Assembling %d domain expression(s) on %d patch(es), %d thread(s)",
                    len(exprs), mb.n_pieces(), n)
        evs = domain_loop(self._ctx, mb, self._options, exprs, lambda: self._new_evaluator(n), n)
        self._reduce(evs)

    def assemble_boundary(self, bcs, *exprs) -> None:
        """Integrate over boundary sides; the boundary function follows each record."""
        exprs = self._prepare(exprs)
        records = as_boundary_records(bcs)
        logger.info("Assembling %d boundary expression(s) on %d side(s)", len(exprs), len(records))
        ev = self._new_evaluator()
        boundary_loop(self._ctx, self.integration_elements(), self._options, records, exprs, ev)
        self._reduce([ev])

    def assemble_lhs_rhs_bc(self, lhs: Expression, rhs: Expression, bcs) -> None:
        if lhs.row_var() is None or rhs.row_var() is None or lhs.row_var().id != rhs.row_var().id:
            raise ValueError("Inconsistent left and right hand side.")
        self.assemble_boundary(bcs, lhs, rhs)

    def assemble_rhs_bc(self, rhs: Expression, bcs) -> None:
        self.assemble_boundary(bcs, rhs)

    def assemble_interface(self, ifaces, *exprs) -> None:
        """Integrate over interfaces (all topology interfaces if ``ifaces`` is None)."""
        exprs = self._prepare(exprs)
        mb = self.integration_elements()
        ifaces = list(mb.topology.interfaces if ifaces is None else ifaces)
        logger.info("Assembling %d interface expression(s) on %d interface(s)", len(exprs), len(ifaces))
        ev = self._new_evaluator()
        interface_loop(self._ctx, mb, self._options, ifaces, exprs, ev)
        self._reduce([ev])

    def assemble_interface_terms(self, *exprs) -> None:
        self.assemble_interface(None, *exprs)

    def assemble_rhs_interface(self, expr: Expression, ifaces) -> None:
        self.assemble_interface(ifaces, expr)

    # ------------------------------------------------------------------
    # Fixed DOFs
    # ------------------------------------------------------------------
    def set_fixed_dof_vector(self, values, unk: int = 0) -> None:
        sd = self.trial_space(unk).space_data
        values = np.asarray(values, dtype=float)
        if values.shape[0] != sd.mapper.boundary_size():
            raise ValueError(f"Fixed DOF vector has size {values.shape[0]}, "
                             f"expected {sd.mapper.boundary_size()}.")
        sd.fixed_dofs = values.copy()

    def set_fixed_dofs(self, coefs, unk: int = 0, patch: int = 0) -> None:
        """Copy the boundary coefficients of ``coefs`` (size x dim) on ``patch``."""
        if self._options.get_int("DirichletValues") != DirichletValues.USER:
            raise ValueError("Incorrect options: DirichletValues must be 103 (user).")
        sd = self.trial_space(unk).space_data
        if len(sd.fixed_dofs) != sd.mapper.boundary_size():
            raise RuntimeError("Fixed DoFs were not initialized.")
        if sd.bc is None:
            return
        coefs = np.asarray(coefs, dtype=float)
        if coefs.ndim == 1:
            coefs = coefs[:, None]
        for bc in sd.bc.dirichlet_sides(unk):
            if bc.patch != patch:
                continue
            idx = sd.fs.basis(patch).boundary(bc.side)
            for c in bc.components(sd.dim):
                sd.fixed_dofs[sd.mapper.bindex(idx, patch, c)] = coefs[idx, c]

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    def matrix(self) -> sp.csr_matrix:
        return self._matrix

    def rhs(self) -> np.ndarray:
        return self._rhs

    def give_matrix(self) -> sp.csr_matrix:
        m, self._matrix = self._matrix, sp.csr_matrix((0, 0))
        self._matrix_ready = False
        return m

    def give_rhs(self) -> np.ndarray:
        r, self._rhs = self._rhs, np.zeros((0, 0))
        self._rhs_ready = False
        return r

    def matrix_block_view(self) -> Dict[Tuple[int, int], sp.csr_matrix]:
        """
        Sub-blocks of the matrix keyed by ``(row block, column block)``.
        A single scalar space is split into interior and coupled DOFs.
        """
        def sizes(blocks):
            if len(blocks) == 1 and blocks[0].dim == 1:
                m = blocks[0].mapper()
                return [m.free_size() - m.coupled_size(), m.coupled_size()]
            return [s.mapper().free_size() for s in blocks]

        rs, cs = sizes(self._vrow), sizes(self._vcol)
        ro, co = block_offsets(0, rs), block_offsets(0, cs)
        return {(i, j): self._matrix[ro[i]:ro[i] + rs[i], co[j]:co[j] + cs[j]]
                for i in range(len(rs)) for j in range(len(cs))}

    def clean_up(self) -> None:
        self._ctx.clean_up()

    def __repr__(self):
        return (f"ExprAssembler({len(self._vrow)}x{len(self._vcol)} blocks, "
                f"state={self.state.name}, matrix={self._matrix.shape})")
