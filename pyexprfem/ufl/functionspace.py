"""pyexprfem.ufl.functionspace
DOF data of a registered test/trial space.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from pyexprfem.core.boundary import BoundaryConditions, DirichletValues
from pyexprfem.core.dofmapper import DofMapper
from pyexprfem.fem.dirichlet import compute_fixed_dofs

logger = logging.getLogger(__name__)


class SpaceData:
    """
    Basis, vector dimension, block id, DOF mapper and fixed DOFs of a space.

    A fresh ``SpaceData`` has every DOF free and interfaces glued;
    :meth:`setup` rebuilds the numbering with Dirichlet elimination.
    """

    def __init__(self, fs, dim: int = 1, id: int = 0):
        self.fs = fs
        self.dim = int(dim)
        self.id = int(id)
        self.bc: Optional[BoundaryConditions] = None
        self.mapper: DofMapper = fs.get_mapper(n_comp=self.dim)
        self.fixed_dofs = np.zeros(self.mapper.boundary_size())

    def setup(self, bcs: Optional[BoundaryConditions] = None,
              dirichlet_values=DirichletValues.INTERPOLATION,
              interface_strategy: str = "conforming", geometry=None, options=None) -> None:
        method = DirichletValues(int(dirichlet_values))
        self.bc = bcs
        self.mapper = self.fs.get_mapper(bcs, unknown=self.id, n_comp=self.dim,
                                         interface_strategy=interface_strategy)
        self.fixed_dofs = compute_fixed_dofs(self.fs, self.mapper, bcs, self.id, self.dim,
                                             method, geometry, options)
        logger.info("Space %d set up: %d free, %d eliminated DOFs (%s)", self.id,
                    self.mapper.free_size(), self.mapper.boundary_size(), method.name.lower())

    def __repr__(self):
        return f"SpaceData(id={self.id}, dim={self.dim}, {self.mapper!r})"
