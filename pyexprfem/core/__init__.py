from .boundary import (BoxSide, BoxCorner, PatchSide, BoundaryInterface,
                       BoundaryCondition, BoundaryConditions, DirichletValues)
from .dofmapper import DofMapper
from .layout import block_offsets
from .options import OptionList
