"""mbsolver: variable/constraint algebra and iterative complementarity solver.

Importing the package pins JAX to the CPU backend with 64-bit floats, before
any of the jitted kernels in `mbsolver.math3d` are traced.
"""

from __future__ import annotations

import os as _os

# Set env var before any JAX import happens anywhere.
_os.environ.setdefault("JAX_PLATFORM_NAME", "cpu")

# Apply JAX config (imports jax).
from .config import apply_jax_cpu as _apply_jax_cpu

_apply_jax_cpu()

# Public API
from .errors import (
    SolverError,
    InvalidMassError,
    InvalidInertiaError,
    DanglingReferenceError,
    ConfigurationError,
)
from .mass import BodyMass, GenericMass, SharedMassPool, MassHandle
from .variables import VariableBlock, VariableKind
from .constraints import ConstraintRow, JacobianSegment, RowKind
from .descriptor import SystemDescriptor
from .sparse import TripletStorage
from .solver import ProjectedSORSolver, SolverSettings, SolverResult, SweepOrder, solve
from .apgd import APGDSolver
from .warmstart import MultiplierCache
from .logging_config import setup_logging

__all__ = [
    "SolverError",
    "InvalidMassError",
    "InvalidInertiaError",
    "DanglingReferenceError",
    "ConfigurationError",
    "BodyMass",
    "GenericMass",
    "SharedMassPool",
    "MassHandle",
    "VariableBlock",
    "VariableKind",
    "ConstraintRow",
    "JacobianSegment",
    "RowKind",
    "SystemDescriptor",
    "TripletStorage",
    "ProjectedSORSolver",
    "SolverSettings",
    "SolverResult",
    "SweepOrder",
    "solve",
    "APGDSolver",
    "MultiplierCache",
    "setup_logging",
]
