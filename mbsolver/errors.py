"""Exception types raised by mbsolver.

Structural and configuration problems are raised eagerly (at mutation or
assembly time). Imperfect convergence is never an exception: it is reported
through `SolverResult.final_residual`.
"""

from __future__ import annotations


class SolverError(ValueError):
    """Base class for every error raised by this package."""


class InvalidMassError(SolverError):
    """Mass value is not strictly positive (or not finite)."""


class InvalidInertiaError(SolverError):
    """Inertia tensor is not a symmetric positive-definite 3x3 matrix."""


class DanglingReferenceError(SolverError):
    """A row or handle references a block that is not part of the system."""


class ConfigurationError(SolverError):
    """Invalid solver settings, Jacobian sizes or row bounds."""
