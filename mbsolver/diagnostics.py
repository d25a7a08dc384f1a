"""Residual measures and a direct reference solve for bilateral systems."""

from __future__ import annotations

import logging

import numpy as np
import scipy as sp
import scipy.sparse.linalg

from .constraints import RowKind
from .descriptor import SystemDescriptor
from .errors import ConfigurationError
from .math3d import project_multipliers

logger = logging.getLogger(__name__)


def constraint_violation(descriptor: SystemDescriptor, v) -> np.ndarray:
    """Per active row c = J v + rhs + compliance * l."""
    lam = descriptor.multipliers()
    return descriptor.jacobian_times(v) + descriptor.rhs() + descriptor.compliances() * lam


def complementarity_error(descriptor: SystemDescriptor, v) -> np.ndarray:
    """Natural-map residual |l - P(l - c)| per active row (zero at an exact solution)."""
    lam = descriptor.multipliers()
    c = constraint_violation(descriptor, v)
    lo, hi, normal_index, mu = descriptor.bounds_arrays()
    projected = np.asarray(project_multipliers(lam - c, lo, hi, normal_index, mu), dtype=np.float64)
    return np.abs(lam - projected)


def kinetic_energy(descriptor: SystemDescriptor, v) -> float:
    v = np.asarray(v, dtype=np.float64)
    return 0.5 * float(v @ descriptor.mass_times(v))


def solve_bilateral_direct(descriptor: SystemDescriptor, free_velocity=None) -> tuple[np.ndarray, np.ndarray]:
    """Exact solution of an equality-only system via the sparse saddle-point matrix.

        [ M  -J^T ] [v]   [M v_free]
        [ J   E   ] [l] = [ -rhs   ]
    """
    descriptor.assemble()
    rows = descriptor.active_constraints
    bad = [r for r in rows if r.kind is not RowKind.EQUALITY]
    if bad:
        raise ConfigurationError(
            f"[mbsolver.diagnostics] direct solve handles equality rows only, got {len(bad)} other rows"
        )

    v_free = descriptor.free_velocity() if free_velocity is None else np.asarray(free_velocity, dtype=np.float64)
    if not rows:
        return v_free.copy(), np.zeros(0, dtype=np.float64)

    A = descriptor.build_system_matrix().tocsc()
    b = np.concatenate([descriptor.mass_times(v_free), -descriptor.rhs()])
    x = sp.sparse.linalg.spsolve(A, b)
    if not np.all(np.isfinite(x)):
        logger.warning("direct solve produced non-finite values (redundant constraints?)")
    n = descriptor.n_dof
    return x[:n], x[n:]
