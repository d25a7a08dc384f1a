"""Projected SOR / Gauss-Seidel solver over an assembled SystemDescriptor.

Each sweep visits the active rows once. For a row it computes the current
residual c = J v + rhs + cfm * l, takes the local step l - omega * c / g,
projects it onto the row's admissible interval and pushes the multiplier
change straight into the velocities of the one or two referenced blocks, so
later rows of the same sweep already see it.

Running out of iterations is not an error: the best available solution is
returned together with its residual.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field

import numpy as np

from .config import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_OMEGA,
    DEFAULT_SWEEP_ORDER,
    DEFAULT_TOLERANCE,
    DEFAULT_WARM_START,
    SOLVER_DEBUG,
)
from .constraints import ConstraintRow
from .descriptor import SystemDescriptor
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class SweepOrder(enum.Enum):
    SEQUENTIAL = "sequential"
    RANDOM = "random"
    COLORED = "colored"


@dataclass
class SolverSettings:
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    tolerance: float = DEFAULT_TOLERANCE
    warm_start: bool = DEFAULT_WARM_START
    sweep_order: SweepOrder = SweepOrder(DEFAULT_SWEEP_ORDER)
    omega: float = DEFAULT_OMEGA
    seed: int | None = None
    record_history: bool = False

    def __post_init__(self):
        if isinstance(self.max_iterations, bool) or not isinstance(self.max_iterations, (int, np.integer)):
            raise ConfigurationError(f"[mbsolver.solver] max_iterations must be an int, got {self.max_iterations!r}")
        if self.max_iterations <= 0:
            raise ConfigurationError(f"[mbsolver.solver] max_iterations must be > 0, got {self.max_iterations!r}")
        if not math.isfinite(self.tolerance) or self.tolerance < 0.0:
            raise ConfigurationError(f"[mbsolver.solver] tolerance must be finite and >= 0, got {self.tolerance!r}")
        if not 0.0 < self.omega < 2.0:
            raise ConfigurationError(f"[mbsolver.solver] omega must lie in (0, 2), got {self.omega!r}")
        if not isinstance(self.sweep_order, SweepOrder):
            try:
                self.sweep_order = SweepOrder(self.sweep_order)
            except ValueError:
                raise ConfigurationError(f"[mbsolver.solver] unknown sweep order {self.sweep_order!r}") from None


@dataclass
class SolverResult:
    velocities: np.ndarray
    multipliers: np.ndarray
    iterations_used: int
    final_residual: float
    converged: bool
    residual_history: list[float] = field(default_factory=list)

    def diagnostic(self) -> dict:
        return {"iterations_used": self.iterations_used, "final_residual": self.final_residual}


def prepare_initial_state(
    descriptor: SystemDescriptor,
    free_velocity,
    warm_start: bool,
) -> tuple[np.ndarray, np.ndarray, list[ConstraintRow]]:
    """Re-assemble and return (v_free, v_start, active_rows).

    Offsets, active sets and every row's cached M^-1 J^T and g are rebuilt on
    each call, so mass edits and enable/disable flips since the last solve
    are picked up.

    Rows that are inactive this step have their multiplier reset to zero;
    without warm starting every active multiplier starts at zero too.
    v_start = v_free + M^-1 J^T l for the starting multipliers.
    """
    descriptor.assemble()

    for r in descriptor.constraints:
        if not r.is_active:
            r.multiplier = 0.0

    if free_velocity is None:
        v_free = descriptor.free_velocity()
    else:
        v_free = np.array(free_velocity, dtype=np.float64).ravel()
        if v_free.shape != (descriptor.n_dof,):
            raise ConfigurationError(
                f"[mbsolver.solver] free velocity has {v_free.size} entries, system has {descriptor.n_dof} DOF"
            )

    rows = descriptor.active_constraints
    v = v_free.copy()
    for r in rows:
        if not warm_start:
            r.multiplier = 0.0
        elif r.multiplier != 0.0:
            r.increment_velocities(r.multiplier, v)
    return v_free, v, rows


def finish(descriptor: SystemDescriptor, v: np.ndarray, rows: list[ConstraintRow]) -> np.ndarray:
    """Write velocities into the blocks and refresh every row's cached residual."""
    descriptor.scatter_velocities(v)
    for r in rows:
        r.compute_residual(v)
    return np.array([r.multiplier for r in rows], dtype=np.float64)


def trivial_result(descriptor: SystemDescriptor, v: np.ndarray, rows: list[ConstraintRow]) -> SolverResult:
    if descriptor.n_dof == 0:
        logger.warning("no active variable blocks: returning the empty solution")
    lam = finish(descriptor, v, rows)
    return SolverResult(v, lam, 0, 0.0, True, [])


class ProjectedSORSolver:
    """Projected successive over-relaxation (omega = 1: projected Gauss-Seidel)."""

    def __init__(self, settings: SolverSettings | None = None):
        self.settings = settings if settings is not None else SolverSettings()
        self._rng = np.random.default_rng(self.settings.seed)

    def _order(self, descriptor: SystemDescriptor, rows: list[ConstraintRow]) -> list[ConstraintRow]:
        order = self.settings.sweep_order
        if order is SweepOrder.COLORED:
            return [r for color in descriptor.row_colors() for r in color]
        return list(rows)

    def solve(self, descriptor: SystemDescriptor, free_velocity=None) -> SolverResult:
        s = self.settings
        v_free, v, rows = prepare_initial_state(descriptor, free_velocity, s.warm_start)
        if descriptor.n_dof == 0 or not rows:
            return trivial_result(descriptor, v, rows)

        skipped = sum(1 for r in rows if r.g <= 0.0)
        if skipped:
            logger.debug("%d rows with zero effective mass are skipped", skipped)

        order = self._order(descriptor, rows)
        omega = s.omega
        history: list[float] = []
        residual = math.inf
        converged = False
        it = 0

        for it in range(1, s.max_iterations + 1):
            if s.sweep_order is SweepOrder.RANDOM:
                order = [rows[i] for i in self._rng.permutation(len(rows))]

            max_corr = 0.0
            for r in order:
                g = r.g
                if g <= 0.0:
                    continue
                c = r.compute_residual(v)
                l_old = r.multiplier
                l_new = r.project(l_old - omega * c / g)
                dl = l_new - l_old
                if dl != 0.0:
                    r.multiplier = l_new
                    r.increment_velocities(dl, v)
                    corr = abs(dl) * g
                    if corr > max_corr:
                        max_corr = corr

            residual = max_corr
            if s.record_history:
                history.append(residual)
            if SOLVER_DEBUG:
                logger.debug("psor iteration %d: residual %.3e", it, residual)
            if residual < s.tolerance:
                converged = True
                break

        lam = finish(descriptor, v, rows)
        if converged:
            logger.debug("psor converged in %d iterations (residual %.3e)", it, residual)
        else:
            logger.info("psor hit the iteration cap (%d), residual %.3e", s.max_iterations, residual)
        return SolverResult(v, lam, it, float(residual), converged, history)


def solve(descriptor: SystemDescriptor, settings: SolverSettings | None = None, free_velocity=None) -> SolverResult:
    """Solve with the reference projected Gauss-Seidel solver."""
    return ProjectedSORSolver(settings).solve(descriptor, free_velocity)
