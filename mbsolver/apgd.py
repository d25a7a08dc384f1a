"""Accelerated projected gradient descent (Nesterov, with adaptive step and restart).

Works on the dual problem

    min 1/2 l^T N l + r^T l   over the box / friction set,

with N = J M^-1 J^T + E applied matrix-free through the descriptor and
r = J v_free + rhs. The gradient N l + r is exactly the row residual vector
c, so the same residual measure as the Gauss-Seidel solver applies.
The projection onto the admissible set is the vectorised JAX kernel
`math3d.project_multipliers`.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from .config import APGD_STEP_SHRINK, SOLVER_DEBUG
from .descriptor import SystemDescriptor
from .math3d import project_multipliers
from .solver import SolverResult, SolverSettings, finish, prepare_initial_state, trivial_result

logger = logging.getLogger(__name__)


class APGDSolver:
    def __init__(self, settings: SolverSettings | None = None):
        self.settings = settings if settings is not None else SolverSettings()

    def solve(self, descriptor: SystemDescriptor, free_velocity=None) -> SolverResult:
        s = self.settings
        v_free, v, rows = prepare_initial_state(descriptor, free_velocity, s.warm_start)
        if descriptor.n_dof == 0 or not rows:
            return trivial_result(descriptor, v, rows)

        lo, hi, normal_index, mu = descriptor.bounds_arrays()

        def proj(x):
            return np.asarray(project_multipliers(x, lo, hi, normal_index, mu), dtype=np.float64)

        r = descriptor.jacobian_times(v_free) + descriptor.rhs()
        N = descriptor.schur_times
        g_diag = np.array([row.g for row in rows], dtype=np.float64)
        g_safe = np.where(g_diag > 0.0, g_diag, 1.0)

        def f(x, Nx):
            return 0.5 * float(x @ Nx) + float(r @ x)

        def natural_residual(x, grad):
            return float(np.max(np.abs(x - proj(x - grad / g_safe)) * g_safe))

        x = proj(descriptor.multipliers())
        y = x.copy()
        theta = 1.0

        d = np.ones_like(x)
        L = float(np.linalg.norm(N(d)) / np.linalg.norm(d))
        if not L > 0.0:
            L = 1.0

        best_x = x.copy()
        best_res = natural_residual(x, N(x) + r)
        history: list[float] = []
        converged = best_res < s.tolerance
        it = 0

        if not converged:
            for it in range(1, s.max_iterations + 1):
                Ny = N(y)
                grad_y = Ny + r
                f_y = f(y, Ny)

                x_new = proj(y - grad_y / L)
                Nx_new = N(x_new)
                step = x_new - y
                while f(x_new, Nx_new) > f_y + float(grad_y @ step) + 0.5 * L * float(step @ step) + 1e-15 * abs(f_y):
                    L *= 2.0
                    x_new = proj(y - grad_y / L)
                    Nx_new = N(x_new)
                    step = x_new - y

                theta_new = 0.5 * (-theta * theta + theta * math.sqrt(theta * theta + 4.0))
                beta = theta * (1.0 - theta) / (theta * theta + theta_new)
                y = x_new + beta * (x_new - x)

                grad_x = Nx_new + r
                res = natural_residual(x_new, grad_x)
                if res < best_res:
                    best_res = res
                    best_x = x_new.copy()

                # gradient restart
                if float(grad_y @ (x_new - x)) > 0.0:
                    y = x_new.copy()
                    theta_new = 1.0

                L *= APGD_STEP_SHRINK
                x = x_new
                theta = theta_new

                if s.record_history:
                    history.append(res)
                if SOLVER_DEBUG:
                    logger.debug("apgd iteration %d: residual %.3e (L=%.3e)", it, res, L)
                if res < s.tolerance:
                    converged = True
                    break

        descriptor.set_multipliers(best_x)
        v = v_free + descriptor.inverse_mass_times(descriptor.jacobian_transpose_times(best_x))
        lam = finish(descriptor, v, rows)
        if converged:
            logger.debug("apgd converged in %d iterations (residual %.3e)", it, best_res)
        else:
            logger.info("apgd hit the iteration cap (%d), residual %.3e", s.max_iterations, best_res)
        return SolverResult(v, lam, it, float(best_res), converged, history)
