from __future__ import annotations

import os

# -----------------------------
# JAX config (CPU recommended)
# -----------------------------
JAX_PLATFORM_NAME: str = os.environ.get("JAX_PLATFORM_NAME", "cpu")
JAX_ENABLE_X64: bool = True

# -----------------------------
# Solver defaults
# -----------------------------
DEFAULT_MAX_ITERATIONS: int = int(os.environ.get("MBSOLVER_MAX_ITERATIONS", "100"))
DEFAULT_TOLERANCE: float = float(os.environ.get("MBSOLVER_TOLERANCE", "1e-8"))
DEFAULT_OMEGA: float = 1.0
DEFAULT_WARM_START: bool = True
DEFAULT_SWEEP_ORDER: str = os.environ.get("MBSOLVER_SWEEP_ORDER", "sequential")

# APGD step control
APGD_STEP_SHRINK: float = 0.9

# -----------------------------
# Numerical tolerances
# -----------------------------
SYMMETRY_TOL: float = 1e-9
SPD_EIG_TOL: float = 1e-14

# Per-iteration residual logging
SOLVER_DEBUG: bool = os.environ.get("MBSOLVER_DEBUG", "0") not in ("", "0", "false", "False")


def apply_jax_cpu() -> None:
    """Force JAX to use CPU and x64.

    Must run before any of the jitted kernels in `mbsolver.math3d` are traced.
    """
    # Also set env var here (harmless if already set)
    os.environ.setdefault("JAX_PLATFORM_NAME", "cpu")

    import jax

    jax.config.update("jax_platform_name", JAX_PLATFORM_NAME)
    jax.config.update("jax_enable_x64", bool(JAX_ENABLE_X64))
