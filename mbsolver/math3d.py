from __future__ import annotations

import numpy as np

import jax
import jax.numpy as jnp

from .config import SPD_EIG_TOL, SYMMETRY_TOL


# ===========================
# NumPy helpers
# ===========================

def quat_to_R_np_wxyz(q: np.ndarray) -> np.ndarray:
    w, x, y, z = np.asarray(q, dtype=np.float64)
    ww, xx, yy, zz = w * w, x * x, y * y, z * z
    wx, wy, wz = w * x, w * y, w * z
    xy, xz, yz = x * y, x * z, y * z
    return np.array(
        [
            [ww + xx - yy - zz, 2 * (xy - wz), 2 * (xz + wy)],
            [2 * (xy + wz), ww - xx + yy - zz, 2 * (yz - wx)],
            [2 * (xz - wy), 2 * (yz + wx), ww - xx - yy + zz],
        ],
        dtype=np.float64,
    )


def is_symmetric_positive_definite(A: np.ndarray, sym_tol: float = SYMMETRY_TOL) -> bool:
    """Symmetry within `sym_tol` (relative to the largest entry) and all eigenvalues > 0."""
    A = np.asarray(A, dtype=np.float64)
    if A.ndim != 2 or A.shape[0] != A.shape[1] or not np.all(np.isfinite(A)):
        return False
    scale = max(float(np.max(np.abs(A))), 1.0)
    if float(np.max(np.abs(A - A.T))) > sym_tol * scale:
        return False
    eig = np.linalg.eigvalsh(0.5 * (A + A.T))
    return bool(eig[0] > SPD_EIG_TOL * scale)


def tangent_basis_np(normal: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Two unit tangents (t1, t2) with (n, t1, t2) right-handed."""
    n = np.asarray(normal, dtype=np.float64)
    n = n / (np.linalg.norm(n) + 1e-18)
    # pick the world axis least aligned with n
    helper = np.zeros(3, dtype=np.float64)
    helper[int(np.argmin(np.abs(n)))] = 1.0
    t1 = np.cross(n, helper)
    t1 = t1 / (np.linalg.norm(t1) + 1e-18)
    t2 = np.cross(n, t1)
    return t1, t2


def point_jacobian_row_np(r_world: np.ndarray, direction: np.ndarray, R_body: np.ndarray | None = None) -> np.ndarray:
    """Row of [I, -skew(r)] projected on `direction`: d . (v + w x r).

    With `R_body` given the angular part is expressed in body coordinates
    (angular velocity unknowns living in the body frame).
    """
    d = np.asarray(direction, dtype=np.float64)
    ang = np.cross(np.asarray(r_world, dtype=np.float64), d)
    if R_body is not None:
        ang = np.asarray(R_body, dtype=np.float64).T @ ang
    return np.concatenate([d, ang]).astype(np.float64)


# ===========================
# JAX helpers
# ===========================

@jax.jit
def body_mass_inv_6x6(inv_mass: jnp.ndarray, inv_inertia: jnp.ndarray) -> jnp.ndarray:
    """Block-diagonal 6x6 inverse mass of a rigid body from cached inverses."""
    Minv = jnp.zeros((6, 6), dtype=jnp.float64)
    Minv = Minv.at[0:3, 0:3].set(inv_mass * jnp.eye(3, dtype=jnp.float64))
    Minv = Minv.at[3:6, 3:6].set(inv_inertia)
    return Minv


@jax.jit
def project_multipliers(lam, lo, hi, normal_index, mu):
    """Vectorised projection of all multipliers onto their admissible sets.

    Rows with `normal_index >= 0` are friction rows: their box is
    [-mu * ln, mu * ln] where ln is the *projected* normal multiplier.
    The other rows are clipped to [lo, hi].
    """
    is_fric = normal_index >= 0
    base = jnp.clip(lam, lo, hi)
    ln = base[jnp.maximum(normal_index, 0)]
    limit = mu * jnp.maximum(ln, 0.0)
    fric = jnp.clip(lam, -limit, limit)
    return jnp.where(is_fric, fric, base)
