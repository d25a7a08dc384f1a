"""Factories for the constraint rows a stepper typically emits.

Points and directions are world-frame. Angular unknowns are world-frame
unless a body rotation `R_a`/`R_b` is given (a 3x3 matrix or a wxyz
quaternion), in which case the angular Jacobian part is expressed in that
body's frame.
"""

from __future__ import annotations

import numpy as np

from .constraints import ConstraintRow
from .errors import ConfigurationError
from .math3d import point_jacobian_row_np, quat_to_R_np_wxyz, tangent_basis_np
from .variables import VariableBlock, VariableKind


def _require_body(block: VariableBlock) -> None:
    if block.kind is VariableKind.GENERIC:
        raise ConfigurationError(f"[mbsolver.rows] {block!r} is not a rigid-body block")


def _sub_key(key, tag):
    return None if key is None else (key, tag)


def _rotation(R):
    """Body rotation as a 3x3 matrix; a 4-vector is read as a wxyz quaternion."""
    if R is None:
        return None
    R = np.asarray(R, dtype=np.float64)
    if R.shape == (4,):
        return quat_to_R_np_wxyz(R / np.linalg.norm(R))
    if R.shape != (3, 3):
        raise ConfigurationError(f"[mbsolver.rows] expected a 3x3 rotation or a wxyz quaternion, got shape {R.shape}")
    return R


def _linear_jacobian(block: VariableBlock, axis) -> np.ndarray:
    axis = np.asarray(axis, dtype=np.float64).ravel()
    if block.kind is VariableKind.GENERIC:
        if axis.size != block.dof:
            raise ConfigurationError(
                f"[mbsolver.rows] generic block has {block.dof} DOF, got a {axis.size}-entry axis"
            )
        return axis
    J = np.zeros(6, dtype=np.float64)
    J[0:3] = axis[0:3]
    return J


def velocity_equality_row(a, b, axis, rhs=0.0, compliance=0.0, key=None, name=None) -> ConstraintRow:
    """axis . (v_a - v_b) + rhs == 0 (b may be None for a fixed anchor)."""
    Ja = _linear_jacobian(a, axis)
    Jb = -_linear_jacobian(b, axis) if b is not None else None
    return ConstraintRow.equality(a, Ja, b, Jb, rhs=rhs, compliance=compliance, key=key, name=name)


def contact_rows(
    a,
    b,
    point,
    normal,
    com_a,
    com_b=None,
    mu: float = 0.0,
    rhs: float = 0.0,
    compliance: float = 0.0,
    R_a=None,
    R_b=None,
    key=None,
) -> list[ConstraintRow]:
    """One UNILATERAL normal row followed by two FRICTION rows.

    `normal` points from b towards a, so a positive normal velocity means
    separation. With b None the contact is against static geometry.
    """
    _require_body(a)
    R_a, R_b = _rotation(R_a), _rotation(R_b)
    n = np.asarray(normal, dtype=np.float64)
    n = n / (np.linalg.norm(n) + 1e-18)
    t1, t2 = tangent_basis_np(n)
    p = np.asarray(point, dtype=np.float64)

    r_a = p - np.asarray(com_a, dtype=np.float64)
    if b is not None:
        _require_body(b)
        if com_b is None:
            raise ConfigurationError("[mbsolver.rows] contact with a second body needs com_b")
        r_b = p - np.asarray(com_b, dtype=np.float64)

    def jac(direction):
        Ja = point_jacobian_row_np(r_a, direction, R_a)
        Jb = -point_jacobian_row_np(r_b, direction, R_b) if b is not None else None
        return Ja, Jb

    Ja, Jb = jac(n)
    normal_row = ConstraintRow.unilateral(
        a, Ja, b, Jb, rhs=rhs, compliance=compliance, key=_sub_key(key, "n")
    )
    rows = [normal_row]
    for tag, t in (("t1", t1), ("t2", t2)):
        Ja, Jb = jac(t)
        rows.append(ConstraintRow.friction_row(normal_row, mu, a, Ja, b, Jb, key=_sub_key(key, tag)))
    return rows


def ball_joint_rows(a, b, point, com_a, com_b=None, drift=None, R_a=None, R_b=None, compliance=0.0, key=None) -> list[ConstraintRow]:
    """Three EQUALITY rows pinning the velocity of `point` on a to that on b.

    `drift` is an optional velocity-level correction added to each row's rhs
    (for example a Baumgarte term computed by the stepper).
    """
    _require_body(a)
    R_a, R_b = _rotation(R_a), _rotation(R_b)
    p = np.asarray(point, dtype=np.float64)
    r_a = p - np.asarray(com_a, dtype=np.float64)
    if b is not None:
        _require_body(b)
        if com_b is None:
            raise ConfigurationError("[mbsolver.rows] joint with a second body needs com_b")
        r_b = p - np.asarray(com_b, dtype=np.float64)
    drift = np.zeros(3) if drift is None else np.asarray(drift, dtype=np.float64)

    rows = []
    for i, tag in enumerate(("x", "y", "z")):
        e = np.zeros(3, dtype=np.float64)
        e[i] = 1.0
        Ja = point_jacobian_row_np(r_a, e, R_a)
        Jb = -point_jacobian_row_np(r_b, e, R_b) if b is not None else None
        rows.append(
            ConstraintRow.equality(a, Ja, b, Jb, rhs=float(drift[i]), compliance=compliance, key=_sub_key(key, tag))
        )
    return rows


def motor_row(a, b, axis, target_speed: float, max_impulse: float, R_a=None, R_b=None, key=None) -> ConstraintRow:
    """BOXED row driving (w_a - w_b) . axis towards target_speed with |l| <= max_impulse."""
    _require_body(a)
    if max_impulse < 0.0:
        raise ConfigurationError(f"[mbsolver.rows] max_impulse must be >= 0, got {max_impulse!r}")
    R_a, R_b = _rotation(R_a), _rotation(R_b)
    axis = np.asarray(axis, dtype=np.float64)
    axis = axis / (np.linalg.norm(axis) + 1e-18)

    Ja = np.zeros(6, dtype=np.float64)
    Ja[3:6] = axis if R_a is None else R_a.T @ axis
    Jb = None
    if b is not None:
        _require_body(b)
        Jb = np.zeros(6, dtype=np.float64)
        Jb[3:6] = -(axis if R_b is None else R_b.T @ axis)
    return ConstraintRow.boxed(-max_impulse, max_impulse, a, Ja, b, Jb, rhs=-float(target_speed), key=key)
