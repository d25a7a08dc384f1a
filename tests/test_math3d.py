import numpy as np
import pytest

from mbsolver import ConstraintRow, VariableBlock
from mbsolver.math3d import (
    body_mass_inv_6x6,
    is_symmetric_positive_definite,
    point_jacobian_row_np,
    project_multipliers,
    quat_to_R_np_wxyz,
    tangent_basis_np,
)


@pytest.mark.parametrize("normal", [(0, 0, 1), (1, 0, 0), (0.3, -0.4, 0.866), (-1, -1, 0)])
def test_tangent_basis_is_right_handed_orthonormal(normal):
    n = np.asarray(normal, dtype=np.float64)
    n = n / np.linalg.norm(n)
    t1, t2 = tangent_basis_np(n)
    B = np.stack([n, t1, t2])
    np.testing.assert_allclose(B @ B.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(B) == pytest.approx(1.0)


def test_point_jacobian_row_matches_point_velocity():
    r = np.array([0.2, -0.1, 0.5])
    d = np.array([0.0, 1.0, 0.0])
    v, w = np.array([1.0, 2.0, 3.0]), np.array([0.5, -0.5, 0.25])
    row = point_jacobian_row_np(r, d)
    assert row @ np.concatenate([v, w]) == pytest.approx(d @ (v + np.cross(w, r)))


def test_quaternion_rotation_is_orthonormal():
    q = np.array([0.9, 0.1, -0.3, 0.2])
    R = quat_to_R_np_wxyz(q / np.linalg.norm(q))
    np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
    np.testing.assert_allclose(quat_to_R_np_wxyz([1, 0, 0, 0]), np.eye(3))


def test_spd_check():
    assert is_symmetric_positive_definite(np.diag([1.0, 2.0, 3.0]))
    assert not is_symmetric_positive_definite(np.diag([1.0, 0.0, 3.0]))
    assert not is_symmetric_positive_definite(np.array([[1.0, 2.0], [0.0, 1.0]]))
    assert not is_symmetric_positive_definite(np.full((2, 2), np.nan))


def test_body_mass_inverse_kernel():
    Minv = np.asarray(body_mass_inv_6x6(0.5, np.diag([1.0, 0.5, 0.25])))
    np.testing.assert_allclose(np.diag(Minv), [0.5, 0.5, 0.5, 1.0, 0.5, 0.25])
    assert Minv.dtype == np.float64


def test_vectorised_projection_matches_row_projection():
    a = VariableBlock.generic([1.0, 1.0])
    n = ConstraintRow.unilateral(a, [0.0, 1.0])
    rows = [
        ConstraintRow.equality(a, [1.0, 0.0]),
        n,
        ConstraintRow.friction_row(n, 0.25, a, [1.0, 0.0]),
        ConstraintRow.boxed(-1.0, 0.5, a, [1.0, 1.0]),
    ]
    lo = np.array([-np.inf, 0.0, -np.inf, -1.0])
    hi = np.array([np.inf, np.inf, np.inf, 0.5])
    normal_index = np.array([-1, -1, 1, -1])
    mu = np.array([0.0, 0.0, 0.25, 0.0])

    for lam in ([3.0, 2.0, 1.0, -4.0], [-3.0, -2.0, 0.1, 0.2], [0.0, 4.0, -5.0, 9.0]):
        lam = np.asarray(lam)
        out = np.asarray(project_multipliers(lam, lo, hi, normal_index, mu))
        # the kernel uses the projected normal, the row projection reads the current multiplier
        n.multiplier = float(np.clip(lam[1], 0.0, np.inf))
        expected = [r.project(x) for r, x in zip(rows, lam)]
        np.testing.assert_allclose(out, expected)
