"""Mass blocks: inertial properties of one coordinate group.

`BodyMass` is the rigid-body case (scalar mass for the three translational
DOFs, 3x3 inertia for the three rotational DOFs). `GenericMass` is an
n-DOF block given as a positive diagonal or a dense SPD matrix.

`SharedMassPool` owns `BodyMass` entries that many Variable Blocks reference
through a `MassHandle`. Mutating a pooled entry changes the effective mass of
every block that references it. That is what the pool is for (populations of
identical parts), so callers must treat pooled entries as shared state.
"""

from __future__ import annotations

import logging
import math
from typing import NamedTuple

import numpy as np

from .errors import DanglingReferenceError, InvalidInertiaError, InvalidMassError
from .math3d import is_symmetric_positive_definite

logger = logging.getLogger(__name__)


def _check_mass(m) -> float:
    m = float(m)
    if not math.isfinite(m) or m <= 0.0:
        raise InvalidMassError(f"[mbsolver.mass] mass must be positive and finite, got {m!r}")
    return m


class BodyMass:
    """Mass and inertia of a rigid body, with cached inverses."""

    dof = 6

    def __init__(self, mass: float = 1.0, inertia=None):
        self._mass = 1.0
        self._inv_mass = 1.0
        self._inertia = np.eye(3, dtype=np.float64)
        self._inv_inertia = np.eye(3, dtype=np.float64)
        self.set_mass(mass)
        if inertia is not None:
            self.set_inertia(inertia)

    # -----------------------------
    # setters (recompute inverses)
    # -----------------------------
    def set_mass(self, m: float) -> None:
        m = _check_mass(m)
        self._mass = m
        self._inv_mass = 1.0 / m

    def set_inertia(self, inertia) -> None:
        I = np.asarray(inertia, dtype=np.float64)
        if I.shape == (3,):
            I = np.diag(I)
        if I.shape != (3, 3) or not is_symmetric_positive_definite(I):
            raise InvalidInertiaError(
                f"[mbsolver.mass] inertia must be a symmetric positive-definite 3x3 matrix, got {I.tolist()!r}"
            )
        I = 0.5 * (I + I.T)
        self._inertia = I
        self._inv_inertia = np.linalg.inv(I)

    # -----------------------------
    # read access
    # -----------------------------
    @property
    def mass(self) -> float:
        return self._mass

    @property
    def inv_mass(self) -> float:
        return self._inv_mass

    @property
    def inertia(self) -> np.ndarray:
        return self._inertia.copy()

    @property
    def inv_inertia(self) -> np.ndarray:
        return self._inv_inertia.copy()

    # -----------------------------
    # operators
    # -----------------------------
    def apply_inverse_mass(self, v) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        w = np.empty(6, dtype=np.float64)
        w[0:3] = self._inv_mass * v[0:3]
        w[3:6] = self._inv_inertia @ v[3:6]
        return w

    def apply_mass(self, v) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        w = np.empty(6, dtype=np.float64)
        w[0:3] = self._mass * v[0:3]
        w[3:6] = self._inertia @ v[3:6]
        return w

    def matrix(self) -> np.ndarray:
        M = np.zeros((6, 6), dtype=np.float64)
        M[0:3, 0:3] = self._mass * np.eye(3)
        M[3:6, 3:6] = self._inertia
        return M

    def diagonal(self) -> np.ndarray:
        return np.concatenate([np.full(3, self._mass), np.diag(self._inertia)])

    def __repr__(self) -> str:
        return f"BodyMass(mass={self._mass!r}, inertia_diag={np.diag(self._inertia).tolist()!r})"


class GenericMass:
    """n-DOF mass block, diagonal or dense SPD."""

    def __init__(self, matrix_or_diagonal):
        self.set_matrix(matrix_or_diagonal)

    def set_matrix(self, matrix_or_diagonal) -> None:
        M = np.asarray(matrix_or_diagonal, dtype=np.float64)
        if M.ndim == 1:
            if M.size == 0 or not np.all(np.isfinite(M)) or np.any(M <= 0.0):
                raise InvalidMassError(f"[mbsolver.mass] diagonal mass entries must be positive, got {M.tolist()!r}")
            self._diag_only = True
            self._matrix = np.diag(M)
            self._inv_matrix = np.diag(1.0 / M)
        elif M.ndim == 2:
            if M.size == 0 or not is_symmetric_positive_definite(M):
                raise InvalidMassError("[mbsolver.mass] dense mass block must be symmetric positive-definite")
            self._diag_only = False
            self._matrix = 0.5 * (M + M.T)
            L = np.linalg.cholesky(self._matrix)
            Linv = np.linalg.inv(L)
            self._inv_matrix = Linv.T @ Linv
        else:
            raise InvalidMassError(f"[mbsolver.mass] expected a vector or a square matrix, got ndim={M.ndim}")
        self.dof = int(self._matrix.shape[0])

    @property
    def is_diagonal(self) -> bool:
        return self._diag_only

    @property
    def inv_matrix(self) -> np.ndarray:
        return self._inv_matrix.copy()

    def apply_inverse_mass(self, v) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        if self._diag_only:
            return np.diag(self._inv_matrix) * v
        return self._inv_matrix @ v

    def apply_mass(self, v) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        if self._diag_only:
            return np.diag(self._matrix) * v
        return self._matrix @ v

    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    def diagonal(self) -> np.ndarray:
        return np.diag(self._matrix).copy()


class MassHandle(NamedTuple):
    pool_id: int
    index: int


class SharedMassPool:
    """Arena of shared `BodyMass` entries, addressed by `MassHandle`.

    The pool must outlive every Variable Block holding one of its handles.
    """

    def __init__(self):
        self._entries: list[BodyMass] = []
        self._refs: list[int] = []

    def create(self, mass: float = 1.0, inertia=None) -> MassHandle:
        self._entries.append(BodyMass(mass, inertia))
        self._refs.append(0)
        handle = MassHandle(id(self), len(self._entries) - 1)
        logger.debug("shared mass #%d created (mass=%g)", handle.index, float(mass))
        return handle

    def _check(self, handle: MassHandle) -> None:
        if handle.pool_id != id(self) or not (0 <= handle.index < len(self._entries)):
            raise DanglingReferenceError(f"[mbsolver.mass] handle {handle!r} does not belong to this pool")

    def get(self, handle: MassHandle) -> BodyMass:
        self._check(handle)
        return self._entries[handle.index]

    def acquire(self, handle: MassHandle) -> BodyMass:
        self._check(handle)
        self._refs[handle.index] += 1
        return self._entries[handle.index]

    def release(self, handle: MassHandle) -> None:
        self._check(handle)
        if self._refs[handle.index] > 0:
            self._refs[handle.index] -= 1

    def reference_count(self, handle: MassHandle) -> int:
        self._check(handle)
        return self._refs[handle.index]

    def handles(self) -> list[MassHandle]:
        return [MassHandle(id(self), i) for i in range(len(self._entries))]

    def __len__(self) -> int:
        return len(self._entries)
