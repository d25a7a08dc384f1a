"""Variable blocks: the velocity unknowns of one coordinate group.

A block wraps a mass source (a dedicated `BodyMass`, a handle into a
`SharedMassPool`, or a `GenericMass`) and owns a slice
`[offset, offset + dof)` of the global unknown vector. The offset is
assigned by `SystemDescriptor.update_offsets` and is -1 while the block is
not part of an assembled system (or is disabled).

All global-vector operators are no-ops for disabled blocks.
"""

from __future__ import annotations

import enum
import logging

import numpy as np

from .errors import ConfigurationError, DanglingReferenceError
from .mass import BodyMass, GenericMass, MassHandle, SharedMassPool
from .sparse import add_entry

logger = logging.getLogger(__name__)


class VariableKind(enum.Enum):
    BODY_OWN = "body_own"
    BODY_SHARED = "body_shared"
    GENERIC = "generic"


class VariableBlock:
    def __init__(
        self,
        kind: VariableKind,
        mass: BodyMass | GenericMass | None = None,
        pool: SharedMassPool | None = None,
        handle: MassHandle | None = None,
        name: str | None = None,
    ):
        self.kind = kind
        self.name = name
        self.offset: int = -1
        self.disabled: bool = False

        self._own_mass = None
        self._pool = None
        self._handle = None

        if kind is VariableKind.BODY_SHARED:
            if pool is None or handle is None:
                raise ConfigurationError("[mbsolver.variables] shared body block needs a pool and a handle")
            pool.acquire(handle)
            self._pool = pool
            self._handle = handle
        elif kind is VariableKind.BODY_OWN:
            self._own_mass = mass if mass is not None else BodyMass()
            if not isinstance(self._own_mass, BodyMass):
                raise ConfigurationError("[mbsolver.variables] BODY_OWN block needs a BodyMass")
        elif kind is VariableKind.GENERIC:
            if not isinstance(mass, GenericMass):
                raise ConfigurationError("[mbsolver.variables] GENERIC block needs a GenericMass")
            self._own_mass = mass
        else:
            raise ConfigurationError(f"[mbsolver.variables] unknown kind {kind!r}")

        self.force = np.zeros(self.dof, dtype=np.float64)
        self.velocity = np.zeros(self.dof, dtype=np.float64)

    # -----------------------------
    # constructors
    # -----------------------------
    @classmethod
    def body(cls, mass: float = 1.0, inertia=None, name: str | None = None) -> "VariableBlock":
        return cls(VariableKind.BODY_OWN, mass=BodyMass(mass, inertia), name=name)

    @classmethod
    def shared(cls, pool: SharedMassPool, handle: MassHandle, name: str | None = None) -> "VariableBlock":
        return cls(VariableKind.BODY_SHARED, pool=pool, handle=handle, name=name)

    @classmethod
    def generic(cls, matrix_or_diagonal, name: str | None = None) -> "VariableBlock":
        return cls(VariableKind.GENERIC, mass=GenericMass(matrix_or_diagonal), name=name)

    # -----------------------------
    # mass source
    # -----------------------------
    @property
    def mass_block(self) -> BodyMass | GenericMass:
        if self._pool is not None:
            return self._pool.get(self._handle)
        return self._own_mass

    @property
    def handle(self) -> MassHandle | None:
        return self._handle

    @property
    def is_shared(self) -> bool:
        return self._pool is not None

    def set_shared_mass(self, pool: SharedMassPool, handle: MassHandle) -> None:
        if self.kind is not VariableKind.BODY_SHARED:
            raise ConfigurationError("[mbsolver.variables] only BODY_SHARED blocks can be re-pointed")
        pool.acquire(handle)
        self._pool.release(self._handle)
        self._pool = pool
        self._handle = handle

    def release(self) -> None:
        """Drop the pool reference (call when the owning entity goes away)."""
        if self._pool is not None:
            self._pool.release(self._handle)

    @property
    def dof(self) -> int:
        return int(self.mass_block.dof)

    @property
    def is_active(self) -> bool:
        return not self.disabled

    def _slice(self) -> slice:
        if self.offset < 0:
            raise DanglingReferenceError(
                f"[mbsolver.variables] block {self.name or id(self)} is not part of an assembled system"
            )
        return slice(self.offset, self.offset + self.dof)

    # -----------------------------
    # local operators
    # -----------------------------
    def apply_inverse_mass(self, v) -> np.ndarray:
        return self.mass_block.apply_inverse_mass(v)

    def apply_mass(self, v) -> np.ndarray:
        return self.mass_block.apply_mass(v)

    # -----------------------------
    # global-vector operators
    # -----------------------------
    def compute_inverse_mass_times(self, vect) -> np.ndarray:
        """M^-1 * vect[offset:offset+dof]; sized to this block's DOF."""
        if self.disabled:
            return np.zeros(self.dof, dtype=np.float64)
        return self.mass_block.apply_inverse_mass(np.asarray(vect, dtype=np.float64)[self._slice()])

    def accumulate_mass_times(self, vect, scale: float, result: np.ndarray) -> None:
        """result[offset:offset+dof] += scale * M * vect[offset:offset+dof]"""
        if self.disabled:
            return
        s = self._slice()
        result[s] += scale * self.mass_block.apply_mass(np.asarray(vect, dtype=np.float64)[s])

    def accumulate_inverse_mass_times(self, vect, scale: float, result: np.ndarray) -> None:
        if self.disabled:
            return
        s = self._slice()
        result[s] += scale * self.mass_block.apply_inverse_mass(np.asarray(vect, dtype=np.float64)[s])

    def write_mass_into_sparse_matrix(self, storage, row_offset: int, col_offset: int, scale: float) -> None:
        """Paste scale * M at (offset + row_offset, offset + col_offset)."""
        if self.disabled:
            return
        base = self._slice().start
        M = self.mass_block.matrix()
        rows, cols = np.nonzero(M)
        for i, j in zip(rows, cols):
            add_entry(storage, base + row_offset + int(i), base + col_offset + int(j), scale * float(M[i, j]))

    def write_diagonal_into(self, result: np.ndarray, scale: float) -> None:
        if self.disabled:
            return
        result[self._slice()] += scale * self.mass_block.diagonal()

    def __repr__(self) -> str:
        return f"VariableBlock({self.kind.value}, name={self.name!r}, dof={self.dof}, offset={self.offset}, disabled={self.disabled})"
