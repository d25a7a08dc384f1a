"""System descriptor: the assembled set of Variable Blocks and Constraint Rows.

The descriptor assigns offsets (insertion order, full re-traversal every
time), validates that every row only references blocks it holds, and
exposes the coupled system two ways:

- matrix-free (`mass_times`, `inverse_mass_times`, `jacobian_times`,
  `jacobian_transpose_times`, `schur_times`), which is what the iterative
  solvers use;
- scipy sparse matrices (`build_*`), for diagnostics and direct solves.
"""

from __future__ import annotations

import logging

import numpy as np
import scipy as sp
import scipy.sparse

from .constraints import ConstraintRow, RowKind
from .errors import ConfigurationError, DanglingReferenceError
from .math3d import body_mass_inv_6x6
from .sparse import TripletStorage
from .variables import VariableBlock, VariableKind

logger = logging.getLogger(__name__)


class SystemDescriptor:
    def __init__(self):
        self._variables: list[VariableBlock] = []
        self._constraints: list[ConstraintRow] = []
        self._active_vars: list[VariableBlock] = []
        self._active_rows: list[ConstraintRow] = []
        self._row_index: dict[int, int] = {}
        self.n_dof: int = 0
        self.n_constraints: int = 0
        self._assembled = False

    # -----------------------------
    # membership
    # -----------------------------
    def insert_variables(self, block: VariableBlock) -> VariableBlock:
        if any(v is block for v in self._variables):
            raise ConfigurationError(f"[mbsolver.descriptor] {block!r} already inserted")
        self._variables.append(block)
        self._assembled = False
        return block

    def remove_variables(self, block: VariableBlock) -> None:
        self._variables = [v for v in self._variables if v is not block]
        block.offset = -1
        self._assembled = False

    def insert_constraint(self, row: ConstraintRow) -> ConstraintRow:
        if any(r is row for r in self._constraints):
            raise ConfigurationError(f"[mbsolver.descriptor] {row!r} already inserted")
        self._constraints.append(row)
        self._assembled = False
        return row

    def insert_constraints(self, rows) -> None:
        for row in rows:
            self.insert_constraint(row)

    def remove_constraint(self, row: ConstraintRow) -> None:
        self._constraints = [r for r in self._constraints if r is not row]
        self._assembled = False

    def clear_constraints(self) -> None:
        self._constraints = []
        self._assembled = False

    @property
    def variables(self) -> tuple[VariableBlock, ...]:
        return tuple(self._variables)

    @property
    def constraints(self) -> tuple[ConstraintRow, ...]:
        return tuple(self._constraints)

    @property
    def active_variables(self) -> list[VariableBlock]:
        self._require_assembled()
        return list(self._active_vars)

    @property
    def active_constraints(self) -> list[ConstraintRow]:
        self._require_assembled()
        return list(self._active_rows)

    @property
    def is_assembled(self) -> bool:
        return self._assembled

    # -----------------------------
    # assembly
    # -----------------------------
    def update_offsets(self) -> int:
        """Contiguous offsets for enabled blocks in insertion order; -1 for the rest."""
        n = 0
        self._active_vars = []
        for v in self._variables:
            if v.disabled:
                v.offset = -1
                continue
            v.offset = n
            n += v.dof
            self._active_vars.append(v)
        self.n_dof = n
        return n

    def validate(self) -> None:
        held = {id(v) for v in self._variables}
        rows = {id(r) for r in self._constraints}
        for row in self._constraints:
            for v in row.variables:
                if id(v) not in held:
                    raise DanglingReferenceError(
                        f"[mbsolver.descriptor] {row!r} references {v!r}, which is not in this system"
                    )
            if row.kind is RowKind.FRICTION and id(row.normal) not in rows:
                raise DanglingReferenceError(
                    f"[mbsolver.descriptor] friction {row!r} refers to a normal row that is not in this system"
                )

    def assemble(self) -> "SystemDescriptor":
        """Validate, assign offsets and refresh every active row's cached M^-1 J^T."""
        self.validate()
        self.update_offsets()
        self._active_rows = [r for r in self._constraints if r.is_active]
        self._row_index = {id(r): i for i, r in enumerate(self._active_rows)}
        for row in self._active_rows:
            row.update_auxiliary()
        self.n_constraints = len(self._active_rows)
        self._assembled = True
        logger.debug(
            "assembled %d/%d variable blocks (%d dof), %d/%d rows",
            len(self._active_vars), len(self._variables), self.n_dof,
            self.n_constraints, len(self._constraints),
        )
        return self

    def _require_assembled(self) -> None:
        if not self._assembled:
            raise ConfigurationError("[mbsolver.descriptor] call assemble() after changing the system")

    def row_index(self, row: ConstraintRow) -> int:
        self._require_assembled()
        return self._row_index[id(row)]

    # -----------------------------
    # matrix-free view
    # -----------------------------
    def mass_times(self, v) -> np.ndarray:
        self._require_assembled()
        out = np.zeros(self.n_dof, dtype=np.float64)
        for blk in self._active_vars:
            blk.accumulate_mass_times(v, 1.0, out)
        return out

    def inverse_mass_times(self, v) -> np.ndarray:
        self._require_assembled()
        out = np.zeros(self.n_dof, dtype=np.float64)
        for blk in self._active_vars:
            blk.accumulate_inverse_mass_times(v, 1.0, out)
        return out

    def mass_diagonal(self) -> np.ndarray:
        self._require_assembled()
        out = np.zeros(self.n_dof, dtype=np.float64)
        for blk in self._active_vars:
            blk.write_diagonal_into(out, 1.0)
        return out

    def jacobian_times(self, v) -> np.ndarray:
        self._require_assembled()
        v = np.asarray(v, dtype=np.float64)
        return np.array([r.compute_jacobian_times(v) for r in self._active_rows], dtype=np.float64)

    def jacobian_transpose_times(self, lam, result: np.ndarray | None = None) -> np.ndarray:
        self._require_assembled()
        if result is None:
            result = np.zeros(self.n_dof, dtype=np.float64)
        for r, l in zip(self._active_rows, np.asarray(lam, dtype=np.float64)):
            r.compute_jacobian_transpose_times(float(l), result)
        return result

    def schur_times(self, lam) -> np.ndarray:
        """(J M^-1 J^T + E) lam, never materialised."""
        lam = np.asarray(lam, dtype=np.float64)
        return self.jacobian_times(self.inverse_mass_times(self.jacobian_transpose_times(lam))) + self.compliances() * lam

    # -----------------------------
    # vector packing
    # -----------------------------
    def free_velocity(self) -> np.ndarray:
        """M^-1 f from every active block's force accumulator."""
        self._require_assembled()
        out = np.zeros(self.n_dof, dtype=np.float64)
        for blk in self._active_vars:
            out[blk.offset:blk.offset + blk.dof] = blk.apply_inverse_mass(blk.force)
        return out

    def scatter_velocities(self, v) -> None:
        self._require_assembled()
        for blk in self._active_vars:
            blk.velocity = np.array(v[blk.offset:blk.offset + blk.dof], dtype=np.float64)

    def gather_velocities(self) -> np.ndarray:
        self._require_assembled()
        out = np.zeros(self.n_dof, dtype=np.float64)
        for blk in self._active_vars:
            out[blk.offset:blk.offset + blk.dof] = blk.velocity
        return out

    def multipliers(self) -> np.ndarray:
        self._require_assembled()
        return np.array([r.multiplier for r in self._active_rows], dtype=np.float64)

    def set_multipliers(self, lam) -> None:
        self._require_assembled()
        lam = np.asarray(lam, dtype=np.float64)
        if lam.shape != (self.n_constraints,):
            raise ConfigurationError(
                f"[mbsolver.descriptor] expected {self.n_constraints} multipliers, got shape {lam.shape}"
            )
        for r, l in zip(self._active_rows, lam):
            r.multiplier = float(l)

    def rhs(self) -> np.ndarray:
        self._require_assembled()
        return np.array([r.rhs for r in self._active_rows], dtype=np.float64)

    def compliances(self) -> np.ndarray:
        self._require_assembled()
        return np.array([r.compliance for r in self._active_rows], dtype=np.float64)

    def bounds_arrays(self) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """(lo, hi, normal_index, mu) for the vectorised projection kernel.

        Friction rows get normal_index >= 0 (index of their normal row among
        the active rows) and their lo/hi are left unbounded.
        """
        self._require_assembled()
        m = self.n_constraints
        lo = np.full(m, -np.inf)
        hi = np.full(m, np.inf)
        normal_index = np.full(m, -1, dtype=np.int64)
        mu = np.zeros(m)
        for i, r in enumerate(self._active_rows):
            if r.kind is RowKind.FRICTION:
                j = self._row_index.get(id(r.normal), -1)
                if j < 0:
                    # inactive normal row: no normal force, friction box collapses
                    lo[i], hi[i] = 0.0, 0.0
                    continue
                normal_index[i] = j
                mu[i] = r.friction
            elif r.kind is not RowKind.EQUALITY:
                lo[i], hi[i] = r.bounds()
        return lo, hi, normal_index, mu

    # -----------------------------
    # sparse view
    # -----------------------------
    def build_mass_matrix(self, scale: float = 1.0) -> sp.sparse.csr_matrix:
        self._require_assembled()
        storage = TripletStorage((self.n_dof, self.n_dof))
        for blk in self._active_vars:
            blk.write_mass_into_sparse_matrix(storage, 0, 0, scale)
        return storage.tocsr()

    def build_inverse_mass_matrix(self) -> sp.sparse.csr_matrix:
        self._require_assembled()
        storage = TripletStorage((self.n_dof, self.n_dof))
        for blk in self._active_vars:
            mb = blk.mass_block
            if blk.kind is VariableKind.GENERIC:
                Minv = mb.inv_matrix
            else:
                Minv = np.asarray(body_mass_inv_6x6(mb.inv_mass, mb.inv_inertia))
            rows, cols = np.nonzero(Minv)
            for i, j in zip(rows, cols):
                storage.add(blk.offset + int(i), blk.offset + int(j), float(Minv[i, j]))
        return storage.tocsr()

    def build_jacobian_matrix(self) -> sp.sparse.csr_matrix:
        self._require_assembled()
        storage = TripletStorage((self.n_constraints, self.n_dof))
        for i, r in enumerate(self._active_rows):
            for s in r.segments:
                if not s.enabled:
                    continue
                for k in np.nonzero(s.jacobian)[0]:
                    storage.add(i, s.variables.offset + int(k), float(s.jacobian[k]))
        return storage.tocsr()

    def build_compliance_matrix(self) -> sp.sparse.csr_matrix:
        self._require_assembled()
        if self.n_constraints == 0:
            return sp.sparse.csr_matrix((0, 0), dtype=np.float64)
        return sp.sparse.diags(self.compliances(), format="csr", shape=(self.n_constraints, self.n_constraints))

    def build_system_matrix(self) -> sp.sparse.csr_matrix:
        """Saddle-point matrix [[M, -J^T], [J, E]] of size (n_dof + m)."""
        M = self.build_mass_matrix()
        J = self.build_jacobian_matrix()
        E = self.build_compliance_matrix()
        return sp.sparse.bmat([[M, -J.T], [J, E]], format="csr")

    # -----------------------------
    # colouring for parallel-safe sweeps
    # -----------------------------
    def row_colors(self) -> list[list[ConstraintRow]]:
        """Greedy colouring: rows in one colour share no enabled Variable Block.

        A friction row and its normal row never share a colour either, since
        the friction bound reads the normal multiplier.
        """
        self._require_assembled()
        colors: list[list[ConstraintRow]] = []
        used_blocks: list[set[int]] = []
        used_rows: list[set[int]] = []
        for r in self._active_rows:
            blocks = {id(s.variables) for s in r.segments if s.enabled}
            linked = {id(r.normal)} if r.kind is RowKind.FRICTION else set()
            for c in range(len(colors)):
                if used_blocks[c].isdisjoint(blocks) and used_rows[c].isdisjoint(linked) and not any(
                    x.kind is RowKind.FRICTION and x.normal is r for x in colors[c]
                ):
                    colors[c].append(r)
                    used_blocks[c] |= blocks
                    used_rows[c].add(id(r))
                    break
            else:
                colors.append([r])
                used_blocks.append(set(blocks))
                used_rows.append({id(r)})
        return colors
