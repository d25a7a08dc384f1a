"""Constraint rows: scalar couplings between one or two Variable Blocks.

Sign convention: reactions enter the velocities as v = v_free + M^-1 J^T l
and the velocity-level residual of a row is

    c = J v + rhs + compliance * l

EQUALITY rows want c == 0 with a free multiplier. UNILATERAL rows (contact
normals) want l >= 0, c >= 0, l * c == 0. FRICTION rows clamp l to
[-mu * ln, mu * ln] where ln is the current multiplier of their normal row.
BOXED rows clamp l to a fixed [lo, hi] (motor limits and similar).
"""

from __future__ import annotations

import enum
import logging
import math

import numpy as np

from .errors import ConfigurationError
from .variables import VariableBlock

logger = logging.getLogger(__name__)

INF = math.inf


class RowKind(enum.Enum):
    EQUALITY = "equality"
    UNILATERAL = "unilateral"
    FRICTION = "friction"
    BOXED = "boxed"


class JacobianSegment:
    """Jacobian entries of a row for one referenced Variable Block."""

    __slots__ = ("variables", "jacobian", "inv_mass_jt")

    def __init__(self, variables: VariableBlock, jacobian):
        J = np.asarray(jacobian, dtype=np.float64).ravel()
        if J.size != variables.dof:
            raise ConfigurationError(
                f"[mbsolver.constraints] Jacobian segment has {J.size} entries, block has {variables.dof} DOF"
            )
        self.variables = variables
        self.jacobian = J
        # M^-1 J^T, refreshed by ConstraintRow.update_auxiliary
        self.inv_mass_jt = np.zeros_like(J)

    @property
    def enabled(self) -> bool:
        return not self.variables.disabled

    def span(self) -> slice:
        off = self.variables.offset
        return slice(off, off + self.jacobian.size)


class ConstraintRow:
    def __init__(
        self,
        kind: RowKind,
        segments: list[JacobianSegment],
        rhs: float = 0.0,
        compliance: float = 0.0,
        lo: float = -INF,
        hi: float = INF,
        normal: "ConstraintRow | None" = None,
        friction: float = 0.0,
        key=None,
        name: str | None = None,
    ):
        if not 1 <= len(segments) <= 2:
            raise ConfigurationError("[mbsolver.constraints] a row references one or two Variable Blocks")
        if len(segments) == 2 and segments[0].variables is segments[1].variables:
            raise ConfigurationError("[mbsolver.constraints] both segments reference the same Variable Block")
        if compliance < 0.0:
            raise ConfigurationError(f"[mbsolver.constraints] compliance must be >= 0, got {compliance!r}")

        self.kind = kind
        self.segments = list(segments)
        self.rhs = float(rhs)
        self.compliance = float(compliance)
        self.key = key
        self.name = name

        self.multiplier: float = 0.0
        self.residual: float = 0.0
        self.g: float = 0.0
        self.disabled: bool = False
        self.redundant: bool = False

        self._lo = -INF
        self._hi = INF
        self.normal: ConstraintRow | None = None
        self.friction: float = 0.0

        if kind is RowKind.UNILATERAL:
            self._lo, self._hi = 0.0, INF
        elif kind is RowKind.BOXED:
            if not lo <= hi:
                raise ConfigurationError(f"[mbsolver.constraints] boxed row needs lo <= hi, got [{lo!r}, {hi!r}]")
            self._lo, self._hi = float(lo), float(hi)
        elif kind is RowKind.FRICTION:
            if normal is None or normal.kind is not RowKind.UNILATERAL:
                raise ConfigurationError("[mbsolver.constraints] friction row needs a UNILATERAL normal row")
            if friction < 0.0:
                raise ConfigurationError(f"[mbsolver.constraints] friction coefficient must be >= 0, got {friction!r}")
            self.normal = normal
            self.friction = float(friction)

    # -----------------------------
    # constructors
    # -----------------------------
    @staticmethod
    def _segments(a, Ja, b=None, Jb=None) -> list[JacobianSegment]:
        segs = [JacobianSegment(a, Ja)]
        if b is not None:
            if Jb is None:
                raise ConfigurationError("[mbsolver.constraints] second block given without its Jacobian")
            segs.append(JacobianSegment(b, Jb))
        return segs

    @classmethod
    def equality(cls, a, Ja, b=None, Jb=None, rhs=0.0, compliance=0.0, key=None, name=None) -> "ConstraintRow":
        return cls(RowKind.EQUALITY, cls._segments(a, Ja, b, Jb), rhs=rhs, compliance=compliance, key=key, name=name)

    @classmethod
    def unilateral(cls, a, Ja, b=None, Jb=None, rhs=0.0, compliance=0.0, key=None, name=None) -> "ConstraintRow":
        return cls(RowKind.UNILATERAL, cls._segments(a, Ja, b, Jb), rhs=rhs, compliance=compliance, key=key, name=name)

    @classmethod
    def friction_row(cls, normal, mu, a, Ja, b=None, Jb=None, key=None, name=None) -> "ConstraintRow":
        return cls(RowKind.FRICTION, cls._segments(a, Ja, b, Jb), normal=normal, friction=mu, key=key, name=name)

    @classmethod
    def boxed(cls, lo, hi, a, Ja, b=None, Jb=None, rhs=0.0, compliance=0.0, key=None, name=None) -> "ConstraintRow":
        return cls(RowKind.BOXED, cls._segments(a, Ja, b, Jb), rhs=rhs, compliance=compliance, lo=lo, hi=hi, key=key, name=name)

    # -----------------------------
    # structure
    # -----------------------------
    @property
    def variables(self) -> list[VariableBlock]:
        return [s.variables for s in self.segments]

    @property
    def is_active(self) -> bool:
        if self.disabled or self.redundant:
            return False
        return any(s.enabled for s in self.segments)

    # -----------------------------
    # bounds / projection
    # -----------------------------
    def bounds(self) -> tuple[float, float]:
        """Admissible interval of the multiplier (friction: from the normal row, now)."""
        if self.kind is RowKind.FRICTION:
            limit = self.friction * max(self.normal.multiplier, 0.0)
            return -limit, limit
        return self._lo, self._hi

    def residual_bounds(self) -> tuple[float, float]:
        """Admissible interval of the residual c when the multiplier is interior."""
        if self.kind is RowKind.EQUALITY:
            return 0.0, 0.0
        if self.kind is RowKind.UNILATERAL:
            return 0.0, INF
        return -INF, INF

    def project(self, multiplier: float) -> float:
        lo, hi = self.bounds()
        return min(max(float(multiplier), lo), hi)

    # -----------------------------
    # matrix-free operators
    # -----------------------------
    def compute_jacobian_times(self, velocities) -> float:
        """J v using the current offsets of the referenced (enabled) blocks."""
        out = 0.0
        for s in self.segments:
            if s.enabled:
                out += float(s.jacobian @ velocities[s.span()])
        return out

    def compute_jacobian_transpose_times(self, multiplier: float, result: np.ndarray) -> None:
        """result[block] += J_block^T * multiplier"""
        for s in self.segments:
            if s.enabled:
                result[s.span()] += s.jacobian * multiplier

    def update_auxiliary(self) -> float:
        """Cache M^-1 J^T per segment and g = J M^-1 J^T + compliance."""
        g = self.compliance
        for s in self.segments:
            if s.enabled:
                s.inv_mass_jt = s.variables.apply_inverse_mass(s.jacobian)
                g += float(s.jacobian @ s.inv_mass_jt)
            else:
                s.inv_mass_jt = np.zeros_like(s.jacobian)
        self.g = g
        return g

    def increment_velocities(self, delta: float, velocities: np.ndarray) -> None:
        """velocities[block] += M^-1 J^T * delta (needs update_auxiliary)."""
        for s in self.segments:
            if s.enabled:
                velocities[s.span()] += s.inv_mass_jt * delta

    def compute_residual(self, velocities) -> float:
        self.residual = self.compute_jacobian_times(velocities) + self.rhs + self.compliance * self.multiplier
        return self.residual

    def __repr__(self) -> str:
        names = [v.name or hex(id(v)) for v in self.variables]
        return f"ConstraintRow({self.kind.value}, vars={names}, l={self.multiplier:.6g}, key={self.key!r})"
