"""Carry multipliers across steps for rows that are rebuilt every step.

Joint rows usually persist and keep their `multiplier` on their own.
Contact rows are recreated by collision detection each step; when they carry
a stable `key` (for example (body_a, body_b, feature_id, "n")) the cache
seeds the new rows with last step's values.
"""

from __future__ import annotations

import logging

from .constraints import RowKind

logger = logging.getLogger(__name__)


class MultiplierCache:
    def __init__(self, decay: float = 1.0, friction_decay: float | None = None):
        # scaling applied when seeding, friction rows may use a stronger one
        self.decay = float(decay)
        self.friction_decay = self.decay if friction_decay is None else float(friction_decay)
        self._values: dict = {}

    def store(self, rows) -> int:
        """Remember the multipliers of every keyed row; returns how many were stored."""
        self._values = {}
        for r in rows:
            if r.key is not None:
                self._values[r.key] = float(r.multiplier)
        return len(self._values)

    def apply(self, rows) -> int:
        """Seed keyed rows from the cache, zero the rest; returns the number of hits."""
        hits = 0
        for r in rows:
            value = self._values.get(r.key) if r.key is not None else None
            if value is None:
                r.multiplier = 0.0
                continue
            scale = self.friction_decay if r.kind is RowKind.FRICTION else self.decay
            r.multiplier = scale * value
            hits += 1
        logger.debug("warm start: %d rows seeded", hits)
        return hits

    def get(self, key, default: float | None = None) -> float | None:
        return self._values.get(key, default)

    def clear(self) -> None:
        self._values = {}

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key) -> bool:
        return key in self._values
