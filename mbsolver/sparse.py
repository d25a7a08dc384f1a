from __future__ import annotations

import numpy as np
import scipy as sp
import scipy.sparse


class TripletStorage:
    """Row-major triplet (COO) accumulator for assembling global matrices.

    Duplicate (row, col) entries are summed when converting to CSR.
    """

    def __init__(self, shape: tuple[int, int] | None = None):
        self.shape = shape
        self._rows: list[int] = []
        self._cols: list[int] = []
        self._data: list[float] = []

    def add(self, row: int, col: int, value: float) -> None:
        self._rows.append(int(row))
        self._cols.append(int(col))
        self._data.append(float(value))

    def __len__(self) -> int:
        return len(self._data)

    def tocoo(self, shape: tuple[int, int] | None = None) -> sp.sparse.coo_matrix:
        shape = shape if shape is not None else self.shape
        if shape is None:
            nr = (max(self._rows) + 1) if self._rows else 0
            nc = (max(self._cols) + 1) if self._cols else 0
            shape = (nr, nc)
        return sp.sparse.coo_matrix(
            (
                np.asarray(self._data, dtype=np.float64),
                (np.asarray(self._rows, dtype=np.int64), np.asarray(self._cols, dtype=np.int64)),
            ),
            shape=shape,
        )

    def tocsr(self, shape: tuple[int, int] | None = None) -> sp.sparse.csr_matrix:
        return self.tocoo(shape).tocsr()


def add_entry(storage, row: int, col: int, value: float) -> None:
    """Insert into a TripletStorage or a scipy lil/dok matrix."""
    if isinstance(storage, TripletStorage):
        storage.add(row, col, value)
    else:
        storage[row, col] += value
